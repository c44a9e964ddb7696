"""Periodic audio capture feeding the segmenter."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

from ..services.logger import LogBuffer
from .types import AudioChunk

LOGGER = logging.getLogger("earshot.capture")

FrameSource = Callable[[int], np.ndarray]


class CaptureLoop:
    """Pulls ``chunk_seconds`` of audio at a time and hands it to ``on_chunk``."""

    def __init__(
        self,
        on_chunk: Callable[[AudioChunk], None],
        *,
        sample_rate: int = 16_000,
        chunk_seconds: float = 3.0,
        source: FrameSource | None = None,
        logger: LogBuffer | None = None,
        channels: int = 1,
    ) -> None:
        self.on_chunk = on_chunk
        self.sample_rate = sample_rate
        self.chunk_seconds = chunk_seconds
        self.channels = channels
        self.logger = logger
        self._source = source
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        if self._source is None:
            self._source = self._sounddevice_source()
        self._log("Capture started")
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="earshot-capture", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.chunk_seconds + 2)
            self._thread = None
        self._log("Capture stopped")

    def capture_once(self) -> Optional[AudioChunk]:
        frames = max(1, int(self.sample_rate * self.chunk_seconds))
        try:
            raw = self._source(frames)  # type: ignore[misc]
        except Exception as exc:
            self._log(f"Capture error: {exc}")
            return None
        if raw is None:
            return None
        samples = to_float_mono(np.asarray(raw))
        return AudioChunk.from_samples(samples, time.monotonic() * 1000.0, self.sample_rate)

    def _loop(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            chunk = self.capture_once()
            if chunk is not None:
                try:
                    self.on_chunk(chunk)
                except Exception:
                    LOGGER.exception("Chunk handler failed")
            # Non-blocking sources still get one chunk per interval.
            remaining = self.chunk_seconds - (time.monotonic() - started)
            if remaining > 0:
                self._stop.wait(remaining)

    def _sounddevice_source(self) -> FrameSource:
        try:
            import sounddevice as sd  # type: ignore
        except Exception as exc:
            raise RuntimeError(
                "No audio source configured and sounddevice is unavailable "
                "(install earshot[capture])"
            ) from exc

        def record(frames: int) -> np.ndarray:
            data = sd.rec(frames, samplerate=self.sample_rate, channels=self.channels, dtype="int16")
            sd.wait()
            return np.array(data, dtype=np.int16)

        return record

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.add(message)
        else:
            LOGGER.info(message)


def to_float_mono(data: np.ndarray) -> np.ndarray:
    """First channel of ``data`` as float32 in [-1, 1]."""
    if data.ndim > 1:
        data = data[:, 0]
    if np.issubdtype(data.dtype, np.integer):
        return (data.astype(np.float32) / 32768.0).astype(np.float32, copy=False)
    return data.astype(np.float32, copy=False)


__all__ = ["CaptureLoop", "to_float_mono"]
