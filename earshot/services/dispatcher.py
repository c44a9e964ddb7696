"""Send encoded clips to the STT endpoint with per-format fallback."""

from __future__ import annotations

import base64
import logging
import queue
import threading
import time
from typing import Callable, Iterable, Optional, Sequence, Tuple, TypeVar

from ..audio.clip_encoder import ClipArchive, detect_format
from ..audio.types import EncodedClip, TranscriptionResult
from ..metrics import (
    DISPATCH_ATTEMPT_COUNTER,
    DISPATCH_DURATION,
    DISPATCH_RESULT_COUNTER,
)
from .logger import LogBuffer
from .stt_client import SttClient, SttError

LOGGER = logging.getLogger("earshot.dispatch")

DEFAULT_CONFIDENCE = 0.9
FAILURE_PLACEHOLDER = "[Audio captured but transcription failed]"

S = TypeVar("S")
R = TypeVar("R")

ResultCallback = Callable[[TranscriptionResult], None]


class StrategiesExhausted(Exception):
    """Every strategy failed; ``last_error`` is the final failure."""

    def __init__(self, last_error: BaseException | None, attempts: int) -> None:
        message = str(last_error) if last_error else "no strategies to try"
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


def try_in_order(
    strategies: Iterable[S],
    attempt: Callable[[S], R],
    *,
    retry_on: Tuple[type[BaseException], ...] = (Exception,),
) -> Tuple[R, S, int]:
    """Run ``attempt`` per strategy until one succeeds.

    Returns ``(value, strategy, attempts)``; raises :class:`StrategiesExhausted`
    carrying the last error when none do.
    """
    last_error: BaseException | None = None
    attempts = 0
    for strategy in strategies:
        attempts += 1
        try:
            return attempt(strategy), strategy, attempts
        except retry_on as exc:
            last_error = exc
    raise StrategiesExhausted(last_error, attempts)


class TranscriptionDispatcher:
    """Turns one clip into a :class:`TranscriptionResult`, never raising.

    The completion callback fires exactly once per dispatch and the
    originating segmenter's gate is released afterwards, whatever happened.
    """

    def __init__(
        self,
        client: SttClient,
        *,
        formats: Sequence[str] = ("wav", "mp3", "webm"),
        on_complete: Callable[[], None] | None = None,
        on_result: ResultCallback | None = None,
        max_payload_mb: float = 10.0,
        archive: ClipArchive | None = None,
        logger: LogBuffer | None = None,
    ) -> None:
        if not formats:
            raise ValueError("at least one format label is required")
        self.client = client
        self.formats = [fmt.lower() for fmt in formats]
        self.on_complete = on_complete
        self.on_result = on_result
        self.max_payload_bytes = int(max_payload_mb * 1024 * 1024)
        self.archive = archive
        self.logger = logger

    def dispatch(self, clip: EncodedClip) -> TranscriptionResult:
        result: TranscriptionResult | None = None
        try:
            if self.archive:
                self._archive(clip)
            result = self._transcribe(clip.payload, self.formats)
            result.clip = clip.metadata()
            return result
        except Exception as exc:  # pragma: no cover - guards unexpected bugs
            LOGGER.exception("Unexpected dispatch failure")
            result = self._failure(str(exc) or type(exc).__name__, attempts=0)
            result.clip = clip.metadata()
            return result
        finally:
            self._deliver(result)
            if self.on_complete:
                try:
                    self.on_complete()
                except Exception:
                    LOGGER.exception("Releasing the transcription gate failed")

    def dispatch_blob(self, blob: bytes) -> TranscriptionResult:
        """Dispatch a raw captured media blob, trying its sniffed format first."""
        result: TranscriptionResult | None = None
        try:
            detected = detect_format(blob)
            order = [detected] + [fmt for fmt in self.formats if fmt != detected]
            result = self._transcribe(bytes(blob), order)
            return result
        except Exception as exc:  # pragma: no cover - guards unexpected bugs
            LOGGER.exception("Unexpected dispatch failure")
            result = self._failure(str(exc) or type(exc).__name__, attempts=0)
            return result
        finally:
            self._deliver(result)

    def _transcribe(self, payload: bytes, formats: Sequence[str]) -> TranscriptionResult:
        started = time.perf_counter()
        try:
            if not payload:
                return self._failure("Invalid audio buffer: empty", attempts=0)
            if len(payload) > self.max_payload_bytes:
                size_mb = len(payload) / (1024 * 1024)
                LOGGER.warning("Audio payload too large: %.2f MB", size_mb)
                return self._failure(f"Audio payload too large: {size_mb:.2f} MB", attempts=0)

            audio_b64 = base64.b64encode(payload).decode("ascii")
            try:
                text, fmt, attempts = try_in_order(
                    formats,
                    lambda label: self._attempt(audio_b64, label),
                    retry_on=(SttError,),
                )
            except StrategiesExhausted as exc:
                LOGGER.error("All %d format attempts failed: %s", exc.attempts, exc)
                return self._failure(str(exc), attempts=exc.attempts)

            DISPATCH_RESULT_COUNTER.labels(status="success").inc()
            self._log(f"Transcribed via {fmt} ({attempts} attempt(s))")
            return TranscriptionResult(
                text=text,
                confidence=DEFAULT_CONFIDENCE,
                timestamp=time.time() * 1000.0,
                format=fmt,
                attempts=attempts,
            )
        finally:
            DISPATCH_DURATION.observe(time.perf_counter() - started)

    def _attempt(self, audio_b64: str, audio_format: str) -> str:
        LOGGER.debug("Trying transcription with format %s", audio_format)
        try:
            text = self.client.transcribe(audio_b64, audio_format)
        except SttError as exc:
            DISPATCH_ATTEMPT_COUNTER.labels(format=audio_format, status="error").inc()
            LOGGER.info("Format %s failed: %s", audio_format, exc)
            raise
        DISPATCH_ATTEMPT_COUNTER.labels(format=audio_format, status="success").inc()
        return text

    def _failure(self, message: str, *, attempts: int) -> TranscriptionResult:
        DISPATCH_RESULT_COUNTER.labels(status="error").inc()
        self._log(f"Transcription failed: {message}")
        return TranscriptionResult(
            text=FAILURE_PLACEHOLDER,
            confidence=0.0,
            timestamp=time.time() * 1000.0,
            error=message,
            attempts=attempts,
        )

    def _deliver(self, result: TranscriptionResult | None) -> None:
        if result is None or not self.on_result:
            return
        try:
            self.on_result(result)
        except Exception:
            LOGGER.exception("Transcription result callback failed")

    def _archive(self, clip: EncodedClip) -> None:
        try:
            path = self.archive.write(clip)  # type: ignore[union-attr]
            LOGGER.debug("Archived clip to %s", path)
        except Exception as exc:
            LOGGER.warning("Clip archive write failed: %s", exc)

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.add(message)


class DispatchWorker:
    """Background thread that dispatches submitted clips one at a time."""

    def __init__(self, dispatcher: TranscriptionDispatcher, logger: LogBuffer | None = None) -> None:
        self.dispatcher = dispatcher
        self.logger = logger
        self._queue: "queue.Queue[Optional[EncodedClip]]" = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._in_flight = 0
        self._idle = threading.Event()
        self._idle.set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="earshot-dispatch", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        """Finish queued clips, then stop the thread."""
        if not self._thread:
            return
        self._queue.put(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    def submit(self, clip: EncodedClip) -> None:
        if not self._thread or not self._thread.is_alive():
            raise RuntimeError("dispatch worker is not running")
        with self._lock:
            self._in_flight += 1
            self._idle.clear()
        self._queue.put(clip)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def _run(self) -> None:
        while True:
            clip = self._queue.get()
            if clip is None:
                return
            if self.logger:
                self.logger.add(f"Dispatching {clip.reason.value} clip ({clip.duration_ms:.0f}ms)")
            try:
                self.dispatcher.dispatch(clip)
            finally:
                with self._lock:
                    self._in_flight -= 1
                    if self._in_flight == 0:
                        self._idle.set()


__all__ = [
    "DEFAULT_CONFIDENCE",
    "DispatchWorker",
    "FAILURE_PLACEHOLDER",
    "StrategiesExhausted",
    "TranscriptionDispatcher",
    "try_in_order",
]
