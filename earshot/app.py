"""Pipeline wiring: capture → segmenter → encoder → dispatcher → gate release."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import httpx
import numpy as np

from .audio.capture import CaptureLoop, FrameSource
from .audio.clip_encoder import ClipArchive
from .audio.segmenter import Listener, SegmentationStateMachine
from .audio.types import AudioChunk, BufferStats, EncodedClip, TranscriptionResult
from .config import PipelineSettings, get_settings
from .services.dispatcher import DispatchWorker, TranscriptionDispatcher
from .services.logger import LogBuffer, configure_logging
from .services.stt_client import SttClient
from .store.settings_store import SettingsStore
from .store.transcript_store import TranscriptStore

LOGGER = logging.getLogger("earshot.app")


class PipelineCoordinator:
    """Owns one segmenter, one dispatcher and the worker thread between them.

    With ``inline=True`` clips are dispatched on the ingesting thread, which is
    handy for scripts and tests; otherwise a :class:`DispatchWorker` keeps
    network I/O off the capture path.
    """

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        *,
        on_result: Callable[[TranscriptionResult], None] | None = None,
        http_client: Optional[httpx.Client] = None,
        inline: bool = False,
        clock: Callable[[], float] | None = None,
    ) -> None:
        settings = settings or get_settings()
        if settings.settings_path:
            settings = SettingsStore(Path(settings.settings_path)).apply(settings)
        self.settings = settings
        self.logger = LogBuffer()
        self.on_result = on_result
        self.inline = inline
        self.results: List[TranscriptionResult] = []

        extra = {"clock": clock} if clock else {}
        self.segmenter = SegmentationStateMachine.from_settings(self.settings, **extra)
        self.client = SttClient(self.settings, client=http_client)
        archive = ClipArchive(Path(self.settings.clip_archive_dir)) if self.settings.clip_archive_dir else None
        self.transcripts = TranscriptStore(Path(self.settings.transcript_path)) if self.settings.transcript_path else None
        self.dispatcher = TranscriptionDispatcher(
            self.client,
            formats=self.settings.format_fallback_order,
            on_complete=self.segmenter.on_transcription_complete,
            on_result=self._handle_result,
            max_payload_mb=self.settings.max_payload_mb,
            archive=archive,
            logger=self.logger,
        )
        self.worker = DispatchWorker(self.dispatcher, logger=self.logger)
        self.segmenter.sink = self._submit
        self.capture: CaptureLoop | None = None

    def start(self, source: FrameSource | None = None, *, capture: bool = False) -> None:
        if not self.inline:
            self.worker.start()
        if capture:
            self.capture = CaptureLoop(
                self.ingest,
                sample_rate=self.settings.sample_rate,
                chunk_seconds=self.settings.chunk_seconds,
                source=source,
                logger=self.logger,
            )
            self.capture.start()
        self.logger.add("Pipeline started")

    def stop(self) -> None:
        if self.capture:
            self.capture.stop()
            self.capture = None
        self.worker.stop()
        self.client.close()
        # Unflushed audio is discarded.
        self.segmenter.clear()
        self.logger.add("Pipeline stopped")

    def ingest(
        self, chunk: AudioChunk | Sequence[float] | np.ndarray, arrival_ms: float | None = None
    ) -> Optional[EncodedClip]:
        return self.segmenter.ingest(chunk, arrival_ms)

    def flush(self) -> Optional[EncodedClip]:
        return self.segmenter.force_flush()

    def add_listener(self, listener: Listener) -> None:
        self.segmenter.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        self.segmenter.remove_listener(listener)

    def stats(self) -> BufferStats:
        return self.segmenter.stats()

    def wait_idle(self, timeout: float | None = None) -> bool:
        if self.inline:
            return True
        return self.worker.wait_idle(timeout)

    def _submit(self, clip: EncodedClip) -> None:
        if self.inline:
            self.dispatcher.dispatch(clip)
        else:
            self.worker.submit(clip)

    def _handle_result(self, result: TranscriptionResult) -> None:
        self.results.append(result)
        if result.ok:
            self.logger.add(f"Transcript: {result.text}")
        else:
            self.logger.add(f"Transcription error: {result.error}")
        if self.transcripts:
            try:
                self.transcripts.append(result)
            except OSError as exc:
                LOGGER.warning("Transcript save failed: %s", exc)
        if self.on_result:
            self.on_result(result)


def _parse_cli_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Transcribe speech from the default input device")
    parser.add_argument(
        "--flush-after",
        type=float,
        default=0.0,
        help="Stop after this many seconds and flush the remaining buffer (0 runs until Ctrl+C)",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--json", action="store_true", help="Print each result as a JSON line")
    return parser.parse_args(argv)


def format_result(result: TranscriptionResult, *, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(result.to_dict(), sort_keys=True)
    prefix = "!" if result.error else ">"
    return f"{prefix} {result.text}"


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_cli_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    def _print_result(result: TranscriptionResult) -> None:
        print(format_result(result, as_json=args.json), flush=True)

    coordinator = PipelineCoordinator(settings, on_result=_print_result)
    try:
        coordinator.start(capture=True)
    except RuntimeError as exc:
        print(f"[earshot] ERROR: {exc}", flush=True)
        coordinator.stop()
        return 1
    started = time.monotonic()
    try:
        while not args.flush_after or time.monotonic() - started < args.flush_after:
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    if coordinator.capture:
        coordinator.capture.stop()
        coordinator.capture = None
    coordinator.flush()
    coordinator.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
