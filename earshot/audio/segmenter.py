"""Volume-gated buffering that decides when a span becomes a transcription clip."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

import numpy as np

from ..metrics import BUFFER_OVERFLOW_COUNTER, FLUSH_COUNTER
from . import level_gate
from .accumulator import SampleAccumulator
from .clip_encoder import build_clip
from .types import (
    AudioChunk,
    AudioLevel,
    BufferStats,
    EncodedClip,
    FlushReason,
    SegmenterEvent,
    SegmentFlushed,
    SpeechStarted,
)

LOGGER = logging.getLogger("earshot.segmenter")

ClipSink = Callable[[EncodedClip], None]
Listener = Callable[[SegmenterEvent], None]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SegmentationStateMachine:
    """Accumulates chunks and flushes them once speech ends or the span runs long.

    Only one clip may be in flight: after a flush the ``pending_transcription``
    gate stays closed until :meth:`on_transcription_complete` is called, and
    further flush conditions are ignored in the meantime. The buffer itself is
    reset as soon as the clip is handed off, so capture keeps running.
    """

    def __init__(
        self,
        sink: ClipSink | None = None,
        *,
        sample_rate: int = 16_000,
        buffer_duration_ms: float = 3000,
        silence_threshold: float = 0.01,
        min_speech_duration_ms: float = 500,
        max_silence_duration_ms: float = 1500,
        max_buffer_samples: int | None = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.sink = sink
        self.sample_rate = sample_rate
        self.buffer_duration_ms = float(buffer_duration_ms)
        self.silence_threshold = float(silence_threshold)
        self.min_speech_duration_ms = float(min_speech_duration_ms)
        self.max_silence_duration_ms = float(max_silence_duration_ms)
        self.max_buffer_samples = max_buffer_samples if max_buffer_samples and max_buffer_samples > 0 else None
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._buffer = SampleAccumulator(sample_rate)
        self.last_speech_ms = 0.0
        self.last_silence_ms = 0.0
        self.is_speech_active = False
        self.pending_transcription = False
        self.overflow_count = 0
        LOGGER.info(
            "Segmenter ready (window=%sms threshold=%s min_speech=%sms max_silence=%sms ceiling=%s)",
            self.buffer_duration_ms,
            self.silence_threshold,
            self.min_speech_duration_ms,
            self.max_silence_duration_ms,
            self.max_buffer_samples,
        )

    @classmethod
    def from_settings(cls, settings, sink: ClipSink | None = None, **kwargs) -> "SegmentationStateMachine":
        return cls(
            sink,
            sample_rate=settings.sample_rate,
            buffer_duration_ms=settings.buffer_duration_ms,
            silence_threshold=settings.silence_threshold,
            min_speech_duration_ms=settings.min_speech_duration_ms,
            max_silence_duration_ms=settings.max_silence_duration_ms,
            max_buffer_samples=settings.max_buffer_samples,
            **kwargs,
        )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def buffer_start_ms(self) -> float:
        return self._buffer.start_ms

    @property
    def buffered_samples(self) -> int:
        return len(self._buffer)

    def ingest(
        self,
        chunk: AudioChunk | Sequence[float] | np.ndarray,
        arrival_ms: float | None = None,
    ) -> Optional[EncodedClip]:
        """Feed one chunk; returns the clip if this chunk triggered a flush."""
        if isinstance(chunk, AudioChunk):
            samples = chunk.samples
            now = chunk.arrival_ms if arrival_ms is None else float(arrival_ms)
        else:
            samples = np.asarray(chunk, dtype=np.float32).reshape(-1)
            now = self._clock() if arrival_ms is None else float(arrival_ms)

        events: list[SegmenterEvent] = []
        with self._lock:
            self._buffer.append(samples, now)
            level, speech = level_gate.classify(samples, self.silence_threshold)
            if speech:
                self.last_speech_ms = now
                if not self.is_speech_active:
                    self.is_speech_active = True
                    LOGGER.debug("Speech detected at %.0fms", now)
                    events.append(SpeechStarted(timestamp=now))
            else:
                self.last_silence_ms = now
            events.append(AudioLevel(rms=level, timestamp=now, is_speech=speech))

            self._enforce_ceiling()
            reason = self._flush_reason(now)
            clip = None
            if reason is not None:
                clip = self._take_clip(reason, now)
                if clip is not None:
                    events.append(SegmentFlushed(reason=reason, sample_count=clip.sample_count, timestamp=now))

        self._emit(events)
        if clip is not None:
            self._hand_off(clip)
        return clip

    def force_flush(self) -> Optional[EncodedClip]:
        """Flush whatever is buffered now, unless a transcription is already pending."""
        now = self._clock()
        with self._lock:
            clip = self._take_clip(FlushReason.MANUAL_FLUSH, now)
        if clip is None:
            return None
        self._emit([SegmentFlushed(reason=FlushReason.MANUAL_FLUSH, sample_count=clip.sample_count, timestamp=now)])
        self._hand_off(clip)
        return clip

    def on_transcription_complete(self) -> None:
        with self._lock:
            self.pending_transcription = False
        LOGGER.debug("Transcription completed, ready for next buffer")

    def clear(self) -> None:
        with self._lock:
            self._reset()

    def stats(self, now_ms: float | None = None) -> BufferStats:
        now = self._clock() if now_ms is None else now_ms
        with self._lock:
            empty = self._buffer.is_empty
            return BufferStats(
                sample_count=len(self._buffer),
                buffer_duration_ms=0.0 if empty else now - self._buffer.start_ms,
                is_speech_active=self.is_speech_active,
                time_since_last_speech_ms=now - self.last_speech_ms if self.last_speech_ms else 0.0,
                pending_transcription=self.pending_transcription,
                overflow_count=self.overflow_count,
            )

    def recent_segment(self, duration_ms: float) -> tuple[np.ndarray, float]:
        """Return the last ``duration_ms`` of buffered audio and its start time."""
        wanted = int(self.sample_rate * (duration_ms / 1000.0))
        with self._lock:
            if self._buffer.is_empty:
                return np.array([], dtype=np.float32), 0.0
            data = self._buffer.tail(wanted)
            skipped = len(self._buffer) - data.size
            start = self._buffer.start_ms + skipped * 1000.0 / self.sample_rate
        return data, start

    def _flush_reason(self, now: float) -> Optional[FlushReason]:
        buffer_age = now - self._buffer.start_ms
        since_speech = now - self.last_speech_ms
        speech_span = self.last_speech_ms - self._buffer.start_ms
        if buffer_age >= self.buffer_duration_ms:
            return FlushReason.MAX_DURATION
        if (
            self.is_speech_active
            and since_speech >= self.max_silence_duration_ms
            and speech_span >= self.min_speech_duration_ms
        ):
            return FlushReason.SILENCE_AFTER_SPEECH
        return None

    def _take_clip(self, reason: FlushReason, now: float) -> Optional[EncodedClip]:
        # Caller holds the lock.
        if self._buffer.is_empty or self.pending_transcription:
            return None
        samples = self._buffer.samples()
        clip = build_clip(samples, self.sample_rate, reason, buffer_start_ms=self._buffer.start_ms)
        self.pending_transcription = True
        LOGGER.info(
            "Flushing buffer (%s): %d samples, %.0fms, span %.0fms",
            reason.value,
            clip.sample_count,
            clip.duration_ms,
            now - self._buffer.start_ms,
        )
        FLUSH_COUNTER.labels(reason=reason.value).inc()
        self._reset()
        return clip

    def _enforce_ceiling(self) -> None:
        # Ceiling applies only while a clip is in flight.
        if self.max_buffer_samples is None or not self.pending_transcription:
            return
        excess = len(self._buffer) - self.max_buffer_samples
        if excess <= 0:
            return
        self._buffer.drop_head(excess)
        self.overflow_count += 1
        BUFFER_OVERFLOW_COUNTER.inc()
        LOGGER.warning(
            "Buffer exceeded %d samples (pending=%s); dropped %d oldest samples",
            self.max_buffer_samples,
            self.pending_transcription,
            excess,
        )

    def _reset(self) -> None:
        self._buffer.clear()
        self.is_speech_active = False
        self.last_speech_ms = 0.0
        self.last_silence_ms = 0.0

    def _hand_off(self, clip: EncodedClip) -> None:
        if self.sink is None:
            return
        try:
            self.sink(clip)
        except Exception:
            LOGGER.exception("Clip hand-off failed; releasing transcription gate")
            self.on_transcription_complete()

    def _emit(self, events: list[SegmenterEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    LOGGER.exception("Segmenter listener failed on %s", type(event).__name__)


__all__ = ["SegmentationStateMachine"]
