"""Dataclasses shared across audio helpers."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Sequence, Union

import numpy as np


class FlushReason(str, enum.Enum):
    MAX_DURATION = "max-duration"
    SILENCE_AFTER_SPEECH = "silence-after-speech"
    MANUAL_FLUSH = "manual-flush"


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """Normalized mono samples handed over by a capture source."""

    samples: np.ndarray
    arrival_ms: float
    sample_rate: int = 16_000

    @classmethod
    def from_samples(
        cls, samples: Sequence[float] | np.ndarray, arrival_ms: float, sample_rate: int = 16_000
    ) -> "AudioChunk":
        data = np.array(samples, dtype=np.float32).reshape(-1)
        data.flags.writeable = False
        return cls(samples=data, arrival_ms=float(arrival_ms), sample_rate=sample_rate)

    def __len__(self) -> int:
        return int(self.samples.size)


@dataclass(frozen=True, slots=True)
class EncodedClip:
    """A finished span, encoded as a self-describing WAV payload."""

    payload: bytes
    sample_count: int
    duration_ms: float
    reason: FlushReason
    dispatch_timestamp: float
    sample_rate: int = 16_000
    buffer_start_ms: float = 0.0

    def metadata(self) -> Dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "duration_ms": self.duration_ms,
            "reason": self.reason.value,
            "dispatch_timestamp": self.dispatch_timestamp,
        }


@dataclass(slots=True)
class TranscriptionResult:
    """Outcome of one dispatch; ``error`` is set whenever recognition failed."""

    text: str
    confidence: float
    timestamp: float
    error: str | None = None
    format: str | None = None
    attempts: int = 0
    clip: Dict[str, Any] | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            data.pop("error")
        return data


@dataclass(slots=True)
class BufferStats:
    sample_count: int
    buffer_duration_ms: float
    is_speech_active: bool
    time_since_last_speech_ms: float
    pending_transcription: bool
    overflow_count: int


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    timestamp: float


@dataclass(frozen=True, slots=True)
class AudioLevel:
    rms: float
    timestamp: float
    is_speech: bool


@dataclass(frozen=True, slots=True)
class SegmentFlushed:
    reason: FlushReason
    sample_count: int
    timestamp: float


SegmenterEvent = Union[SpeechStarted, AudioLevel, SegmentFlushed]
