"""WAV packaging for flushed buffers, plus format sniffing for captured blobs."""

from __future__ import annotations

import logging
import struct
import time
from pathlib import Path
from typing import Sequence

import numpy as np
import soundfile as sf

from .types import EncodedClip, FlushReason

LOGGER = logging.getLogger("earshot.encoder")

WAV_HEADER_BYTES = 44
PCM_SCALE = 0x7FFF


def encode_wav(samples: Sequence[float] | np.ndarray, sample_rate: int) -> bytes:
    """Pack float samples as mono 16-bit PCM behind a 44-byte RIFF header.

    NaN samples become silence and anything outside [-1.0, 1.0] is clamped,
    so malformed input never aborts an encode.
    """
    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    data = np.nan_to_num(data, nan=0.0, posinf=1.0, neginf=-1.0)
    pcm = (np.clip(data, -1.0, 1.0) * PCM_SCALE).astype("<i2")
    payload_len = pcm.size * 2
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + payload_len,
        b"WAVE",
        b"fmt ",
        16,
        1,
        1,
        sample_rate,
        sample_rate * 2,
        2,
        16,
        b"data",
        payload_len,
    )
    return header + pcm.tobytes()


def build_clip(
    samples: Sequence[float] | np.ndarray,
    sample_rate: int,
    reason: FlushReason,
    buffer_start_ms: float = 0.0,
) -> EncodedClip:
    data = np.asarray(samples, dtype=np.float32).reshape(-1)
    return EncodedClip(
        payload=encode_wav(data, sample_rate),
        sample_count=int(data.size),
        duration_ms=data.size / sample_rate * 1000.0,
        reason=FlushReason(reason),
        dispatch_timestamp=time.time() * 1000.0,
        sample_rate=sample_rate,
        buffer_start_ms=buffer_start_ms,
    )


def detect_format(blob: bytes) -> str:
    """Guess the container of a captured blob from its magic bytes."""
    header = bytes(blob[:12])
    if header[:4] == b"RIFF" and header[8:12] == b"WAVE":
        return "wav"
    if header[:3] == b"ID3" or (len(header) >= 2 and header[0] == 0xFF and (header[1] & 0xE0) == 0xE0):
        return "mp3"
    if header[4:8] == b"ftyp":
        return "m4a"
    if header[:4] == b"fLaC":
        return "flac"
    if header[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    LOGGER.warning("Could not detect audio format from %d byte blob, assuming wav", len(blob))
    return "wav"


def decode_wav_samples(clip: EncodedClip) -> np.ndarray:
    pcm = np.frombuffer(clip.payload, dtype="<i2", offset=WAV_HEADER_BYTES)
    return pcm.astype(np.int16, copy=False)


class ClipArchive:
    """Writes FLAC copies of dispatched clips for offline inspection."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def write(self, clip: EncodedClip) -> Path:
        reason = clip.reason.value
        path = self.directory / f"clip_{int(clip.dispatch_timestamp)}_{reason}.flac"
        sf.write(str(path), decode_wav_samples(clip), clip.sample_rate, format="FLAC", subtype="PCM_16")
        return path


__all__ = [
    "ClipArchive",
    "WAV_HEADER_BYTES",
    "build_clip",
    "decode_wav_samples",
    "detect_format",
    "encode_wav",
]
