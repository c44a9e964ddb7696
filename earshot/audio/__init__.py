"""Audio helpers (level gate, buffering, encoding, capture)."""

from .segmenter import SegmentationStateMachine
from .types import AudioChunk, EncodedClip, FlushReason, TranscriptionResult

__all__ = ["AudioChunk", "EncodedClip", "FlushReason", "SegmentationStateMachine", "TranscriptionResult"]
