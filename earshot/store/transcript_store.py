"""Append-only transcript archive for dispatched clips."""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..audio.types import TranscriptionResult


class TranscriptStore:
    """Persist recognised text with subtitle-style timestamps."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._counter_path = self.path.with_suffix(self.path.suffix + ".idx")
        self._lock = threading.Lock()

    def append(self, result: TranscriptionResult) -> bool:
        """Write one cue per sentence of a successful result; failures are skipped."""
        if not result.ok:
            return False
        text = result.text.strip()
        if not text:
            return False
        clip = result.clip or {}
        duration_ms = float(clip.get("duration_ms") or 0.0)
        end = self._to_datetime(clip.get("dispatch_timestamp") or result.timestamp)
        start = end - timedelta(milliseconds=duration_ms)
        sentences = self._split_sentences(text)
        step = timedelta(milliseconds=duration_ms / len(sentences)) if duration_ms else timedelta(0)
        reason = clip.get("reason", "unknown")

        with self._lock:
            start_index = self._reserve_index(len(sentences))
            lines: list[str] = []
            for offset, sentence in enumerate(sentences):
                cue_start = start + step * offset
                cue_end = end if offset == len(sentences) - 1 else cue_start + step
                lines.extend(
                    [
                        str(start_index + offset),
                        f"{self._format_timestamp(cue_start)} --> {self._format_timestamp(cue_end)}",
                        f"[{reason}] {sentence}",
                        "",
                    ]
                )
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
        return True

    def _reserve_index(self, count: int) -> int:
        current = 0
        if self._counter_path.exists():
            try:
                current = int(self._counter_path.read_text().strip() or "0")
            except ValueError:
                current = 0
        start = current + 1
        self._counter_path.write_text(str(current + count), encoding="utf-8")
        return start

    @staticmethod
    def _to_datetime(epoch_ms: float) -> datetime:
        return datetime.fromtimestamp(float(epoch_ms) / 1000.0, tz=timezone.utc)

    @staticmethod
    def _format_timestamp(value: datetime) -> str:
        return value.strftime("%H:%M:%S,%f")[:12]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        chunks = [chunk.strip() for chunk in re.split(r"(?<=[.!?])\s+", text) if chunk.strip()]
        return chunks if chunks else [text.strip()]


__all__ = ["TranscriptStore"]
