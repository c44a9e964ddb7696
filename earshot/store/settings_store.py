"""Persistent storage for the user-tunable pipeline knobs."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path

from ..config import PipelineSettings


@dataclass(slots=True)
class TunedSettings:
    stt_endpoint: str = ""
    stt_api_key: str = ""
    silence_threshold: float = 0.01
    buffer_duration_ms: float = 3000.0
    max_silence_duration_ms: float = 1500.0
    min_speech_duration_ms: float = 500.0


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> TunedSettings:
        if not self.path.exists():
            return TunedSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        if not isinstance(raw, dict):
            raw = {}
        settings = TunedSettings()
        settings.stt_endpoint = str(raw.get("stt_endpoint", ""))
        settings.stt_api_key = str(raw.get("stt_api_key", ""))
        for key in ("silence_threshold", "buffer_duration_ms", "max_silence_duration_ms", "min_speech_duration_ms"):
            try:
                setattr(settings, key, float(raw.get(key, getattr(settings, key))))
            except (TypeError, ValueError):
                continue
        return settings

    def get(self) -> TunedSettings:
        return self._settings

    def update(self, **kwargs) -> TunedSettings:
        for key, value in kwargs.items():
            if not hasattr(self._settings, key):
                continue
            current = getattr(self._settings, key)
            if isinstance(current, float):
                setattr(self._settings, key, float(value))
            else:
                setattr(self._settings, key, value or "")
        self._persist()
        return self._settings

    def apply(self, settings: PipelineSettings) -> PipelineSettings:
        """Overlay stored knobs on ``settings``; blank strings keep the base value."""
        if not self.path.exists():
            return settings
        stored = asdict(self._settings)
        overrides = {key: value for key, value in stored.items() if value not in ("", None)}
        return settings.model_copy(update=overrides)

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")
