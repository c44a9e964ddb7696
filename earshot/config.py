"""Pipeline settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_FORMATS = "wav,mp3,webm"


class PipelineSettings(BaseModel):
    model_config = ConfigDict(validate_default=True)

    sample_rate: int = Field(
        default_factory=lambda: int(os.getenv("SAMPLE_RATE", "16000")), gt=0
    )
    buffer_duration_ms: float = Field(
        default_factory=lambda: float(os.getenv("BUFFER_DURATION_MS", "3000")), gt=0
    )
    silence_threshold: float = Field(
        default_factory=lambda: float(os.getenv("SILENCE_THRESHOLD", "0.01")), ge=0
    )
    min_speech_duration_ms: float = Field(
        default_factory=lambda: float(os.getenv("MIN_SPEECH_DURATION_MS", "500")), ge=0
    )
    max_silence_duration_ms: float = Field(
        default_factory=lambda: float(os.getenv("MAX_SILENCE_DURATION_MS", "1500")), ge=0
    )
    format_fallback_order: List[str] = Field(default_factory=lambda: _split_formats())
    max_buffer_samples: int | None = Field(
        default_factory=lambda: _optional_int(os.getenv("MAX_BUFFER_SAMPLES", "480000"))
    )
    stt_endpoint: str = Field(
        default_factory=lambda: os.getenv("STT_ENDPOINT", "https://text.pollinations.ai/openai")
    )
    stt_model: str = Field(default_factory=lambda: os.getenv("STT_MODEL", "openai-audio"))
    stt_api_key: str | None = Field(default_factory=lambda: os.getenv("STT_API_KEY"))
    stt_referrer: str | None = Field(default_factory=lambda: os.getenv("STT_REFERRER"))
    stt_prompt: str = Field(
        default_factory=lambda: os.getenv("STT_PROMPT", "Transcribe this audio:")
    )
    request_timeout_sec: float = Field(
        default_factory=lambda: float(os.getenv("STT_TIMEOUT_SEC", "15"))
    )
    max_payload_mb: float = Field(
        default_factory=lambda: float(os.getenv("STT_MAX_PAYLOAD_MB", "10")), gt=0
    )
    chunk_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHUNK_SECONDS", "3")), gt=0
    )
    clip_archive_dir: str | None = Field(default_factory=lambda: os.getenv("CLIP_ARCHIVE_DIR"))
    transcript_path: str | None = Field(default_factory=lambda: os.getenv("TRANSCRIPT_PATH"))
    settings_path: str | None = Field(default_factory=lambda: os.getenv("SETTINGS_PATH"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @field_validator("format_fallback_order", mode="before")
    @classmethod
    def _normalize_formats(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        formats = [str(item).strip().lower() for item in value if str(item).strip()]
        if not formats:
            raise ValueError("format_fallback_order must name at least one format")
        return formats

    @field_validator("max_buffer_samples")
    @classmethod
    def _disable_zero_ceiling(cls, value: int | None) -> int | None:
        if value is None or value <= 0:
            return None
        return value

    @field_validator("request_timeout_sec")
    @classmethod
    def _timeout_floor(cls, value: float) -> float:
        if value < 10:
            raise ValueError("request_timeout_sec must be at least 10 seconds")
        return value


def _split_formats() -> List[str]:
    raw = os.getenv("FORMAT_FALLBACK_ORDER") or DEFAULT_FORMATS
    return [fmt.strip().lower() for fmt in raw.split(",") if fmt.strip()]


def _optional_int(raw: str | None) -> int | None:
    if raw is None or not raw.strip():
        return None
    value = int(raw)
    return value if value > 0 else None


@lru_cache()
def get_settings() -> PipelineSettings:
    return PipelineSettings()
