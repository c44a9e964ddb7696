import pytest
from pydantic import ValidationError

from earshot.config import PipelineSettings, get_settings
from earshot.store.settings_store import SettingsStore


def test_defaults(monkeypatch):
    for name in (
        "SAMPLE_RATE",
        "BUFFER_DURATION_MS",
        "SILENCE_THRESHOLD",
        "MIN_SPEECH_DURATION_MS",
        "MAX_SILENCE_DURATION_MS",
        "FORMAT_FALLBACK_ORDER",
        "MAX_BUFFER_SAMPLES",
        "STT_MODEL",
        "STT_TIMEOUT_SEC",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = PipelineSettings()
    assert settings.sample_rate == 16_000
    assert settings.buffer_duration_ms == 3000
    assert settings.silence_threshold == 0.01
    assert settings.min_speech_duration_ms == 500
    assert settings.max_silence_duration_ms == 1500
    assert settings.format_fallback_order == ["wav", "mp3", "webm"]
    assert settings.max_buffer_samples == 480_000
    assert settings.stt_model == "openai-audio"
    assert settings.request_timeout_sec >= 10


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SAMPLE_RATE", "8000")
    monkeypatch.setenv("FORMAT_FALLBACK_ORDER", " MP3, wav ,,")
    monkeypatch.setenv("MAX_BUFFER_SAMPLES", "0")
    monkeypatch.setenv("SILENCE_THRESHOLD", "0.05")
    settings = get_settings()
    assert settings.sample_rate == 8000
    assert settings.format_fallback_order == ["mp3", "wav"]
    assert settings.max_buffer_samples is None
    assert settings.silence_threshold == 0.05


def test_format_list_accepts_csv_string():
    settings = PipelineSettings(format_fallback_order="webm,WAV")
    assert settings.format_fallback_order == ["webm", "wav"]


def test_rejects_short_timeout_and_empty_formats():
    with pytest.raises(ValidationError):
        PipelineSettings(request_timeout_sec=2)
    with pytest.raises(ValidationError):
        PipelineSettings(format_fallback_order=[])


def test_settings_store_roundtrip(tmp_path):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    assert store.get().stt_endpoint == ""
    assert store.get().silence_threshold == 0.01

    store.update(stt_endpoint="https://stt.example.com", stt_api_key="abc", silence_threshold=0.03, bogus=1)
    data = path.read_text()
    assert "stt.example.com" in data
    assert "0.03" in data

    store2 = SettingsStore(path)
    assert store2.get().stt_api_key == "abc"
    assert store2.get().silence_threshold == 0.03


def test_settings_store_apply_overlays_values(tmp_path):
    base = PipelineSettings(stt_endpoint="https://default.example.com", silence_threshold=0.01)
    store = SettingsStore(tmp_path / "settings.json")
    assert store.apply(base) is base

    store.update(silence_threshold=0.2)
    merged = store.apply(base)
    assert merged.silence_threshold == 0.2
    assert merged.stt_endpoint == "https://default.example.com"


def test_settings_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    assert SettingsStore(path).get().buffer_duration_ms == 3000.0
