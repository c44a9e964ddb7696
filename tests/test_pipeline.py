import json

import httpx
import numpy as np

from earshot.app import PipelineCoordinator, format_result
from earshot.audio.types import FlushReason, SpeechStarted, TranscriptionResult
from earshot.config import PipelineSettings
from earshot.store.settings_store import SettingsStore

CHUNK = 1600


def _settings(tmp_path, **overrides):
    params = dict(
        stt_endpoint="https://stt.example.com/openai",
        sample_rate=16_000,
        buffer_duration_ms=3000,
        silence_threshold=0.01,
        min_speech_duration_ms=500,
        max_silence_duration_ms=1500,
        format_fallback_order=["wav", "mp3"],
        max_buffer_samples=0,
        transcript_path=str(tmp_path / "transcripts.srt"),
        clip_archive_dir=None,
        settings_path=None,
    )
    params.update(overrides)
    return PipelineSettings(**params)


def _echo_handler(formats_seen):
    def handler(request):
        fmt = json.loads(request.content)["messages"][0]["content"][1]["input_audio"]["format"]
        formats_seen.append(fmt)
        if fmt == "wav":
            return httpx.Response(500)
        return httpx.Response(200, json={"choices": [{"message": {"content": "testing one two."}}]})

    return handler


def test_inline_pipeline_end_to_end(tmp_path):
    formats_seen = []
    http = httpx.Client(transport=httpx.MockTransport(_echo_handler(formats_seen)))
    received = []
    coordinator = PipelineCoordinator(
        _settings(tmp_path, buffer_duration_ms=10_000),
        http_client=http,
        inline=True,
        on_result=received.append,
    )
    events = []
    coordinator.add_listener(events.append)
    coordinator.start()

    now = 1000.0
    chunks = [np.zeros(CHUNK)] * 16 + [np.full(CHUNK, 0.5)] * 5 + [np.zeros(CHUNK)] * 16
    clips = []
    for chunk in chunks:
        clip = coordinator.ingest(chunk, now)
        if clip is not None:
            clips.append(clip)
        now += 100
    coordinator.stop()

    assert [clip.reason for clip in clips] == [FlushReason.SILENCE_AFTER_SPEECH]
    assert formats_seen == ["wav", "mp3"]
    assert [result.text for result in received] == ["testing one two."]
    assert coordinator.segmenter.pending_transcription is False
    assert any(isinstance(event, SpeechStarted) for event in events)
    assert "testing one two." in (tmp_path / "transcripts.srt").read_text(encoding="utf-8")
    assert any("Transcript: testing one two." in line for line in coordinator.logger.get())


def test_threaded_pipeline_releases_gate_after_failure(tmp_path):
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    received = []
    coordinator = PipelineCoordinator(_settings(tmp_path), http_client=http, on_result=received.append)
    coordinator.start()
    try:
        now = 1000.0
        for _ in range(31):
            coordinator.ingest(np.zeros(CHUNK), now)
            now += 100
        assert coordinator.wait_idle(timeout=5)
        assert len(received) == 1
        assert received[0].error is not None
        assert coordinator.stats().pending_transcription is False
        assert not (tmp_path / "transcripts.srt").exists()
    finally:
        coordinator.stop()


def test_manual_flush_dispatches_buffer(tmp_path):
    formats_seen = []
    http = httpx.Client(transport=httpx.MockTransport(_echo_handler(formats_seen)))
    received = []
    coordinator = PipelineCoordinator(
        _settings(tmp_path), http_client=http, inline=True, on_result=received.append, clock=lambda: 1500.0
    )
    coordinator.start()
    coordinator.ingest(np.full(CHUNK, 0.2), 1000.0)

    clip = coordinator.flush()
    coordinator.stop()

    assert clip is not None
    assert clip.reason is FlushReason.MANUAL_FLUSH
    assert received[0].clip["reason"] == "manual-flush"


def test_clip_archive_is_written_when_configured(tmp_path):
    archive_dir = tmp_path / "clips"
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"text": "hi"})))
    coordinator = PipelineCoordinator(
        _settings(tmp_path, clip_archive_dir=str(archive_dir)), http_client=http, inline=True
    )
    coordinator.start()
    now = 1000.0
    for _ in range(31):
        coordinator.ingest(np.zeros(CHUNK), now)
        now += 100
    coordinator.stop()

    assert len(list(archive_dir.glob("*.flac"))) == 1


def test_stored_settings_are_applied_to_the_pipeline(tmp_path):
    store_path = tmp_path / "tuned.json"
    SettingsStore(store_path).update(silence_threshold=0.3, max_silence_duration_ms=800.0)
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"text": "hi"})))

    coordinator = PipelineCoordinator(
        _settings(tmp_path, settings_path=str(store_path)), http_client=http, inline=True
    )

    assert coordinator.settings.silence_threshold == 0.3
    assert coordinator.segmenter.silence_threshold == 0.3
    assert coordinator.segmenter.max_silence_duration_ms == 800.0
    assert coordinator.settings.stt_endpoint == "https://stt.example.com/openai"
    coordinator.stop()


def test_stop_discards_unflushed_audio_and_detaches_listeners(tmp_path):
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"text": "hi"})))
    coordinator = PipelineCoordinator(_settings(tmp_path), http_client=http, inline=True)
    events = []
    coordinator.add_listener(events.append)
    coordinator.start()
    coordinator.ingest(np.full(CHUNK, 0.2), 1000.0)
    coordinator.remove_listener(events.append)
    coordinator.ingest(np.full(CHUNK, 0.2), 1100.0)
    coordinator.stop()

    assert len(events) == 2
    assert coordinator.segmenter.buffered_samples == 0


def test_format_result_plain_and_json():
    ok = TranscriptionResult(text="hello", confidence=0.9, timestamp=1.0, format="wav", attempts=1)
    failed = TranscriptionResult(text="[x]", confidence=0.0, timestamp=2.0, error="boom")

    assert format_result(ok) == "> hello"
    assert format_result(failed) == "! [x]"

    decoded = json.loads(format_result(ok, as_json=True))
    assert decoded["text"] == "hello"
    assert decoded["format"] == "wav"
    assert "error" not in decoded
    assert json.loads(format_result(failed, as_json=True))["error"] == "boom"
