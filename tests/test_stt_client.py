import json

import httpx
import pytest

from earshot.config import PipelineSettings
from earshot.services.stt_client import SttClient, SttError, extract_text


def make_client(transport, **overrides):
    params = dict(stt_endpoint="https://stt.example.com/openai")
    params.update(overrides)
    settings = PipelineSettings(**params)
    return SttClient(settings, client=httpx.Client(transport=transport))


def test_request_body_and_headers():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        captured["headers"] = request.headers
        return httpx.Response(200, json={"choices": [{"message": {"content": " hello there "}}]})

    client = make_client(httpx.MockTransport(handler), stt_api_key="secret", stt_referrer="earshot-tests")
    text = client.transcribe("QUJD", "mp3")

    assert text == "hello there"
    body = captured["body"]
    assert body["model"] == "openai-audio"
    message = body["messages"][0]
    assert message["role"] == "user"
    assert message["content"][0]["type"] == "text"
    audio = message["content"][1]
    assert audio == {"type": "input_audio", "input_audio": {"data": "QUJD", "format": "mp3"}}
    assert captured["headers"]["authorization"] == "Bearer secret"
    assert captured["headers"]["referer"] == "earshot-tests"


def test_no_auth_header_without_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"text": "ok"})

    client = make_client(httpx.MockTransport(handler), stt_api_key=None)
    assert client.transcribe("AA==", "wav") == "ok"
    assert seen["auth"] is None


def test_non_success_status_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
    client = make_client(transport)
    with pytest.raises(SttError) as excinfo:
        client.transcribe("AA==", "wav")
    assert excinfo.value.status_code == 503
    assert "503" in str(excinfo.value)


def test_blank_text_raises():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "   "}}]})
    )
    client = make_client(transport)
    with pytest.raises(SttError, match="no transcription text"):
        client.transcribe("AA==", "wav")


def test_timeout_raises_stt_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(httpx.MockTransport(handler))
    with pytest.raises(SttError, match="timed out"):
        client.transcribe("AA==", "webm")


def test_transport_error_raises_stt_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(httpx.MockTransport(handler))
    with pytest.raises(SttError, match="refused"):
        client.transcribe("AA==", "wav")


def test_plain_text_body_is_accepted():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="just words"))
    client = make_client(transport)
    assert client.transcribe("AA==", "wav") == "just words"


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"choices": [{"message": {"content": "a"}}]}, "a"),
        ({"choices": [{"text": "b"}]}, "b"),
        ({"content": "c"}, "c"),
        ({"response": "d"}, "d"),
        ({"text": "e"}, "e"),
        ("f", "f"),
        ({"choices": []}, ""),
        ({"unexpected": 1}, ""),
        ([1, 2], ""),
    ],
)
def test_extract_text_shapes(payload, expected):
    assert extract_text(payload) == expected
