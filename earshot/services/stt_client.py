"""HTTP client for the chat-completions style speech-to-text endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import PipelineSettings

LOGGER = logging.getLogger("earshot.stt")


class SttError(Exception):
    """One transcription request failed (transport, status, or empty text)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SttClient:
    def __init__(
        self,
        settings: PipelineSettings,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings
        self.timeout = settings.request_timeout_sec
        self._client = client or httpx.Client(timeout=self.timeout)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "User-Agent": "earshot/1.0"}
        if self.settings.stt_api_key:
            headers["Authorization"] = f"Bearer {self.settings.stt_api_key}"
        if self.settings.stt_referrer:
            headers["Referer"] = self.settings.stt_referrer
        return headers

    def build_payload(self, audio_b64: str, audio_format: str) -> Dict[str, Any]:
        return {
            "model": self.settings.stt_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.settings.stt_prompt},
                        {
                            "type": "input_audio",
                            "input_audio": {"data": audio_b64, "format": audio_format},
                        },
                    ],
                }
            ],
        }

    def transcribe(self, audio_b64: str, audio_format: str) -> str:
        """POST one clip tagged with ``audio_format``; returns non-empty text or raises."""
        url = self.settings.stt_endpoint
        if not url:
            raise SttError("STT endpoint missing")
        try:
            resp = self._client.post(
                url,
                headers=self._headers(),
                json=self.build_payload(audio_b64, audio_format),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SttError(f"STT request timed out after {self.timeout:.0f}s ({audio_format})") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise SttError(
                f"STT API error: {status} {exc.response.reason_phrase} ({audio_format})",
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise SttError(f"STT request failed ({audio_format}): {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = resp.text
        text = extract_text(data)
        if not text.strip():
            raise SttError(f"STT returned no transcription text ({audio_format})", status_code=resp.status_code)
        return text.strip()

    def close(self) -> None:
        self._client.close()


def extract_text(data: Any) -> str:
    """Pull the transcript out of the shapes the endpoint is known to return."""
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if content is None:
            content = first.get("text")
        return content if isinstance(content, str) else ""
    for key in ("content", "response", "text"):
        value = data.get(key)
        if isinstance(value, str):
            return value
    return ""
