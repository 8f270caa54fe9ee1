"""Server-side relay to the OpenAI HTTP API so the key never reaches the browser."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from fuze.config import Settings
from fuze.extractor import CollaboratorError

log = logging.getLogger(__name__)

DEFAULT_TRANSCRIBE_MODEL = "whisper-1"


class OpenAIProxy:
    """Attach the server-held credential and relay status and body verbatim."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIProxy:
        return cls(settings.openai_api_key, settings.openai_base_url, settings.proxy_timeout_seconds)

    def _require_key(self) -> None:
        if not self._api_key:
            raise CollaboratorError("OpenAI API key not configured on server", status_code=500)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    async def chat(self, payload: dict[str, Any]) -> Any:
        self._require_key()
        try:
            async with self._client() as client:
                resp = await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as exc:
            log.error("OpenAI chat request failed: %s", exc)
            raise CollaboratorError("Failed to call OpenAI API", status_code=500) from exc
        return _relay(resp)

    async def transcribe(
        self, audio: bytes, *, filename: str = "audio.webm",
        content_type: str | None = None, model: str | None = None,
    ) -> Any:
        self._require_key()
        files = {"file": (filename, audio, content_type or "application/octet-stream")}
        data = {"model": model or DEFAULT_TRANSCRIBE_MODEL}
        try:
            async with self._client() as client:
                resp = await client.post("/audio/transcriptions", files=files, data=data)
        except httpx.HTTPError as exc:
            log.error("OpenAI transcription request failed: %s", exc)
            raise CollaboratorError("Failed to transcribe audio", status_code=500) from exc
        return _relay(resp)


def _relay(resp: httpx.Response) -> Any:
    try:
        body = resp.json()
    except ValueError:
        body = {"error": resp.text}
    if resp.is_error:
        raise CollaboratorError(
            f"Upstream returned {resp.status_code}", status_code=resp.status_code, body=body,
        )
    return body
