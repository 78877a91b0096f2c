"""aiohttp client for a messages-style text-generation endpoint."""

from __future__ import annotations

import logging
import time
from typing import Any

import aiohttp

from .config import ModelSettings
from .errors import InvalidModelResponse, ModelAPIError

logger = logging.getLogger(__name__)


def extract_text(result: Any) -> str:
    """Return ``content[0].text`` from a messages API reply."""
    try:
        text = result["content"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise InvalidModelResponse("Missing content/text in API response") from exc
    if not isinstance(text, str):
        raise InvalidModelResponse("Response text is not a string")
    return text


class MessagesClient:
    """Sends one user prompt per request and returns the reply text.

    Usable directly as the pipeline's ``generate`` collaborator:
    ``NudgeSession(sid, client.generate)``.
    """

    def __init__(self, settings: ModelSettings | None = None) -> None:
        self._settings = settings or ModelSettings()
        self._http_session: aiohttp.ClientSession | None = None

    def build_request(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    def headers(self) -> dict[str, str]:
        api_key = self._settings.api_key
        if not api_key:
            raise ModelAPIError("Model API key is not configured")
        return {
            "x-api-key": api_key,
            "anthropic-version": self._settings.api_version,
            "content-type": "application/json",
        }

    async def generate(self, prompt: str) -> str:
        headers = self.headers()
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._settings.timeout)
            )

        start = time.monotonic()
        async with self._http_session.post(
            self._settings.api_url,
            json=self.build_request(prompt),
            headers=headers,
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise ModelAPIError(
                    f"Model API error: {resp.status} {resp.reason} - {body[:500]}",
                    status=resp.status,
                )
            result = await resp.json()

        text = extract_text(result).strip()
        usage = result.get("usage") if isinstance(result, dict) else None
        logger.debug(
            "Model replied in %dms (usage=%s): %r",
            int((time.monotonic() - start) * 1000),
            usage,
            text[:200],
        )
        return text

    async def close(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
