"""
Chat Completion Client
======================
Thin HTTP client for an OpenAI-compatible chat completions endpoint
(Together AI by default). Used by the page text extractor and the
answer scorer.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.together.xyz/v1"


class LLMError(RuntimeError):
    """Raised when a completion cannot be obtained or read."""


class ChatCompletionClient:
    """
    Calls `POST {base_url}/chat/completions` and returns the first choice's
    message content. Every failure surfaces as `LLMError`.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, messages: list[dict]) -> str:
        if not self.api_key:
            raise LLMError("No API key configured (set TOGETHER_API_KEY)")

        url = f"{self.base_url}/chat/completions"
        payload = {"model": self.model, "messages": messages}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            resp = self.session.post(
                url,
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise LLMError(
                f"{self.model} timed out after {self.timeout}s"
            ) from e
        except requests.exceptions.RequestException as e:
            raise LLMError(f"{self.model} request failed: {e}") from e

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed completion response from {self.model}") from e

        logger.debug(f"{self.model} returned {len(content or '')} chars")
        return content or ""
