"""
Text generation client for narrative content.

Talks to any OpenAI-compatible chat-completions endpoint (OpenAI, vLLM,
Ollama's compatibility layer). Every failure mode surfaces as
UpstreamGenerationError so callers can collect it per unit of work.
"""
from __future__ import annotations

import logging
from typing import Optional

import requests

from agentmarket import config
from agentmarket.errors import UpstreamGenerationError
from agentmarket.utils import extract_json_object

_log = logging.getLogger(__name__)


class TextGenerator:
    def __init__(
        self,
        base_url: str = config.LLM_BASE_URL,
        model: str = config.LLM_MODEL,
        api_key: str = config.LLM_API_KEY,
        timeout: float = config.LLM_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def complete(self, system: str, prompt: str, max_tokens: int = 400) -> str:
        if not self.enabled:
            raise UpstreamGenerationError("text generation is not configured (LLM_BASE_URL)")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.9,
            "max_tokens": max_tokens,
        }
        try:
            r = self._session.post(f"{self.base_url}/v1/chat/completions", json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise UpstreamGenerationError(f"text generation timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamGenerationError(f"text generation request failed: {e}") from e
        if r.status_code >= 400:
            raise UpstreamGenerationError(f"text generation returned {r.status_code}: {r.text[:200]}")
        try:
            return str(r.json()["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamGenerationError("text generation returned an unexpected body") from e

    def generate_json(self, system: str, prompt: str, max_tokens: int = 400) -> dict:
        """Complete and parse the first JSON object in the reply."""
        text = self.complete(system, prompt, max_tokens=max_tokens)
        obj = extract_json_object(text)
        if obj is None:
            _log.debug("Unparseable generation: %r", text[:200])
            raise UpstreamGenerationError("text generation did not return a JSON object")
        return obj
