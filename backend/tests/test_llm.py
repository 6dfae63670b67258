"""Tests for the text generation client and JSON extraction."""
from __future__ import annotations

import pytest
import requests

from agentmarket.errors import UpstreamGenerationError
from agentmarket.llm import TextGenerator
from agentmarket.utils import extract_json_object


class StubResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class StubSession:
    def __init__(self, response=None, exc=None):
        self.headers = {}
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        if self.exc is not None:
            raise self.exc
        return self.response


def _reply(content):
    return StubResponse(body={"choices": [{"message": {"content": content}}]})


def test_posts_chat_completion_and_parses_json():
    session = StubSession(_reply('Sure!\n```json\n{"diary": "Big day.", "mood": "excited"}\n```'))
    gen = TextGenerator(base_url="http://llm.local/", model="m", api_key="k", timeout=3, session=session)
    assert gen.generate_json("sys", "prompt", max_tokens=50) == {"diary": "Big day.", "mood": "excited"}

    url, payload, timeout = session.calls[0]
    assert url == "http://llm.local/v1/chat/completions"
    assert payload["model"] == "m"
    assert payload["max_tokens"] == 50
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert timeout == 3
    assert session.headers["Authorization"] == "Bearer k"


def test_disabled_without_base_url():
    gen = TextGenerator(base_url="", session=StubSession())
    assert gen.enabled is False
    with pytest.raises(UpstreamGenerationError):
        gen.complete("sys", "prompt")


@pytest.mark.parametrize("session", [
    StubSession(exc=requests.Timeout("slow")),
    StubSession(exc=requests.ConnectionError("refused")),
    StubSession(StubResponse(status_code=503, text="overloaded")),
    StubSession(StubResponse(body={"unexpected": True})),
    StubSession(StubResponse(body=None)),
    StubSession(_reply("no json here at all")),
])
def test_every_failure_is_an_upstream_error(session):
    gen = TextGenerator(base_url="http://llm.local", session=session)
    with pytest.raises(UpstreamGenerationError):
        gen.generate_json("sys", "prompt")


def test_extract_json_object():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('text {"a": {"b": "}"}} tail') == {"a": {"b": "}"}}
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object("{broken") is None
    assert extract_json_object("") is None
