"""Tests for the chat completion client."""

import asyncio
import json

import httpx
import pytest

from xinvest.config import Config
from xinvest.providers.completion import CompletionClient, CompletionError


def _run(handler, config=None, **kwargs):
    config = config or Config(completion_api_key="test-key", max_retries=1, retry_backoff_factor=0)

    async def _call():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = CompletionClient(config, http_client, asyncio.Semaphore(2))
            return await client.complete([{"role": "user", "content": "hi"}], **kwargs)

    return asyncio.run(_call())


def test_returns_stripped_content_and_sends_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  {\"a\": 1}\n"}}]})

    content = _run(handler, temperature=0.8, json_mode=True)

    assert content == '{"a": 1}'
    assert seen["url"] == "https://api.x.ai/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "grok-code-fast-1"
    assert seen["body"]["temperature"] == 0.8
    assert seen["body"]["response_format"] == {"type": "json_object"}


def test_plain_mode_has_no_response_format():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "[]"}}]})

    _run(handler)
    assert "response_format" not in seen["body"]


def test_missing_api_key_raises():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(CompletionError):
        _run(handler, config=Config(completion_api_key=None))


def test_http_error_is_wrapped():
    def handler(request):
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(CompletionError, match="401"):
        _run(handler)


def test_response_without_choices_raises():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(CompletionError):
        _run(handler)


def test_non_json_body_raises():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(CompletionError):
        _run(handler)


def test_content_parts_list_raises():
    def handler(request):
        return httpx.Response(
            200, json={"choices": [{"message": {"content": [{"type": "text", "text": "hi"}]}}]}
        )

    with pytest.raises(CompletionError, match="not text"):
        _run(handler)
