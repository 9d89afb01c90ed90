"""Tests for the posts (X / Twitter v2) client."""

import asyncio

import httpx

from xinvest.config import Config
from xinvest.providers.posts import PostsClient


def _fetch(handler, handle="alice", token="bearer-token"):
    config = Config(twitter_bearer_token=token, max_retries=1, retry_backoff_factor=0)

    async def _call():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = PostsClient(config, http_client, asyncio.Semaphore(2))
            return await client.fetch_posts(handle)

    return asyncio.run(_call())


def test_fetches_user_then_timeline():
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.path.endswith("/users/by/username/alice"):
            return httpx.Response(200, json={"data": {"id": "42", "username": "alice"}})
        if request.url.path.endswith("/users/42/tweets"):
            return httpx.Response(
                200,
                json={"data": [{"id": "1", "text": "Buying $NVDA"}, {"id": "2", "text": "  "}, {"id": "3", "text": "AI is the future"}]},
            )
        return httpx.Response(404)

    posts = _fetch(handler)

    assert posts == ["Buying $NVDA", "AI is the future"]
    assert requests[0].headers["Authorization"] == "Bearer bearer-token"
    assert requests[1].url.params["max_results"] == "5"
    assert requests[1].url.params["tweet.fields"] == "text,created_at"


def test_unknown_user_returns_empty():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"detail": "Could not find user"}]})

    assert _fetch(handler, handle="nobody") == []


def test_http_failure_returns_empty():
    def handler(request):
        return httpx.Response(403, json={"title": "Forbidden"})

    assert _fetch(handler) == []


def test_missing_token_skips_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert _fetch(handler, token=None) == []


def test_malformed_handle_returns_empty_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert _fetch(handler, handle="foo\nbar") == []
    assert _fetch(handler, handle="a/../..") == []
    assert _fetch(handler, handle="x" * 16) == []


def test_invalid_url_is_caught():
    def handler(request):
        raise httpx.InvalidURL("bad url")

    assert _fetch(handler) == []
