"""Tests for the three-tier portfolio generator."""

import asyncio
import json

import httpx
import pytest

from xinvest.config import Config
from xinvest.domain.models import PortfolioItem
from xinvest.providers.completion import CompletionClient, CompletionError
from xinvest.services.portfolio_generator import (
    DEFAULT_TICKERS,
    EMERGENCY_REASONING,
    GenerationError,
    PortfolioGenerator,
    PortfolioParseError,
    TIER_EMERGENCY,
    TIER_PRIMARY,
    TIER_RETRY,
    coerce_weight,
    equal_weight_items,
    normalize_weights,
    parse_portfolio_payload,
    parse_ticker_list,
)


class FakeCompletion:
    """Replays canned replies; an Exception instance in the list is raised."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, messages, temperature=0.7, json_mode=False):
        self.calls.append({"messages": messages, "temperature": temperature, "json_mode": json_mode})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _payload(weights, reasoning="Tech heavy."):
    return json.dumps(
        {
            "portfolio": [{"ticker": t, "weight": w} for t, w in weights.items()],
            "reasoning": reasoning,
        }
    )


TEN_EVEN = {t: 10 for t in ("AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "AMD", "NFLX", "CRM")}


class TestParsing:
    def test_coerce_weight_accepts_numbers_and_percent_strings(self):
        assert coerce_weight(15) == 15.0
        assert coerce_weight("12.5%") == 12.5
        assert coerce_weight(" 7 ") == 7.0

    def test_coerce_weight_rejects_garbage(self):
        assert coerce_weight(None) is None
        assert coerce_weight(True) is None
        assert coerce_weight("lots") is None
        assert coerce_weight(float("nan")) is None

    def test_payload_with_code_fences(self):
        content = "```json\n" + _payload(TEN_EVEN) + "\n```"
        items, reasoning = parse_portfolio_payload(content)
        assert len(items) == 10
        assert reasoning == "Tech heavy."

    def test_missing_portfolio_raises(self):
        with pytest.raises(PortfolioParseError):
            parse_portfolio_payload('{"reasoning": "none"}')

    def test_invalid_json_raises(self):
        with pytest.raises(PortfolioParseError):
            parse_portfolio_payload("I think you should buy AAPL")

    def test_duplicate_tickers_merge(self):
        content = json.dumps(
            {"portfolio": [{"ticker": "aapl", "weight": 30}, {"ticker": "AAPL", "weight": 20}, {"ticker": "MSFT", "weight": 50}]}
        )
        items, _ = parse_portfolio_payload(content)
        assert {i.ticker: i.weight for i in items} == {"AAPL": 50.0, "MSFT": 50.0}

    def test_entries_without_weight_are_skipped(self):
        content = json.dumps(
            {"portfolio": [{"ticker": "AAPL", "weight": 60}, {"ticker": "MSFT"}, {"weight": 10}, {"ticker": "NVDA", "weight": 40}]}
        )
        items, _ = parse_portfolio_payload(content)
        assert [i.ticker for i in items] == ["AAPL", "NVDA"]

    def test_parse_ticker_list_variants(self):
        assert parse_ticker_list('["aapl", "MSFT"]') == ["AAPL", "MSFT"]
        assert parse_ticker_list('{"tickers": ["NVDA"]}') == ["NVDA"]
        assert parse_ticker_list('[{"ticker": "TSLA"}]') == ["TSLA"]
        assert parse_ticker_list("not json") == []


class TestNormalizeWeights:
    def test_within_tolerance_is_unchanged(self):
        items = [PortfolioItem("A", 50.5), PortfolioItem("B", 50.0)]
        result = normalize_weights(items)
        assert [i.weight for i in result] == [50.5, 50.0]

    def test_rescales_to_100(self):
        items = [PortfolioItem("A", 30), PortfolioItem("B", 10)]
        result = normalize_weights(items)
        assert result[0].weight == pytest.approx(75.0)
        assert result[1].weight == pytest.approx(25.0)

    def test_negative_weights_count_as_zero(self):
        items = [PortfolioItem("A", -20), PortfolioItem("B", 50)]
        result = normalize_weights(items)
        assert result[0].weight == 0.0
        assert result[1].weight == pytest.approx(100.0)

    def test_zero_sum_raises(self):
        with pytest.raises(PortfolioParseError):
            normalize_weights([PortfolioItem("A", 0), PortfolioItem("B", 0)])


def test_equal_weight_items_tops_up_from_defaults():
    items = equal_weight_items(["ZZZ", "zzz", "AAPL"])
    assert len(items) == 10
    assert len({i.ticker for i in items}) == 10
    assert items[0].ticker == "ZZZ"
    assert all(i.weight == 10.0 for i in items)


class TestGenerator:
    def test_primary_tier_success(self):
        fake = FakeCompletion([_payload(TEN_EVEN)])
        portfolio = asyncio.run(PortfolioGenerator(fake).generate("alice", ["post one", "post two"]))

        assert portfolio.tier == TIER_PRIMARY
        assert portfolio.posts == ["post one", "post two"]
        assert portfolio.total_weight == pytest.approx(100.0)
        assert len(fake.calls) == 1
        assert fake.calls[0]["json_mode"] is True
        assert "post one\n---\npost two" in fake.calls[0]["messages"][1]["content"]

    def test_bullish_aapl_posts_weight_aapl_highest(self):
        others = ("MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "AMD", "NFLX", "CRM")
        weights = {"AAPL": 28}
        weights.update({t: 8 for t in others})
        fake = FakeCompletion([_payload(weights, "Heavy on AAPL given strong conviction.")])
        posts = ["I love AAPL, buying more!", "AAPL earnings will crush it"]

        portfolio = asyncio.run(PortfolioGenerator(fake).generate("testuser", posts))

        assert len(portfolio.items) == 10
        assert "AAPL" in portfolio.tickers
        assert portfolio.weights["AAPL"] > max(portfolio.weights[t] for t in others)
        assert abs(portfolio.total_weight - 100) <= 1

    def test_malformed_primary_falls_back_to_retry(self):
        fake = FakeCompletion(["not json at all", _payload(TEN_EVEN)])
        posts = ["a", "b", "c", "d", "e"]
        portfolio = asyncio.run(PortfolioGenerator(fake).generate("bob", posts))

        assert portfolio.tier == TIER_RETRY
        retry_prompt = fake.calls[1]["messages"][1]["content"]
        assert "a | b | c" in retry_prompt
        assert "| d" not in retry_prompt

    def test_both_structured_tiers_fail_then_emergency(self):
        emergency = json.dumps(list(DEFAULT_TICKERS))
        fake = FakeCompletion([CompletionError("boom"), '{"portfolio": []}', emergency])
        portfolio = asyncio.run(PortfolioGenerator(fake).generate("carol", []))

        assert portfolio.tier == TIER_EMERGENCY
        assert portfolio.rationale == EMERGENCY_REASONING
        assert len(portfolio.items) == 10
        assert all(item.weight == 10.0 for item in portfolio.items)

    def test_emergency_short_reply_is_padded(self):
        fake = FakeCompletion(["bad", "bad", '["PLTR", "COIN"]'])
        portfolio = asyncio.run(PortfolioGenerator(fake).generate("dave", ["x"]))

        assert portfolio.tickers[:2] == ["PLTR", "COIN"]
        assert len(portfolio.items) == 10
        assert portfolio.total_weight == pytest.approx(100.0)

    def test_non_text_reply_falls_through_to_retry(self):
        async def _generate():
            def handler(request):
                body = json.loads(request.content)
                if body.get("response_format"):
                    content = [{"type": "text", "text": "hi"}]
                else:
                    content = _payload(TEN_EVEN)
                return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

            config = Config(completion_api_key="k", max_retries=1, retry_backoff_factor=0)
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
                client = CompletionClient(config, http_client, asyncio.Semaphore(1))
                return await PortfolioGenerator(client).generate("h", [])

        portfolio = asyncio.run(_generate())

        assert portfolio.tier == TIER_RETRY
        assert len(portfolio.items) == 10

    def test_emergency_service_failure_raises(self):
        fake = FakeCompletion([CompletionError("down")] * 3)
        with pytest.raises(GenerationError):
            asyncio.run(PortfolioGenerator(fake).generate("erin", ["x"]))

    def test_unnormalized_weights_are_rescaled(self):
        fake = FakeCompletion([_payload({t: 20 for t in TEN_EVEN})])
        portfolio = asyncio.run(PortfolioGenerator(fake).generate("frank", ["x"]))
        assert portfolio.total_weight == pytest.approx(100.0)
        assert all(w == pytest.approx(10.0) for w in portfolio.weights.values())
