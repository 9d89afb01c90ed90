"""
Portfolio generation from social posts via a completion service.

The generator always returns a usable portfolio. It tries, in order:

1. primary  - full prompt with every post, JSON mode, strict 10-ticker contract
2. retry    - terse prompt with the first three posts, same contract
3. emergency - plain list of ten popular tickers, equal weight 10 each

Each tier's parse or service failure is logged and demoted to the next
tier. Only a service failure at the emergency tier surfaces, as
``GenerationError``.
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..domain.models import Portfolio, PortfolioItem, normalize_ticker
from ..providers.completion import CompletionClient, CompletionError

logger = logging.getLogger(__name__)

PORTFOLIO_SIZE = 10
TARGET_WEIGHT = 100.0
WEIGHT_TOLERANCE = 1.0
RETRY_POST_LIMIT = 3

TIER_PRIMARY = "primary"
TIER_RETRY = "retry"
TIER_EMERGENCY = "emergency"

# Used to top up an emergency reply that is malformed or short
DEFAULT_TICKERS = ("AAPL", "MSFT", "NVDA", "AMZN", "GOOGL", "META", "TSLA", "AVGO", "JPM", "V")

EMERGENCY_REASONING = "Generated a diversified equal-weighted portfolio based on current market trends."

PRIMARY_SYSTEM_PROMPT = """You are a creative financial advisor and stock picker. Your job is to ALWAYS recommend exactly 10 stocks based on a user's personality, interests, and post content, WITH PORTFOLIO WEIGHTS.

IMPORTANT RULES:
1. You MUST return exactly 10 stock tickers with weights, no matter what
2. If posts mention stocks directly, give those higher weights based on sentiment/conviction
3. If posts don't mention stocks, infer from their interests and assign weights based on relevance
4. Weights should reflect: sentiment strength, frequency of mentions, conviction level, and relevance to their interests
5. ALL weights MUST sum to exactly 100 (representing 100% of portfolio)
6. Higher weights (15-20%) for stocks they're most bullish on or most relevant to their interests
7. Lower weights (5-8%) for diversification picks
8. Return ONLY valid US stock tickers (e.g., AAPL, TSLA, NVDA, etc.)

Return ONLY a JSON object with:
- "portfolio": an array of EXACTLY 10 objects, each with:
  - "ticker": string (e.g., "AAPL")
  - "weight": number (percentage, e.g., 15 for 15%)
- "reasoning": a 2-3 sentence string explaining the portfolio allocation strategy

Example format:
{
  "portfolio": [
    {"ticker": "AAPL", "weight": 20},
    {"ticker": "TSLA", "weight": 15},
    ...
  ],
  "reasoning": "Allocated higher weights to AI and tech stocks based on strong bullish sentiment in posts."
}

CRITICAL: Weights MUST sum to 100. Do not include markdown formatting or any text outside the JSON object."""

RETRY_SYSTEM_PROMPT = (
    "You MUST pick exactly 10 US stock tickers with weights (summing to 100). Return ONLY this format:\n"
    '{"portfolio": [{"ticker": "AAPL", "weight": 15}, ...], "reasoning": "Brief explanation"}'
)

EMERGENCY_PROMPT = 'Give me 10 popular US stock tickers as a JSON array. Format: ["AAPL", "MSFT", ...]'


class PortfolioParseError(ValueError):
    """Completion text does not satisfy the portfolio contract."""


class GenerationError(Exception):
    """The completion service failed at the emergency tier."""


def strip_code_fences(content: Optional[str]) -> str:
    """Remove ```json / ``` wrappers a model may add around JSON."""
    return (content or "").replace("```json", "").replace("```JSON", "").replace("```", "").strip()


def coerce_weight(value: Any) -> Optional[float]:
    """Numeric weight from a number or a string like "15" / "15%"; None if unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        weight = float(value)
    elif isinstance(value, str):
        try:
            weight = float(value.strip().rstrip("%").strip())
        except ValueError:
            return None
    else:
        return None
    return weight if math.isfinite(weight) else None


def normalize_weights(
    items: Sequence[PortfolioItem],
    target: float = TARGET_WEIGHT,
    tolerance: float = WEIGHT_TOLERANCE,
) -> List[PortfolioItem]:
    """
    Rescale weights linearly to ``target`` when their sum is off by more than
    ``tolerance``. Negative weights count as 0; results are capped at 100.

    Raises:
        PortfolioParseError if the weights sum to zero
    """
    cleaned = [PortfolioItem(item.ticker, max(0.0, item.weight)) for item in items]
    total = sum(item.weight for item in cleaned)
    if total <= 0:
        raise PortfolioParseError("Portfolio weights sum to zero")

    if abs(total - target) > tolerance:
        logger.warning("Weights sum to %.2f, normalizing to %.0f", total, target)
        cleaned = [PortfolioItem(item.ticker, item.weight * target / total) for item in cleaned]

    return [PortfolioItem(item.ticker, min(TARGET_WEIGHT, item.weight)) for item in cleaned]


def parse_portfolio_payload(content: Optional[str]) -> Tuple[List[PortfolioItem], str]:
    """
    Parse a completion reply into weighted items and reasoning.

    Entries without a ticker or a numeric weight are skipped; repeated
    tickers are merged by summing their weights.

    Raises:
        PortfolioParseError on invalid JSON, a missing/empty portfolio array
        or no usable entries
    """
    text = strip_code_fences(content)
    try:
        data = json.loads(text or "{}")
    except json.JSONDecodeError as exc:
        raise PortfolioParseError(f"Reply is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PortfolioParseError("Reply is not a JSON object")

    raw_items = data.get("portfolio")
    if not isinstance(raw_items, list) or not raw_items:
        raise PortfolioParseError("No portfolio in response")

    merged: Dict[str, float] = {}
    for entry in raw_items:
        if not isinstance(entry, dict):
            continue
        ticker = normalize_ticker(entry.get("ticker"))
        weight = coerce_weight(entry.get("weight"))
        if not ticker or weight is None:
            continue
        merged[ticker] = merged.get(ticker, 0.0) + weight

    if not merged:
        raise PortfolioParseError("Portfolio has no usable entries")

    items = normalize_weights([PortfolioItem(t, w) for t, w in merged.items()])
    reasoning = data.get("reasoning") or data.get("rationale") or ""
    return items, str(reasoning).strip()


def parse_ticker_list(content: Optional[str]) -> List[str]:
    """Best-effort list of tickers from an emergency reply; [] when unusable."""
    try:
        data = json.loads(strip_code_fences(content) or "[]")
    except json.JSONDecodeError:
        return []

    if isinstance(data, dict):
        data = data.get("tickers") or data.get("portfolio") or []
    if not isinstance(data, list):
        return []

    tickers = []
    for entry in data:
        if isinstance(entry, dict):
            entry = entry.get("ticker")
        ticker = normalize_ticker(entry) if isinstance(entry, str) else ""
        if ticker:
            tickers.append(ticker)
    return tickers


def equal_weight_items(tickers: Sequence[str], size: int = PORTFOLIO_SIZE) -> List[PortfolioItem]:
    """Exactly ``size`` distinct tickers at 100/size each, topped up from DEFAULT_TICKERS."""
    chosen = list(dict.fromkeys(normalize_ticker(t) for t in tickers if normalize_ticker(t)))[:size]
    for fallback in DEFAULT_TICKERS:
        if len(chosen) >= size:
            break
        if fallback not in chosen:
            chosen.append(fallback)
    weight = TARGET_WEIGHT / size
    return [PortfolioItem(ticker, weight) for ticker in chosen]


class PortfolioGenerator:
    """Turns a handle's posts into a weighted 10-ticker portfolio."""

    def __init__(self, completion_client: CompletionClient):
        self.completion = completion_client

    @staticmethod
    def _primary_messages(handle: str, posts: Sequence[str]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": PRIMARY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Analyze these posts from @{handle} and create a weighted portfolio of 10 stocks:\n\n"
                    + "\n---\n".join(posts)
                ),
            },
        ]

    @staticmethod
    def _retry_messages(handle: str, posts: Sequence[str]) -> List[Dict[str, str]]:
        excerpt = " | ".join(posts[:RETRY_POST_LIMIT])
        return [
            {"role": "system", "content": RETRY_SYSTEM_PROMPT},
            {"role": "user", "content": f"User @{handle} posts: {excerpt}. Create weighted portfolio."},
        ]

    async def _attempt(
        self,
        tier: str,
        messages: List[Dict[str, str]],
        temperature: float,
        json_mode: bool,
    ) -> Optional[Tuple[List[PortfolioItem], str]]:
        try:
            content = await self.completion.complete(messages, temperature=temperature, json_mode=json_mode)
        except CompletionError as exc:
            logger.warning("Portfolio %s tier: completion failed: %s", tier, exc)
            return None

        try:
            return parse_portfolio_payload(content)
        except PortfolioParseError as exc:
            logger.warning("Portfolio %s tier: unusable reply (%s): %.200s", tier, exc, content)
            return None

    async def _emergency_items(self) -> List[PortfolioItem]:
        try:
            content = await self.completion.complete(
                [{"role": "user", "content": EMERGENCY_PROMPT}],
                temperature=0.5,
            )
        except CompletionError as exc:
            raise GenerationError(f"Portfolio generation failed: {exc}") from exc

        tickers = parse_ticker_list(content)
        if len(tickers) < PORTFOLIO_SIZE:
            logger.warning(
                "Emergency tier returned %d usable tickers, topping up from defaults", len(tickers)
            )
        return equal_weight_items(tickers)

    async def generate(self, handle: str, posts: Optional[Sequence[str]] = None) -> Portfolio:
        """
        Build a portfolio for ``handle`` from its posts (which may be empty).

        Returns:
            Portfolio with the posts attached and ``tier`` naming the level
            that produced it

        Raises:
            GenerationError if the completion service fails at the last tier
        """
        posts = [p for p in (posts or []) if p]

        result = await self._attempt(TIER_PRIMARY, self._primary_messages(handle, posts), 0.8, True)
        tier = TIER_PRIMARY
        if result is None:
            logger.info("Retrying portfolio generation for @%s with a simpler prompt", handle)
            result = await self._attempt(TIER_RETRY, self._retry_messages(handle, posts), 0.9, False)
            tier = TIER_RETRY

        if result is None:
            logger.error("Retry also failed for @%s, using emergency generation", handle)
            items, reasoning = await self._emergency_items(), EMERGENCY_REASONING
            tier = TIER_EMERGENCY
        else:
            items, reasoning = result

        portfolio = Portfolio(handle=handle, items=items, rationale=reasoning, posts=posts, tier=tier)
        logger.info(
            "Portfolio for @%s via %s tier: %s (total weight %.2f)",
            handle,
            tier,
            ", ".join(f"{i.ticker}={i.weight:.1f}" for i in items),
            portfolio.total_weight,
        )
        return portfolio
