"""
Weighted portfolio valuation and P&L.

Two policies are kept as separate functions:

* ``resolve_weights``: a ticker without an explicit weight gets an equal
  share of 100 / number_of_tickers instead of zero.
* ``window_start_index`` / ``pnl``: P&L is the weighted sum of each
  ticker's own percentage change, with the window start computed against
  that ticker's raw series length, not against the blended curve.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from ..domain.models import (
    CurveStats,
    PnLSnapshot,
    PricePoint,
    PriceSeries,
    ValuationCurve,
    ValuationPoint,
    normalize_ticker,
)
from ..providers.market import DEFAULT_WINDOW, PriceSeriesClient
from .series_aligner import AlignedSeriesSet, align

logger = logging.getLogger(__name__)

WINDOW_1D = "1D"
WINDOW_30D = "30D"
WINDOW_ALL = "ALL"
PNL_WINDOWS = (WINDOW_1D, WINDOW_30D, WINDOW_ALL)

# History fetched for each P&L window
PNL_HISTORY_WINDOWS = {WINDOW_1D: "1M", WINDOW_30D: "3M", WINDOW_ALL: "1Y"}

REBASE_LEVEL = 100.0
NOTIONAL_INVESTMENT = 1000.0


def _weight_lookup(weights: Optional[Mapping[str, float]]) -> Dict[str, Optional[float]]:
    lookup: Dict[str, Optional[float]] = {}
    for ticker, weight in (weights or {}).items():
        lookup[normalize_ticker(ticker)] = None if weight is None else float(weight)
    return lookup


def resolve_weights(
    tickers: Iterable[str], weights: Optional[Mapping[str, float]]
) -> Dict[str, float]:
    """
    Weight per ticker, giving unweighted tickers 100 / number_of_tickers.

    A ticker counts as unweighted when it is missing from ``weights`` or
    mapped to None. Explicit zeros are kept.
    """
    unique = list(dict.fromkeys(normalize_ticker(t) for t in tickers if normalize_ticker(t)))
    if not unique:
        return {}

    lookup = _weight_lookup(weights)
    equal_share = 100.0 / len(unique)
    resolved = {}
    for ticker in unique:
        weight = lookup.get(ticker)
        resolved[ticker] = equal_share if weight is None else weight
    return resolved


def valuate(aligned: AlignedSeriesSet, weights: Optional[Mapping[str, float]]) -> ValuationCurve:
    """
    Blend aligned series into one value curve.

    For each date, over the tickers present on it:
    ``value = sum(price * w / 100) / sum(w) * 100``. Dates where the
    present weight is zero are left out rather than emitted as 0.
    """
    if aligned.is_empty:
        return ValuationCurve()

    resolved = resolve_weights(aligned.tickers, weights)
    frame = aligned.frame
    weight_row = pd.Series([resolved.get(t, 0.0) for t in frame.columns], index=frame.columns, dtype=float)

    present = frame.notna()
    weighted_sum = frame.fillna(0.0).mul(weight_row / 100.0, axis=1).sum(axis=1)
    weight_total = present.astype(float).mul(weight_row, axis=1).sum(axis=1)

    points = [
        ValuationPoint(day, float(total_value / total_weight * 100.0), float(total_weight))
        for day, total_value, total_weight in zip(frame.index, weighted_sum, weight_total)
        if total_weight > 0
    ]
    return ValuationCurve(points)


def rebase_series(series: PriceSeries, level: float = REBASE_LEVEL) -> PriceSeries:
    """Express a series relative to its first positive price (that point == level)."""
    base = next((p.value for p in series.points if p.value > 0), None)
    if base is None:
        return PriceSeries(series.ticker)
    start = next(i for i, p in enumerate(series.points) if p.value > 0)
    return PriceSeries(
        series.ticker,
        [PricePoint(p.date, p.value / base * level) for p in series.points[start:]],
    )


def notional_value_curve(
    series: Iterable[PriceSeries], notional: float = NOTIONAL_INVESTMENT
) -> ValuationCurve:
    """Dollar curve: ``notional`` bought of every ticker at its first price, summed per date."""
    totals: Dict = {}
    for item in series:
        rebased = rebase_series(item, level=notional)
        for point in rebased.points:
            totals[point.date] = totals.get(point.date, 0.0) + point.value
    return ValuationCurve([ValuationPoint(day, totals[day]) for day in sorted(totals)])


def window_key(window: str) -> str:
    """Canonical P&L window label; raises ValueError for unknown windows."""
    key = (window or "").strip().upper()
    if key not in PNL_HISTORY_WINDOWS:
        raise ValueError(f"Unknown P&L window: {window}")
    return key


def window_start_index(length: int, window: str) -> int:
    """Start index into a series of ``length`` points for a P&L window."""
    key = window_key(window)
    if key == WINDOW_1D:
        return max(0, length - 2)
    if key == WINDOW_30D:
        return max(0, length - 30)
    return 0


def ticker_change(series: PriceSeries, window: str) -> Optional[float]:
    """Percentage change of one ticker over ``window``; None with < 2 points or a zero start."""
    if len(series) < 2:
        return None
    values = series.values
    start = values[window_start_index(len(values), window)]
    end = values[-1]
    if start <= 0:
        return None
    return (end - start) / start * 100.0


def pnl(
    series_by_ticker: Mapping[str, PriceSeries],
    weights: Optional[Mapping[str, float]],
    window: str,
) -> float:
    """
    Weighted P&L for a window: sum of ticker_change * weight / 100.

    Tickers with a missing or zero weight, or fewer than two points, are
    skipped. Returns 0 when no ticker contributes.
    """
    window = window_key(window)
    lookup = _weight_lookup(weights)

    total = 0.0
    valid = 0
    for ticker in sorted(series_by_ticker):
        weight = lookup.get(normalize_ticker(ticker)) or 0.0
        if weight <= 0:
            continue
        change = ticker_change(series_by_ticker[ticker], window)
        if change is None:
            continue
        total += change * weight / 100.0
        valid += 1

    return total if valid > 0 else 0.0


def curve_stats(curve: ValuationCurve) -> Optional[CurveStats]:
    """Current/previous value, change and range of a curve; None when empty."""
    if curve.is_empty:
        return None
    values = curve.values
    current = values[-1]
    previous = values[-2] if len(values) > 1 else 0.0
    change = current - previous
    return CurveStats(
        current=current,
        previous=previous,
        change=change,
        change_percent=(change / previous * 100.0) if previous > 0 else 0.0,
        high=max(values),
        low=min(values),
    )


class ValuationService:
    """Fetches constituent series concurrently and values them."""

    def __init__(self, price_client: PriceSeriesClient):
        self.price_client = price_client

    async def historical_series(self, ticker: str, window: Optional[str] = DEFAULT_WINDOW) -> PriceSeries:
        return await self.price_client.fetch(ticker, window)

    async def portfolio_value_curve(
        self,
        tickers: Sequence[str],
        weights: Optional[Mapping[str, float]] = None,
        window: Optional[str] = DEFAULT_WINDOW,
        rebase: bool = True,
    ) -> ValuationCurve:
        """
        Weighted value curve for ``tickers`` over ``window``.

        With ``rebase`` each series is first expressed relative to its
        first price so price magnitudes do not distort the blend.
        """
        fetched = await self.price_client.fetch_many(tickers, window)
        inputs: List[PriceSeries] = [rebase_series(s) if rebase else s for s in fetched.values()]
        aligned = align(inputs)
        if aligned.is_empty:
            logger.warning("No price data for any of %s, no valuation possible", list(fetched))
        return valuate(aligned, weights)

    async def notional_curve(self, tickers: Sequence[str], window: Optional[str] = DEFAULT_WINDOW) -> ValuationCurve:
        fetched = await self.price_client.fetch_many(tickers, window)
        return notional_value_curve(fetched.values())

    async def window_pnl(
        self, tickers: Sequence[str], weights: Optional[Mapping[str, float]], window: str
    ) -> float:
        history_window = PNL_HISTORY_WINDOWS[window_key(window)]
        fetched = await self.price_client.fetch_many(tickers, history_window)
        return pnl(fetched, weights, window)

    async def pnl_snapshot(
        self, tickers: Sequence[str], weights: Optional[Mapping[str, float]]
    ) -> PnLSnapshot:
        """1-day, 30-day and all-time P&L, computed concurrently."""
        pnl_1d, pnl_30d, pnl_all_time = await asyncio.gather(
            *(self.window_pnl(tickers, weights, window) for window in PNL_WINDOWS)
        )
        return PnLSnapshot(pnl_1d=pnl_1d, pnl_30d=pnl_30d, pnl_all_time=pnl_all_time)

