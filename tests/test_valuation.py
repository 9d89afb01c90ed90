"""Tests for weighted valuation and P&L windows."""

import asyncio
from datetime import date

import pytest

from xinvest.domain.models import PriceSeries, ValuationCurve, ValuationPoint
from xinvest.services.series_aligner import align
from xinvest.services.valuation import (
    ValuationService,
    curve_stats,
    notional_value_curve,
    pnl,
    rebase_series,
    resolve_weights,
    ticker_change,
    valuate,
    window_key,
    window_start_index,
)


def _series(ticker, values, start_day=1):
    return PriceSeries.from_pairs(
        ticker, [(date(2024, 1, start_day + i), v) for i, v in enumerate(values)]
    )


class TestResolveWeights:
    def test_explicit_weights_are_kept(self):
        assert resolve_weights(["A", "B"], {"A": 70, "B": 30}) == {"A": 70.0, "B": 30.0}

    def test_missing_weights_get_equal_share(self):
        assert resolve_weights(["A", "B", "C", "D"], {"A": 40}) == {
            "A": 40.0,
            "B": 25.0,
            "C": 25.0,
            "D": 25.0,
        }

    def test_none_weight_counts_as_missing(self):
        assert resolve_weights(["a", "b"], {"A": None, "B": 10}) == {"A": 50.0, "B": 10.0}

    def test_no_weights_at_all(self):
        assert resolve_weights(["A", "B"], None) == {"A": 50.0, "B": 50.0}

    def test_explicit_zero_is_kept(self):
        assert resolve_weights(["A", "B"], {"A": 0, "B": 100})["A"] == 0.0


class TestValuate:
    def test_empty_aligned_gives_empty_curve(self):
        assert valuate(align([]), {"A": 100}).is_empty

    def test_single_ticker_with_empty_partner(self):
        aapl = _series("AAPL", [100.0, 110.0, 120.0])
        aligned = align([aapl, PriceSeries("BADTICKER")])

        curve = valuate(aligned, {"AAPL": 60, "BADTICKER": 40})

        assert curve.values == pytest.approx([100.0, 110.0, 120.0])
        assert all(p.weight_total == 60.0 for p in curve.points)

    def test_order_independent(self):
        a = _series("A", [10.0, 12.0, 11.0])
        b = _series("B", [50.0, 49.0, 55.0])
        weights = {"A": 30, "B": 70}

        first = valuate(align([a, b]), weights)
        second = valuate(align([b, a]), weights)

        assert first == second

    def test_formula_on_shared_dates(self):
        a = _series("A", [100.0])
        b = _series("B", [200.0])
        curve = valuate(align([a, b]), {"A": 50, "B": 50})
        # (100*0.5 + 200*0.5) / 100 * 100
        assert curve.values == pytest.approx([150.0])

    def test_dates_with_zero_weight_are_dropped(self):
        a = _series("A", [10.0, 11.0])
        b = _series("B", [20.0], start_day=5)
        curve = valuate(align([a, b]), {"A": 100, "B": 0})
        assert curve.dates == [date(2024, 1, 1), date(2024, 1, 2)]


class TestWindows:
    def test_window_start_index(self):
        assert window_start_index(100, "1D") == 98
        assert window_start_index(100, "30D") == 70
        assert window_start_index(100, "ALL") == 0
        assert window_start_index(1, "1D") == 0
        assert window_start_index(10, "30D") == 0

    def test_unknown_window_raises(self):
        with pytest.raises(ValueError):
            window_key("5Y")

    def test_window_key_is_case_insensitive(self):
        assert window_key("all") == "ALL"

    def test_ticker_change_needs_two_points(self):
        assert ticker_change(_series("A", [10.0]), "ALL") is None
        assert ticker_change(_series("A", [10.0, 15.0]), "ALL") == pytest.approx(50.0)


class TestPnl:
    def test_doubling_and_flat_half_half(self):
        series = {"A": _series("A", [100.0, 150.0, 200.0]), "B": _series("B", [50.0, 50.0, 50.0])}
        assert pnl(series, {"A": 50, "B": 50}, "ALL") == pytest.approx(50.0)

    def test_one_day_uses_last_two_points(self):
        series = {"A": _series("A", [100.0, 200.0, 220.0])}
        assert pnl(series, {"A": 100}, "1D") == pytest.approx(10.0)

    def test_missing_weight_and_empty_series_contribute_zero(self):
        series = {
            "A": _series("A", [100.0, 110.0]),
            "B": _series("B", [10.0, 20.0]),
            "C": PriceSeries("C"),
        }
        assert pnl(series, {"A": 50, "C": 50}, "ALL") == pytest.approx(5.0)

    def test_nothing_contributes(self):
        assert pnl({"A": PriceSeries("A")}, {"A": 100}, "30D") == 0.0


class TestCurves:
    def test_rebase_series(self):
        rebased = rebase_series(_series("A", [0.0, 50.0, 75.0]))
        assert rebased.values == pytest.approx([100.0, 150.0])

    def test_notional_curve_sums_positions(self):
        a = _series("A", [10.0, 20.0])
        b = _series("B", [100.0, 50.0])
        curve = notional_value_curve([a, b])
        assert curve.values == pytest.approx([2000.0, 2500.0])

    def test_curve_stats(self):
        curve = ValuationCurve(
            [ValuationPoint(date(2024, 1, d), v) for d, v in ((1, 100.0), (2, 130.0), (3, 120.0))]
        )
        stats = curve_stats(curve)
        assert stats.current == 120.0
        assert stats.previous == 130.0
        assert stats.change == pytest.approx(-10.0)
        assert stats.change_percent == pytest.approx(-10.0 / 130.0 * 100)
        assert stats.high == 130.0
        assert stats.low == 100.0

    def test_curve_stats_empty(self):
        assert curve_stats(ValuationCurve()) is None


class FakePriceClient:
    def __init__(self, data):
        self.data = data
        self.windows = []

    async def fetch(self, ticker, window=None):
        self.windows.append(window)
        return self.data.get(ticker, PriceSeries(ticker))

    async def fetch_many(self, tickers, window=None):
        self.windows.append(window)
        return {t: self.data.get(t, PriceSeries(t)) for t in tickers}


class TestValuationService:
    def test_portfolio_value_curve_rebases(self):
        client = FakePriceClient(
            {"A": _series("A", [10.0, 20.0]), "B": _series("B", [1000.0, 1000.0])}
        )
        service = ValuationService(client)

        curve = asyncio.run(service.portfolio_value_curve(["A", "B"], {"A": 50, "B": 50}, "1M"))

        assert curve.values == pytest.approx([100.0, 150.0])
        assert client.windows == ["1M"]

    def test_pnl_snapshot_uses_history_windows(self):
        client = FakePriceClient({"A": _series("A", [100.0, 150.0, 200.0])})
        service = ValuationService(client)

        snapshot = asyncio.run(service.pnl_snapshot(["A"], {"A": 100}))

        assert sorted(client.windows) == ["1M", "1Y", "3M"]
        assert snapshot.pnl_all_time == pytest.approx(100.0)
        assert snapshot.pnl_1d == pytest.approx(200.0 / 150.0 * 100 - 100)
