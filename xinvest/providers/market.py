"""Daily close-price history with yfinance primary and Stooq fallback."""

import asyncio
import logging
from datetime import date, timedelta
from io import StringIO
from typing import Dict, Iterable, Optional, Tuple

import httpx
import pandas as pd
import yfinance as yf

from ..cache import CacheInterface
from ..config import Config
from ..domain.models import PricePoint, PriceSeries, normalize_ticker

logger = logging.getLogger(__name__)

# Look-back windows in calendar months
WINDOW_MONTHS = {"1M": 1, "3M": 3, "6M": 6, "1Y": 12}
DEFAULT_WINDOW = "1Y"


def normalize_window(window: Optional[str]) -> str:
    """Map a look-back label to a supported window, defaulting to one year."""
    key = (window or "").strip().upper()
    return key if key in WINDOW_MONTHS else DEFAULT_WINDOW


def window_bounds(window: Optional[str], today: Optional[date] = None) -> Tuple[date, date]:
    """Return (start, end) calendar dates for a window ending today."""
    end = today or date.today()
    months = WINDOW_MONTHS[normalize_window(window)]
    start = (pd.Timestamp(end) - pd.DateOffset(months=months)).date()
    return start, end


def frame_to_series(ticker: str, df: Optional[pd.DataFrame]) -> PriceSeries:
    """Convert a provider frame with a Close column to a PriceSeries."""
    if df is None or df.empty:
        return PriceSeries(ticker)

    if isinstance(df.columns, pd.MultiIndex):
        df = df.copy()
        df.columns = df.columns.get_level_values(0)
    df = df.rename(columns=lambda col: str(col).strip().capitalize())
    if "Close" not in df.columns:
        logger.warning("No Close column for %s: %s", ticker, list(df.columns))
        return PriceSeries(ticker)

    close = df["Close"]
    if isinstance(close, pd.DataFrame):
        close = close.iloc[:, 0]
    close = pd.to_numeric(close, errors="coerce").dropna()

    points = []
    for stamp, value in close.items():
        if value < 0:
            continue
        points.append(PricePoint(pd.Timestamp(stamp).date(), float(value)))
    return PriceSeries(ticker, points)


class PriceSeriesClient:
    """
    Fetches one ticker's daily close series for a look-back window.

    Strategy:
    - Primary: yfinance (run in the default executor, bounded retries)
    - Fallback: Stooq CSV API (daily data, no key)

    Any failure ends in an empty PriceSeries; callers treat empty as "no
    data" so one bad ticker never aborts a whole portfolio valuation.
    """

    def __init__(
        self,
        config: Config,
        cache: CacheInterface,
        http_client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
    ):
        self.config = config
        self.cache = cache
        self.http_client = http_client
        self.semaphore = semaphore

    async def fetch(self, ticker: str, window: Optional[str] = DEFAULT_WINDOW) -> PriceSeries:
        """
        Get the daily close series for ``ticker`` over ``window``.

        Args:
            ticker: Symbol, e.g. "AAPL"
            window: "1M", "3M", "6M" or "1Y" (unknown values mean "1Y")

        Returns:
            PriceSeries, empty when no source produced data
        """
        ticker = normalize_ticker(ticker)
        if not ticker:
            return PriceSeries(ticker)

        start, end = window_bounds(window)
        cache_key = f"series:{ticker}:{start.isoformat()}:{end.isoformat()}"
        cached = self.cache.get(cache_key, ttl_seconds=self.config.market_data_cache_ttl)
        if cached is not None:
            logger.debug("Cache hit for %s (%s..%s)", ticker, start, end)
            return cached

        logger.info("Fetching price history for %s (%s..%s)", ticker, start, end)

        for attempt in range(self.config.max_retries):
            try:
                series = await self._fetch_yfinance(ticker, start, end)
                if not series.is_empty:
                    logger.info("yfinance: %d points for %s", len(series), ticker)
                    self.cache.set(cache_key, series)
                    return series
                logger.debug("yfinance returned no rows for %s", ticker)
                break
            except Exception as exc:
                exc_lower = str(exc).lower()
                is_rate_limit = "rate limit" in exc_lower or "429" in exc_lower or "too many" in exc_lower
                logger.warning(
                    "yfinance attempt %d/%d failed for %s%s: %s",
                    attempt + 1,
                    self.config.max_retries,
                    ticker,
                    " [RATE LIMITED]" if is_rate_limit else "",
                    exc,
                )
                if is_rate_limit:
                    break
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_backoff_factor * (2 ** attempt))

        logger.info("Falling back to Stooq for %s", ticker)
        try:
            series = await self._fetch_stooq(ticker, start, end)
        except Exception as exc:
            logger.warning("Stooq fallback failed for %s: %s", ticker, exc)
            return PriceSeries(ticker)

        if series.is_empty:
            logger.warning("No price data for %s in %s..%s", ticker, start, end)
            return series

        self.cache.set(cache_key, series)
        return series

    async def fetch_many(
        self, tickers: Iterable[str], window: Optional[str] = DEFAULT_WINDOW
    ) -> Dict[str, PriceSeries]:
        """Fetch several tickers concurrently; returns {ticker: PriceSeries}."""
        unique = list(dict.fromkeys(normalize_ticker(t) for t in tickers if normalize_ticker(t)))
        if not unique:
            return {}
        results = await asyncio.gather(*(self.fetch(ticker, window) for ticker in unique))
        return dict(zip(unique, results))

    async def _fetch_yfinance(self, ticker: str, start: date, end: date) -> PriceSeries:
        """Blocking yfinance download, run in the executor."""

        def _download():
            # yfinance treats ``end`` as exclusive
            return yf.download(
                ticker,
                start=start.isoformat(),
                end=(end + timedelta(days=1)).isoformat(),
                interval="1d",
                progress=False,
                auto_adjust=False,
            )

        async with self.semaphore:
            loop = asyncio.get_running_loop()
            df = await loop.run_in_executor(None, _download)

        return frame_to_series(ticker, df)

    @staticmethod
    def stooq_symbol(ticker: str) -> str:
        """Stooq expects US tickers with a .US suffix."""
        if "." not in ticker and len(ticker) <= 5 and ticker.isalpha():
            return f"{ticker}.US"
        return ticker

    async def _fetch_stooq(self, ticker: str, start: date, end: date) -> PriceSeries:
        url = "https://stooq.com/q/d/l/"
        params = {
            "s": self.stooq_symbol(ticker).lower(),
            "d1": start.strftime("%Y%m%d"),
            "d2": end.strftime("%Y%m%d"),
            "i": "d",
        }

        async with self.semaphore:
            response = await self.http_client.get(
                url,
                params=params,
                timeout=self.config.http_timeout,
                follow_redirects=True,
            )
            response.raise_for_status()

        return self.parse_stooq_csv(ticker, response.text)

    @staticmethod
    def parse_stooq_csv(ticker: str, text: str) -> PriceSeries:
        """Parse a Stooq CSV body; "No data" and malformed bodies give an empty series."""
        if not text or "Date" not in text.split("\n", 1)[0]:
            return PriceSeries(ticker)
        df = pd.read_csv(StringIO(text), skipinitialspace=True)
        df.columns = [str(col).strip() for col in df.columns]
        if "Date" not in df.columns:
            return PriceSeries(ticker)
        df["Date"] = pd.to_datetime(df["Date"], errors="coerce")
        df = df.dropna(subset=["Date"]).set_index("Date").sort_index()
        return frame_to_series(ticker, df)
