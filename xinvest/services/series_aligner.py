"""Merge independently fetched price series onto one date axis."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from ..domain.models import PriceSeries

logger = logging.getLogger(__name__)


@dataclass
class AlignedSeriesSet:
    """
    Union of dates across a group of series with per-ticker optional values.

    ``frame`` is indexed by ascending calendar date with one column per
    ticker that had data (sorted by ticker); a missing value is NaN and
    means "absent", never zero. ``tickers`` lists every input ticker,
    including those whose series was empty.
    """
    tickers: List[str]
    frame: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(dtype=float))

    @property
    def is_empty(self) -> bool:
        return self.frame.empty

    @property
    def dates(self) -> List[date]:
        return list(self.frame.index)

    @property
    def tickers_with_data(self) -> List[str]:
        return list(self.frame.columns)

    def __len__(self) -> int:
        return len(self.frame.index)

    def value(self, day: date, ticker: str) -> Optional[float]:
        """Value for ``ticker`` on ``day``, or None when absent."""
        if ticker not in self.frame.columns or day not in self.frame.index:
            return None
        raw = self.frame.at[day, ticker]
        return None if pd.isna(raw) else float(raw)

    def rows(self) -> Iterator[Tuple[date, Dict[str, float]]]:
        """Yield (date, {ticker: value}) with only the tickers present on that date."""
        for day, row in self.frame.iterrows():
            yield day, {ticker: float(v) for ticker, v in row.items() if pd.notna(v)}


def align(series: Iterable[PriceSeries]) -> AlignedSeriesSet:
    """
    Build the sorted union of dates from every non-empty series.

    No interpolation or forward-fill is done. Empty series contribute
    nothing to the axis. If the same ticker appears twice, the first
    series' values take precedence and the second only fills its gaps.
    """
    series = list(series)
    tickers = sorted({s.ticker for s in series if s.ticker})

    columns: Dict[str, pd.Series] = {}
    for item in series:
        if item.is_empty:
            logger.debug("Skipping empty series for %s", item.ticker)
            continue
        column = pd.Series(item.values, index=pd.Index(item.dates, dtype=object), dtype=float)
        if item.ticker in columns:
            logger.warning("Duplicate series for %s, merging", item.ticker)
            column = columns[item.ticker].combine_first(column)
        columns[item.ticker] = column

    if not columns:
        return AlignedSeriesSet(tickers=tickers)

    frame = pd.concat(columns, axis=1, join="outer").sort_index()
    frame = frame[sorted(frame.columns)]
    frame.index.name = "date"
    return AlignedSeriesSet(tickers=tickers, frame=frame)
