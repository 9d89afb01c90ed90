"""Domain models for portfolio generation and valuation."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional


def normalize_ticker(ticker: Any) -> str:
    """Uppercase symbol without surrounding whitespace (no exchange validation)."""
    return str(ticker or "").strip().upper()


def normalize_handle(handle: Any) -> str:
    """Strip whitespace and a leading '@' from a social handle."""
    return str(handle or "").strip().lstrip("@").strip()


# X usernames: 1-15 letters, digits or underscores
HANDLE_RE = re.compile(r"[A-Za-z0-9_]{1,15}")


def is_valid_handle(handle: str) -> bool:
    return bool(HANDLE_RE.fullmatch(handle or ""))


def parse_day(value: Any) -> date:
    """Accept a date, datetime or 'YYYY-MM-DD' string and return a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ============================================================================
# Portfolio
# ============================================================================

@dataclass
class PortfolioItem:
    """One ticker and its percentage weight (0..100)."""
    ticker: str
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"ticker": self.ticker, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortfolioItem":
        return cls(ticker=normalize_ticker(data["ticker"]), weight=float(data["weight"]))


@dataclass
class Portfolio:
    """Generated (or user-edited) weighted portfolio for a handle."""
    handle: str
    items: List[PortfolioItem]
    rationale: str = ""
    posts: List[str] = field(default_factory=list)
    tier: Optional[str] = None  # "primary", "retry", "emergency" or None when loaded
    cached: bool = False

    @property
    def tickers(self) -> List[str]:
        return [item.ticker for item in self.items]

    @property
    def weights(self) -> Dict[str, float]:
        return {item.ticker: item.weight for item in self.items}

    @property
    def total_weight(self) -> float:
        return sum(item.weight for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle": self.handle,
            "portfolio": [item.to_dict() for item in self.items],
            "tickers": self.tickers,
            "weights": self.weights,
            "reasoning": self.rationale,
            "tweets": list(self.posts),
            "tier": self.tier,
            "cached": self.cached,
        }


@dataclass
class StoredAnalysis:
    """Most recent analysis persisted for a handle."""
    handle: str
    items: List[PortfolioItem]
    reasoning: str
    posts: List[str]
    tier: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_portfolio(self) -> Portfolio:
        return Portfolio(
            handle=self.handle,
            items=list(self.items),
            rationale=self.reasoning,
            posts=list(self.posts),
            tier=self.tier,
            cached=True,
        )


# ============================================================================
# Price series & valuation
# ============================================================================

@dataclass(frozen=True)
class PricePoint:
    """Close price on one calendar day."""
    date: date
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "value": self.value}


@dataclass
class PriceSeries:
    """
    Daily close series for one ticker.

    Points are kept unique per date and in ascending order; when the same
    date appears twice the later point wins. An empty series means the
    data could not be fetched.
    """
    ticker: str
    points: List[PricePoint] = field(default_factory=list)

    def __post_init__(self):
        self.ticker = normalize_ticker(self.ticker)
        by_date: Dict[date, PricePoint] = {}
        for point in self.points:
            by_date[point.date] = point
        self.points = [by_date[day] for day in sorted(by_date)]

    @classmethod
    def from_pairs(cls, ticker: str, pairs: Iterable[Any]) -> "PriceSeries":
        """Build from (date, value) pairs; dates may be ISO strings."""
        return cls(ticker, [PricePoint(parse_day(day), float(value)) for day, value in pairs])

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def dates(self) -> List[date]:
        return [p.date for p in self.points]

    @property
    def values(self) -> List[float]:
        return [p.value for p in self.points]

    def __len__(self) -> int:
        return len(self.points)

    def to_chart_data(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.points]


@dataclass(frozen=True)
class ValuationPoint:
    """Blended portfolio value on one date."""
    date: date
    value: float
    weight_total: Optional[float] = None  # weight present on this date

    def to_dict(self) -> Dict[str, Any]:
        payload = {"date": self.date.isoformat(), "value": self.value}
        if self.weight_total is not None:
            payload["weightTotal"] = self.weight_total
        return payload


@dataclass
class ValuationCurve:
    """Ordered blended value series."""
    points: List[ValuationPoint] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def dates(self) -> List[date]:
        return [p.date for p in self.points]

    @property
    def values(self) -> List[float]:
        return [p.value for p in self.points]

    def __len__(self) -> int:
        return len(self.points)

    def to_chart_data(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.points]


@dataclass
class CurveStats:
    """Headline figures for a value curve."""
    current: float
    previous: float
    change: float
    change_percent: float
    high: float
    low: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "current": self.current,
            "previous": self.previous,
            "change": self.change,
            "changePercent": self.change_percent,
            "high": self.high,
            "low": self.low,
        }


@dataclass
class PnLSnapshot:
    """Percentage P&L over the 1-day, 30-day and all-time windows."""
    pnl_1d: float = 0.0
    pnl_30d: float = 0.0
    pnl_all_time: float = 0.0

    def rounded(self, digits: int = 2) -> "PnLSnapshot":
        return PnLSnapshot(
            pnl_1d=round(self.pnl_1d, digits),
            pnl_30d=round(self.pnl_30d, digits),
            pnl_all_time=round(self.pnl_all_time, digits),
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "pnl_24h": self.pnl_1d,
            "pnl_30d": self.pnl_30d,
            "pnl_all_time": self.pnl_all_time,
        }


# ============================================================================
# Vaults & refresh reporting
# ============================================================================

@dataclass
class Vault:
    """Saved portfolio that can be shared on the public leaderboard."""
    id: int
    tickers: List[str]
    weights: Dict[str, float]
    handle: Optional[str] = None
    reasoning: Optional[str] = None
    is_public: bool = False
    pnl: PnLSnapshot = field(default_factory=PnLSnapshot)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "twitter_handle": self.handle,
            "tickers": list(self.tickers),
            "weights": dict(self.weights),
            "reasoning": self.reasoning,
            "is_public": self.is_public,
            **self.pnl.to_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class VaultUpdate:
    """Outcome of refreshing one vault's stored P&L."""
    id: int
    success: bool
    error: Optional[str] = None
    pnl: Optional[PnLSnapshot] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "success": self.success}
        if self.error:
            payload["error"] = self.error
        if self.pnl is not None:
            payload["pnl"] = self.pnl.to_dict()
        return payload


@dataclass
class RefreshReport:
    """Success/failure ledger for one P&L refresh run."""
    updates: List[VaultUpdate] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.updates)

    @property
    def successful(self) -> int:
        return sum(1 for update in self.updates if update.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "updates": [update.to_dict() for update in self.updates],
        }
