"""Domain layer - value objects shared by providers and services."""

from .models import (
    CurveStats,
    PnLSnapshot,
    Portfolio,
    PortfolioItem,
    PricePoint,
    PriceSeries,
    RefreshReport,
    StoredAnalysis,
    ValuationCurve,
    ValuationPoint,
    Vault,
    VaultUpdate,
    is_valid_handle,
    normalize_handle,
    normalize_ticker,
)

__all__ = [
    "CurveStats",
    "PnLSnapshot",
    "Portfolio",
    "PortfolioItem",
    "PricePoint",
    "PriceSeries",
    "RefreshReport",
    "StoredAnalysis",
    "ValuationCurve",
    "ValuationPoint",
    "Vault",
    "VaultUpdate",
    "is_valid_handle",
    "normalize_handle",
    "normalize_ticker",
]
