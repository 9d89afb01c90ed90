"""Business logic services."""

from .analysis_service import AnalysisService
from .portfolio_generator import GenerationError, PortfolioGenerator
from .series_aligner import AlignedSeriesSet, align
from .valuation import ValuationService, pnl, valuate

__all__ = [
    "AlignedSeriesSet",
    "AnalysisService",
    "GenerationError",
    "PortfolioGenerator",
    "ValuationService",
    "align",
    "pnl",
    "valuate",
]
