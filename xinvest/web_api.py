"""Web API - FastAPI application exposing analysis, valuation and vault endpoints."""

import asyncio
import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, Header, HTTPException, status
from pydantic import BaseModel

from .http_client import close_http_client
from .services.portfolio_generator import GenerationError
from .services.valuation import curve_stats

logger = logging.getLogger(__name__)

# Dependencies are injected by the entry point (or by tests)
_analysis_service = None
_valuation_service = None
_store = None
_refresh_job = None
_refresh_interval_sec = 0


def configure_api_dependencies(
    analysis_service,
    valuation_service,
    store,
    refresh_job,
    refresh_interval_sec: int = 0,
):
    """Configure API with required service dependencies."""
    global _analysis_service, _valuation_service, _store, _refresh_job, _refresh_interval_sec

    _analysis_service = analysis_service
    _valuation_service = valuation_service
    _store = store
    _refresh_job = refresh_job
    _refresh_interval_sec = refresh_interval_sec


# ============== PYDANTIC MODELS ==============

class AnalyzeRequest(BaseModel):
    handle: Optional[str] = None
    refresh: bool = False


class TickerHistoryRequest(BaseModel):
    ticker: Optional[str] = None
    timeRange: Optional[str] = "1Y"


class PortfolioRequest(BaseModel):
    tickers: Optional[List[str]] = None
    weights: Optional[Dict[str, Optional[float]]] = None
    timeRange: Optional[str] = "1Y"


class PnlRequest(BaseModel):
    tickers: Optional[List[str]] = None
    weights: Optional[Dict[str, float]] = None


class VaultRequest(BaseModel):
    tickers: Optional[List[str]] = None
    weights: Optional[Dict[str, float]] = None
    twitter_handle: Optional[str] = None
    reasoning: Optional[str] = None
    is_public: bool = False


class VisibilityRequest(BaseModel):
    is_public: bool = True


class UpdatePnlRequest(BaseModel):
    vaultId: Optional[int] = None


# ============== FASTAPI APP ==============

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if _refresh_job is not None and _refresh_interval_sec > 0:
        from .jobs.pnl_refresh import run_periodically

        task = asyncio.create_task(run_periodically(_refresh_job, _refresh_interval_sec))
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await close_http_client()


web_api = FastAPI(title="xinvest API", lifespan=lifespan)


def _require_cron_auth(authorization: Optional[str]) -> None:
    """Enforce bearer auth when CRON_SECRET is configured."""
    secret = os.getenv("CRON_SECRET", "").strip()
    if not secret:
        return
    if authorization != f"Bearer {secret}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def _require_tickers(tickers: Optional[List[str]]) -> List[str]:
    cleaned = [t.strip().upper() for t in tickers or [] if t and t.strip()]
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tickers are required")
    return cleaned


def _check_weights(weights: Optional[Dict[str, Optional[float]]]) -> None:
    """Weights are percentages; None (unweighted) is allowed."""
    for ticker, weight in (weights or {}).items():
        if weight is not None and not 0 <= weight <= 100:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Weight for {ticker} must be between 0 and 100",
            )


@web_api.get("/healthz")
async def healthz():
    """Unauthenticated health probe endpoint for external pingers."""
    return {"status": "ok"}


@web_api.post("/api/analyze")
async def api_analyze(req: AnalyzeRequest):
    """Generate (or return the stored) portfolio for a handle."""
    if not req.handle or not req.handle.strip().lstrip("@"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Twitter handle is required")

    try:
        portfolio = await _analysis_service.analyze(req.handle, refresh=req.refresh)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GenerationError as e:
        logger.error("Analysis failed for %s: %s", req.handle, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to generate portfolio")

    return portfolio.to_dict()


@web_api.post("/api/ticker-history")
async def api_ticker_history(req: TickerHistoryRequest):
    """Daily close series for one ticker."""
    if not req.ticker or not req.ticker.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ticker is required")

    series = await _valuation_service.historical_series(req.ticker, req.timeRange)
    return {
        "ticker": series.ticker,
        "timeRange": req.timeRange,
        "chartData": series.to_chart_data(),
    }


@web_api.post("/api/portfolio")
async def api_portfolio(req: PortfolioRequest):
    """
    Portfolio value curve with headline stats.

    With weights the curve is the weighted blend of rebased series; without
    them it is the dollar value of $1000 bought of each ticker.
    """
    tickers = _require_tickers(req.tickers)
    _check_weights(req.weights)

    if req.weights is None:
        curve = await _valuation_service.notional_curve(tickers, req.timeRange)
    else:
        curve = await _valuation_service.portfolio_value_curve(tickers, req.weights, req.timeRange)

    stats = curve_stats(curve)
    return {
        "chartData": curve.to_chart_data(),
        "stats": stats.to_dict() if stats else None,
    }


@web_api.post("/api/pnl")
async def api_pnl(req: PnlRequest):
    """1-day, 30-day and all-time P&L for a weighted ticker set."""
    tickers = _require_tickers(req.tickers)
    _check_weights(req.weights)
    snapshot = await _valuation_service.pnl_snapshot(tickers, req.weights or {})
    return snapshot.rounded().to_dict()


@web_api.post("/api/vaults")
async def api_save_vault(req: VaultRequest):
    """Save a portfolio as a vault."""
    tickers = _require_tickers(req.tickers)
    _check_weights(req.weights)
    try:
        vault = _store.save_vault(
            tickers,
            req.weights or {},
            handle=(req.twitter_handle or "").strip().lstrip("@") or None,
            reasoning=req.reasoning,
            is_public=req.is_public,
        )
    except sqlite3.Error as e:
        logger.error("Failed to save vault: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save vault")
    return vault.to_dict()


@web_api.post("/api/vaults/{vault_id}/public")
async def api_set_vault_public(vault_id: int, req: VisibilityRequest):
    """Publish a vault on (or remove it from) the leaderboard."""
    vault = _store.set_public(vault_id, req.is_public)
    if vault is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vault not found")
    return vault.to_dict()


@web_api.get("/api/leaderboard")
async def api_leaderboard(limit: int = 50):
    """Public vaults ranked by all-time P&L."""
    vaults = _store.leaderboard(limit=max(1, min(limit, 50)))
    return {"vaults": [vault.to_dict() for vault in vaults]}


@web_api.post("/api/update-pnl")
async def api_update_pnl(req: UpdatePnlRequest):
    """Recompute stored P&L for one vault."""
    if req.vaultId is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Vault ID is required")

    vault = _store.get_vault(req.vaultId)
    if vault is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vault not found")

    update = await _refresh_job.refresh_vault(vault)
    if not update.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=update.error)
    return {"success": True, **update.pnl.to_dict()}


@web_api.get("/api/cron-update-pnl")
async def api_cron_update_pnl(authorization: Optional[str] = Header(default=None)):
    """Refresh stored P&L for all public vaults."""
    _require_cron_auth(authorization)

    try:
        report = await _refresh_job.run()
    except sqlite3.Error:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch vaults")

    if report.total == 0:
        return {"message": "No public vaults to update", **report.to_dict()}
    return {"message": "PnL update complete", **report.to_dict()}
