"""
Periodic refresh of stored P&L for public vaults.
"""

import asyncio
import logging
import sqlite3

from ..db import AnalysisStore
from ..domain.models import RefreshReport, Vault, VaultUpdate
from ..services.valuation import ValuationService

logger = logging.getLogger(__name__)


class PnlRefreshJob:
    """Recomputes 1D/30D/all-time P&L for every public vault."""

    def __init__(self, store: AnalysisStore, valuation: ValuationService):
        self.store = store
        self.valuation = valuation

    async def refresh_vault(self, vault: Vault) -> VaultUpdate:
        """Recompute and store one vault's P&L; errors are captured, not raised."""
        try:
            snapshot = (await self.valuation.pnl_snapshot(vault.tickers, vault.weights)).rounded()
            if not self.store.update_pnl(vault.id, snapshot):
                return VaultUpdate(id=vault.id, success=False, error="Vault not found")
        except Exception as e:
            logger.error("Failed to refresh P&L for vault %s: %s", vault.id, e)
            return VaultUpdate(id=vault.id, success=False, error=str(e))

        logger.debug(
            "Vault %s P&L: 24h=%.2f 30d=%.2f all=%.2f",
            vault.id,
            snapshot.pnl_1d,
            snapshot.pnl_30d,
            snapshot.pnl_all_time,
        )
        return VaultUpdate(id=vault.id, success=True, pnl=snapshot)

    async def run(self) -> RefreshReport:
        """Refresh all public vaults concurrently and report per-vault outcomes."""
        try:
            vaults = self.store.list_public()
        except sqlite3.Error as e:
            logger.error("P&L refresh: could not list public vaults: %s", e)
            raise

        if not vaults:
            logger.info("P&L refresh: no public vaults")
            return RefreshReport()

        updates = await asyncio.gather(*(self.refresh_vault(vault) for vault in vaults))
        report = RefreshReport(updates=list(updates))
        logger.info(
            "P&L refresh complete: %s/%s vaults updated (%s failed)",
            report.successful,
            report.total,
            report.failed,
        )
        return report


async def run_periodically(job: PnlRefreshJob, interval_sec: float) -> None:
    """Run ``job`` every ``interval_sec`` seconds until cancelled."""
    logger.info("P&L refresh loop started (every %ss)", interval_sec)
    while True:
        try:
            await job.run()
        except Exception as e:
            logger.error("P&L refresh loop error: %s", e)
        await asyncio.sleep(interval_sec)
