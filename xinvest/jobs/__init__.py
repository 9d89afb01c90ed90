"""Background jobs."""

from .pnl_refresh import PnlRefreshJob, run_periodically

__all__ = ["PnlRefreshJob", "run_periodically"]
