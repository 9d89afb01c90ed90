"""SQLite storage for analyses (one per handle) and saved vaults."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .domain.models import (
    PnLSnapshot,
    Portfolio,
    PortfolioItem,
    StoredAnalysis,
    Vault,
    normalize_ticker,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class AnalysisStore:
    """SQLite database for generated analyses and user vaults."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            # Latest analysis per handle (upsert on regeneration)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analyses (
                    handle TEXT PRIMARY KEY,
                    portfolio TEXT NOT NULL,
                    reasoning TEXT,
                    tweets TEXT NOT NULL DEFAULT '[]',
                    tier TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            # Saved portfolios with stored P&L for the leaderboard
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vaults (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    twitter_handle TEXT,
                    tickers TEXT NOT NULL,
                    weights TEXT NOT NULL,
                    reasoning TEXT,
                    is_public INTEGER NOT NULL DEFAULT 0,
                    pnl_24h REAL NOT NULL DEFAULT 0,
                    pnl_30d REAL NOT NULL DEFAULT 0,
                    pnl_all_time REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_vaults_public ON vaults(is_public)")
            conn.commit()
        logger.info("Database initialized at %s", self.db_path)

    # ==================== Analyses ====================

    def get_latest(self, handle: str) -> Optional[StoredAnalysis]:
        """Most recent analysis for a handle, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM analyses WHERE handle = ?",
                (handle,),
            ).fetchone()
        if not row:
            return None

        items = [PortfolioItem.from_dict(item) for item in json.loads(row["portfolio"])]
        return StoredAnalysis(
            handle=row["handle"],
            items=items,
            reasoning=row["reasoning"] or "",
            posts=json.loads(row["tweets"] or "[]"),
            tier=row["tier"],
            created_at=_parse_ts(row["updated_at"]),
        )

    def upsert(self, portfolio: Portfolio) -> None:
        """Save or replace the analysis for ``portfolio.handle``."""
        now = _now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO analyses(handle, portfolio, reasoning, tweets, tier, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(handle) DO UPDATE SET
                    portfolio=excluded.portfolio,
                    reasoning=excluded.reasoning,
                    tweets=excluded.tweets,
                    tier=excluded.tier,
                    updated_at=excluded.updated_at
                """,
                (
                    portfolio.handle,
                    json.dumps([item.to_dict() for item in portfolio.items]),
                    portfolio.rationale,
                    json.dumps(list(portfolio.posts)),
                    portfolio.tier,
                    now,
                    now,
                ),
            )
            conn.commit()
        logger.debug("Stored analysis for @%s", portfolio.handle)

    # ==================== Vaults ====================

    @staticmethod
    def _row_to_vault(row: sqlite3.Row) -> Vault:
        return Vault(
            id=row["id"],
            handle=row["twitter_handle"],
            tickers=json.loads(row["tickers"]),
            weights={k: float(v) for k, v in json.loads(row["weights"]).items()},
            reasoning=row["reasoning"],
            is_public=bool(row["is_public"]),
            pnl=PnLSnapshot(
                pnl_1d=row["pnl_24h"],
                pnl_30d=row["pnl_30d"],
                pnl_all_time=row["pnl_all_time"],
            ),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def save_vault(
        self,
        tickers: Sequence[str],
        weights: Dict[str, float],
        handle: Optional[str] = None,
        reasoning: Optional[str] = None,
        is_public: bool = False,
    ) -> Vault:
        """Insert a new vault (existing vaults are never overwritten)."""
        clean_tickers = [normalize_ticker(t) for t in tickers if normalize_ticker(t)]
        clean_weights = {normalize_ticker(k): float(v) for k, v in (weights or {}).items() if normalize_ticker(k)}
        now = _now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO vaults(twitter_handle, tickers, weights, reasoning, is_public, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    handle,
                    json.dumps(clean_tickers),
                    json.dumps(clean_weights),
                    reasoning,
                    int(is_public),
                    now,
                    now,
                ),
            )
            vault_id = cursor.lastrowid
            conn.commit()
        logger.debug("Saved vault %s for @%s", vault_id, handle or "anonymous")
        return self.get_vault(vault_id)

    def get_vault(self, vault_id: int) -> Optional[Vault]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM vaults WHERE id = ?", (vault_id,)).fetchone()
        return self._row_to_vault(row) if row else None

    def set_public(self, vault_id: int, is_public: bool) -> Optional[Vault]:
        """Toggle leaderboard visibility; None if the vault does not exist."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE vaults SET is_public = ?, updated_at = ? WHERE id = ?",
                (int(is_public), _now(), vault_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_vault(vault_id)

    def list_public(self) -> List[Vault]:
        """All public vaults, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM vaults WHERE is_public = 1 ORDER BY id ASC"
            ).fetchall()
        return [self._row_to_vault(row) for row in rows]

    def leaderboard(self, limit: int = 50) -> List[Vault]:
        """Public vaults ranked by all-time P&L."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM vaults
                WHERE is_public = 1
                ORDER BY pnl_all_time DESC, id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_vault(row) for row in rows]

    def update_pnl(self, vault_id: int, snapshot: PnLSnapshot) -> bool:
        """Store P&L figures for a vault; False if the vault does not exist."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE vaults
                SET pnl_24h = ?, pnl_30d = ?, pnl_all_time = ?, updated_at = ?
                WHERE id = ?
                """,
                (snapshot.pnl_1d, snapshot.pnl_30d, snapshot.pnl_all_time, _now(), vault_id),
            )
            conn.commit()
        return cursor.rowcount > 0
