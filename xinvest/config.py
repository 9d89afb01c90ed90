"""Configuration management for the xinvest service."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Completion service (OpenAI-compatible chat completions, xAI Grok by default)
    completion_api_key: Optional[str] = None
    completion_base_url: str = "https://api.x.ai/v1"
    completion_model: str = "grok-code-fast-1"
    completion_timeout: int = 60

    # X / Twitter v2 API
    twitter_bearer_token: Optional[str] = None
    posts_max_results: int = 5

    # Database
    db_path: str = "xinvest.db"

    # Cache TTLs (seconds)
    market_data_cache_ttl: int = 600  # 10 minutes

    # Network settings
    http_timeout: int = 30
    max_concurrent_requests: int = 5
    max_retries: int = 3
    retry_backoff_factor: float = 0.5

    # Background P&L refresh (0 disables the in-process loop)
    pnl_refresh_interval_sec: int = 0

    # Web server
    host: str = "0.0.0.0"
    port: int = 10000

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        # The v2 timeline endpoint only accepts 5..100.
        max_results = min(100, max(5, _as_int("POSTS_MAX_RESULTS", 5)))

        return cls(
            completion_api_key=(
                os.getenv("XAI_API_KEY", "").strip()
                or os.getenv("COMPLETION_API_KEY", "").strip()
                or None
            ),
            completion_base_url=(
                os.getenv("COMPLETION_BASE_URL", "").strip().rstrip("/") or "https://api.x.ai/v1"
            ),
            completion_model=os.getenv("COMPLETION_MODEL", "").strip() or "grok-code-fast-1",
            completion_timeout=_as_int("COMPLETION_TIMEOUT", 60),
            twitter_bearer_token=os.getenv("TWITTER_BEARER_TOKEN", "").strip() or None,
            posts_max_results=max_results,
            db_path=os.getenv("XINVEST_DB_PATH", "xinvest.db"),
            market_data_cache_ttl=_as_int("MARKET_DATA_CACHE_TTL", 600),
            http_timeout=_as_int("HTTP_TIMEOUT", 30),
            max_concurrent_requests=_as_int("MAX_CONCURRENT_REQUESTS", 5),
            max_retries=max(1, _as_int("MAX_RETRIES", 3)),
            retry_backoff_factor=_as_float("RETRY_BACKOFF_FACTOR", 0.5),
            pnl_refresh_interval_sec=_as_int("PNL_REFRESH_INTERVAL_SEC", 0),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_as_int("PORT", _as_int("WEB_PORT", 10000)),
        )
