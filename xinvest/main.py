"""Service entry point - wires providers and services, then serves the web API."""

import asyncio
import logging
import sys

import uvicorn
from dotenv import load_dotenv

from .cache import InMemoryCache
from .config import Config
from .db import AnalysisStore
from .http_client import get_http_client
from .jobs.pnl_refresh import PnlRefreshJob
from .providers import CompletionClient, PostsClient, PriceSeriesClient
from .services.analysis_service import AnalysisService
from .services.portfolio_generator import PortfolioGenerator
from .services.valuation import ValuationService
from .web_api import configure_api_dependencies, web_api

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)


def build_app(config: Config):
    """Create services for ``config`` and register them with the web API."""
    store = AnalysisStore(config.db_path)

    # Shared HTTP client with connection pooling
    http_client = get_http_client(config.http_timeout)

    # Semaphore for rate limiting
    semaphore = asyncio.Semaphore(config.max_concurrent_requests)

    cache = InMemoryCache(default_ttl=config.market_data_cache_ttl)
    price_client = PriceSeriesClient(config, cache, http_client, semaphore)
    posts_client = PostsClient(config, http_client, semaphore)
    completion_client = CompletionClient(config, http_client, semaphore)

    valuation = ValuationService(price_client)
    analysis = AnalysisService(store, posts_client, PortfolioGenerator(completion_client))
    refresh_job = PnlRefreshJob(store, valuation)

    configure_api_dependencies(
        analysis_service=analysis,
        valuation_service=valuation,
        store=store,
        refresh_job=refresh_job,
        refresh_interval_sec=config.pnl_refresh_interval_sec,
    )
    return web_api


def run() -> None:
    load_dotenv()
    config = Config.from_env()

    if not config.completion_api_key:
        logger.warning("XAI_API_KEY not set, every analysis will fail at the completion service")
    if not config.twitter_bearer_token:
        logger.warning("TWITTER_BEARER_TOKEN not set, portfolios will be generated without posts")

    app = build_app(config)
    logger.info("Starting web API server on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level="warning")


if __name__ == "__main__":
    run()
