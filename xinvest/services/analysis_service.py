"""Handle analysis: cached lookup, post fetch, generation and persistence."""

import logging
import sqlite3
from typing import Optional

from ..db import AnalysisStore
from ..domain.models import Portfolio, is_valid_handle, normalize_handle
from ..providers.posts import PostsClient
from .portfolio_generator import PortfolioGenerator

logger = logging.getLogger(__name__)


class AnalysisService:
    """Returns the stored portfolio for a handle, generating one on a miss."""

    def __init__(
        self,
        store: AnalysisStore,
        posts_client: PostsClient,
        generator: PortfolioGenerator,
    ):
        self.store = store
        self.posts_client = posts_client
        self.generator = generator

    def _cached(self, handle: str) -> Optional[Portfolio]:
        try:
            stored = self.store.get_latest(handle)
        except sqlite3.Error as exc:
            logger.warning("Could not read cached analysis for @%s: %s", handle, exc)
            return None
        return stored.to_portfolio() if stored else None

    def _save(self, portfolio: Portfolio) -> None:
        try:
            self.store.upsert(portfolio)
        except sqlite3.Error as exc:
            logger.error("Failed to store analysis for @%s: %s", portfolio.handle, exc)

    async def analyze(self, handle: str, refresh: bool = False) -> Portfolio:
        """
        Portfolio for ``handle``.

        A stored analysis is returned as-is (``cached=True``) unless
        ``refresh`` is set. Storage errors never fail the request.

        Raises:
            ValueError if the handle is empty or not a valid username
            GenerationError if the completion service is unavailable
        """
        handle = normalize_handle(handle)
        if not handle:
            raise ValueError("Twitter handle is required")
        if not is_valid_handle(handle):
            raise ValueError(f"Invalid Twitter handle: {handle!r}")

        if not refresh:
            cached = self._cached(handle)
            if cached is not None:
                logger.info("Returning cached analysis for @%s", handle)
                return cached

        posts = await self.posts_client.fetch_posts(handle)
        portfolio = await self.generator.generate(handle, posts)
        self._save(portfolio)
        return portfolio
