"""Recent posts for a handle from the X (Twitter) v2 API."""

import asyncio
import logging
from typing import List, Optional

import httpx

from ..config import Config
from ..domain.models import is_valid_handle
from ..http_client import http_get

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.twitter.com/2"


class PostsClient:
    """Looks up a user id by handle, then reads its latest posts."""

    def __init__(
        self,
        config: Config,
        http_client: httpx.AsyncClient,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self.config = config
        self.http_client = http_client
        self.semaphore = semaphore

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.twitter_bearer_token}"}

    async def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        response = await http_get(
            url,
            params=params,
            headers=self._headers(),
            timeout=self.config.http_timeout,
            retries=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
            client=self.http_client,
            semaphore=self.semaphore,
        )
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def fetch_posts(self, handle: str) -> List[str]:
        """Return post texts for ``handle`` (newest first), or [] on any failure."""
        if not handle:
            return []
        if not is_valid_handle(handle):
            logger.warning("Invalid handle %r, analysing without posts", handle)
            return []
        if not self.config.twitter_bearer_token:
            logger.warning("TWITTER_BEARER_TOKEN not set, analysing @%s without posts", handle)
            return []

        try:
            user = await self._get_json(f"{API_BASE_URL}/users/by/username/{handle}")
            user_id = (user.get("data") or {}).get("id")
            if not user_id:
                logger.warning("User @%s not found: %s", handle, user.get("errors"))
                return []

            timeline = await self._get_json(
                f"{API_BASE_URL}/users/{user_id}/tweets",
                params={
                    "max_results": self.config.posts_max_results,
                    "tweet.fields": "text,created_at",
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Failed to fetch posts for @%s: %s", handle, exc)
            return []
        except ValueError as exc:
            logger.warning("Posts API returned invalid JSON for @%s: %s", handle, exc)
            return []

        posts = [
            item["text"]
            for item in timeline.get("data") or []
            if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip()
        ]
        logger.info("Fetched %d posts for @%s", len(posts), handle)
        return posts
