"""OpenAI-compatible chat completion client (xAI Grok by default)."""

import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from ..config import Config
from ..http_client import http_post

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The completion service could not produce a reply (network, auth, bad payload)."""


class CompletionClient:
    """Thin async wrapper around ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        config: Config,
        http_client: httpx.AsyncClient,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        self.config = config
        self.http_client = http_client
        self.semaphore = semaphore

    @property
    def endpoint(self) -> str:
        return f"{self.config.completion_base_url.rstrip('/')}/chat/completions"

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        """
        Send chat messages and return the assistant text.

        Args:
            messages: OpenAI-style role/content messages
            temperature: Sampling temperature
            json_mode: Request ``response_format = json_object``

        Returns:
            Reply content, stripped (may be malformed; callers validate)

        Raises:
            CompletionError when the service is unreachable, rejects the
            request or answers without a message
        """
        if not self.config.completion_api_key:
            raise CompletionError("Completion API key is not configured")

        payload = {
            "model": self.config.completion_model,
            "messages": messages,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            response = await http_post(
                self.endpoint,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.config.completion_api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.completion_timeout,
                retries=self.config.max_retries,
                backoff_factor=self.config.retry_backoff_factor,
                client=self.http_client,
                semaphore=self.semaphore,
            )
            parsed = response.json()
        except httpx.HTTPStatusError as exc:
            raise CompletionError(
                f"Completion request failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc
        except ValueError as exc:
            raise CompletionError("Completion service returned non-JSON response") from exc

        try:
            content = parsed["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise CompletionError("Completion response has no message content") from exc

        if content is not None and not isinstance(content, str):
            raise CompletionError("Completion response content is not text")

        logger.debug("Completion reply: %d chars", len(content or ""))
        return (content or "").strip()
