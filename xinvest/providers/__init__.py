"""External data providers package."""

from .completion import CompletionClient, CompletionError
from .market import PriceSeriesClient
from .posts import PostsClient

__all__ = ["CompletionClient", "CompletionError", "PriceSeriesClient", "PostsClient"]
