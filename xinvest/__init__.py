"""Social-feed driven portfolio generation and valuation service."""

__version__ = "0.1.0"
