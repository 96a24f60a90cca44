"""Scraper utilities for pacing, request headers, and price/URL normalization."""

from .pacing import DelayRange, PacingConfig, PacingScheduler, RunEstimate
from .user_agents import (
    get_random_user_agent,
    build_request_headers,
    USER_AGENTS,
)
from .normalizer import (
    PriceNormalizer,
    resolve_url,
    strip_query,
    clean_text,
)


__all__ = [
    # Pacing
    "DelayRange",
    "PacingConfig",
    "PacingScheduler",
    "RunEstimate",
    # User agents
    "get_random_user_agent",
    "build_request_headers",
    "USER_AGENTS",
    # Normalization
    "PriceNormalizer",
    "resolve_url",
    "strip_query",
    "clean_text",
]
