"""Figma REST API access: client, rate limiting and URL parsing."""

from fgm.api.client import FigmaClient
from fgm.api.rate_limit import RateLimiter, RateLimitInfo
from fgm.api.url import FigmaUrl

__all__ = ["FigmaClient", "FigmaUrl", "RateLimitInfo", "RateLimiter"]
