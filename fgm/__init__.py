"""fgm: command-line client for the Figma REST API.

The interesting part is the request layer: a two-tier (memory + disk)
response cache with per-resource TTLs, and a rate-limit-aware request
executor with proactive throttling and exponential backoff.
"""

__version__ = "0.1.0"
