"""Public interface definitions.

Concrete adapters live in ``fgm/providers/`` and are injected at runtime
(see ``fgm/main.py``), so tests can substitute fakes without touching the
client code.

    Interface        →  Concrete implementation
    ──────────────────────────────────────────────
    ICacheProvider   →  FigmaCache (memory + disk tiers)
"""

from fgm.interfaces.cache_provider import ICacheProvider

__all__ = ["ICacheProvider"]
