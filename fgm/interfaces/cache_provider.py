"""Abstract base class for the API response cache.

Defines the contract command handlers and the API client rely on.  The
concrete implementation is the two-tier
:class:`~fgm.providers.cache.tiered_cache.FigmaCache`; tests and callers
that want a different backend only need to satisfy this interface.

Every operation is best-effort: a cache is an optimization, not a source of
truth, so no method raises on storage or serialization failures.  Misses,
corrupt entries and I/O errors all look like "not cached".

Operations are synchronous.  They touch process memory and local files only
and never suspend, so the async request path can call them directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel

from fgm.models.cache import CacheKey, CacheStats

_M = TypeVar("_M", bound=BaseModel)


class ICacheProvider(ABC):
    """Contract for the resource cache."""

    @abstractmethod
    def get(self, key: CacheKey, model: type[_M] | None = None) -> Any | None:
        """Return the cached value for *key*, or ``None``.

        Parameters
        ----------
        key:
            The resource to look up.
        model:
            Optional pydantic model class; when given the stored JSON is
            validated into an instance of it.  Otherwise the decoded JSON
            value (dict, list, str ...) is returned.

        Returns
        -------
        Any or None
            The cached value if present, fresh and decodable; ``None``
            otherwise.
        """

    @abstractmethod
    def set(self, key: CacheKey, value: Any, ttl: int) -> None:
        """Store *value* under *key* for *ttl* seconds.

        Parameters
        ----------
        key:
            The resource identity.
        value:
            A pydantic model or any JSON-serializable value.  Values that
            cannot be serialized are skipped with a warning.
        ttl:
            Time-to-live in seconds.
        """

    @abstractmethod
    def invalidate(self, key: CacheKey) -> None:
        """Remove the entry for *key* (no-op if absent)."""

    @abstractmethod
    def invalidate_by_prefix(self, resource_id: str) -> None:
        """Drop every entry that belongs to *resource_id* (e.g. a file key).

        Implementations may over-invalidate; they must not under-invalidate.
        """

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def stats(self) -> CacheStats:
        """Return occupancy statistics."""

    @abstractmethod
    def contains(self, key: CacheKey) -> bool:
        """Return ``True`` if a fresh entry for *key* exists.

        Unlike :meth:`get`, this never promotes or decodes anything.
        """
