"""Cache identity and storage models.

``CacheKey`` names one cacheable API resource; ``CachedEntry`` is what is
actually stored (in memory and, as JSON, on disk); ``CacheTTL`` says how long
each kind of resource stays fresh.  All models are frozen -- entries are
replaced or deleted, never mutated.
"""

from __future__ import annotations

import hashlib
import time
from enum import Enum
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, model_validator

_HASH_LENGTH = 16  # hex chars, i.e. a 64-bit digest


class ResourceKind(str, Enum):
    """Closed set of cacheable resource kinds.

    The enum value is the tag used as the first segment of the storage key.
    """

    FILE = "file"                       # Full file document
    FILE_META = "file_meta"             # Light file metadata
    NODES = "nodes"                     # Subset of nodes from a file
    IMAGES = "images"                   # Image export URLs
    VERSIONS = "versions"               # Version history
    TEAM_PROJECTS = "team_projects"     # Projects in a team
    PROJECT_FILES = "project_files"     # Files in a project
    TEAM_COMPONENTS = "team_components" # Team library components
    TEAM_STYLES = "team_styles"         # Team library styles
    COMPONENT = "component"             # Single component detail


# Kinds whose key carries a hash of request parameters.
_PARAMETERIZED_KINDS = frozenset({ResourceKind.NODES, ResourceKind.IMAGES})


def _digest(parts: Sequence[str]) -> str:
    # Length-prefix each part so ["ab", "c"] and ["a", "bc"] differ.
    hasher = hashlib.sha256()
    for part in parts:
        encoded = part.encode("utf-8")
        hasher.update(str(len(encoded)).encode("ascii"))
        hasher.update(b":")
        hasher.update(encoded)
    return hasher.hexdigest()[:_HASH_LENGTH]


class CacheKey(BaseModel):
    """Identity of one cacheable resource.

    Build keys with the per-kind constructors (``CacheKey.file(...)``,
    ``CacheKey.nodes(...)`` ...) rather than directly; the validator keeps
    the parameter hash present exactly for the kinds that need one.
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    resource_id: str
    params_hash: str | None = None

    @model_validator(mode="after")
    def _check_variant(self) -> CacheKey:
        if self.kind in _PARAMETERIZED_KINDS and not self.params_hash:
            raise ValueError(f"{self.kind.value} keys require a params_hash")
        if self.kind not in _PARAMETERIZED_KINDS and self.params_hash is not None:
            raise ValueError(f"{self.kind.value} keys do not take a params_hash")
        return self

    # -- Constructors ----------------------------------------------------------

    @classmethod
    def file(cls, file_key: str) -> CacheKey:
        return cls(kind=ResourceKind.FILE, resource_id=file_key)

    @classmethod
    def file_meta(cls, file_key: str) -> CacheKey:
        return cls(kind=ResourceKind.FILE_META, resource_id=file_key)

    @classmethod
    def nodes(cls, file_key: str, node_ids: Sequence[str]) -> CacheKey:
        return cls(
            kind=ResourceKind.NODES,
            resource_id=file_key,
            params_hash=cls.hash_node_ids(node_ids),
        )

    @classmethod
    def images(
        cls, file_key: str, node_ids: Sequence[str], fmt: str, scale: float
    ) -> CacheKey:
        return cls(
            kind=ResourceKind.IMAGES,
            resource_id=file_key,
            params_hash=cls.hash_export_params(node_ids, fmt, scale),
        )

    @classmethod
    def versions(cls, file_key: str) -> CacheKey:
        return cls(kind=ResourceKind.VERSIONS, resource_id=file_key)

    @classmethod
    def team_projects(cls, team_id: str) -> CacheKey:
        return cls(kind=ResourceKind.TEAM_PROJECTS, resource_id=team_id)

    @classmethod
    def project_files(cls, project_id: str) -> CacheKey:
        return cls(kind=ResourceKind.PROJECT_FILES, resource_id=project_id)

    @classmethod
    def team_components(cls, team_id: str) -> CacheKey:
        return cls(kind=ResourceKind.TEAM_COMPONENTS, resource_id=team_id)

    @classmethod
    def team_styles(cls, team_id: str) -> CacheKey:
        return cls(kind=ResourceKind.TEAM_STYLES, resource_id=team_id)

    @classmethod
    def component(cls, component_key: str) -> CacheKey:
        return cls(kind=ResourceKind.COMPONENT, resource_id=component_key)

    # -- Hashing ---------------------------------------------------------------

    @staticmethod
    def hash_node_ids(ids: Sequence[str]) -> str:
        """Stable hash of a node-ID list.

        Order-sensitive: ``["1:1", "1:2"]`` and ``["1:2", "1:1"]`` hash
        differently.  Sort before calling if order does not matter to you.
        """
        return _digest(list(ids))

    @staticmethod
    def hash_export_params(ids: Sequence[str], fmt: str, scale: float) -> str:
        """Order-sensitive hash of node IDs plus export format and scale."""
        # "\x00" separates the id list from the scalars so an id that looks
        # like "png" can't collide with the format.
        return _digest([*ids, "\x00", fmt, repr(float(scale))])

    # -- Rendering -------------------------------------------------------------

    def as_string(self) -> str:
        """``kind:resource_id[:params_hash]`` -- the storage key in both tiers."""
        if self.params_hash is None:
            return f"{self.kind.value}:{self.resource_id}"
        return f"{self.kind.value}:{self.resource_id}:{self.params_hash}"

    def __str__(self) -> str:
        return self.as_string()


class CachedEntry(BaseModel):
    """A serialized payload plus its freshness metadata.

    This is also the on-disk JSON format: ``{data, fetched_at, ttl_seconds}``.
    """

    model_config = ConfigDict(frozen=True)

    # JSON-serialized payload.
    data: str
    # Unix timestamp (seconds) when the payload was fetched.
    fetched_at: int
    ttl_seconds: int

    @classmethod
    def create(cls, data: str, ttl_seconds: int, now: int | None = None) -> CachedEntry:
        fetched_at = int(time.time()) if now is None else now
        return cls(data=data, fetched_at=fetched_at, ttl_seconds=ttl_seconds)

    def is_valid(self, now: int | None = None) -> bool:
        """Return ``True`` while ``now - fetched_at < ttl_seconds``."""
        current = int(time.time()) if now is None else now
        return current - self.fetched_at < self.ttl_seconds

    @property
    def size(self) -> int:
        return len(self.data)


class CacheTTL:
    """Time-to-live per resource kind, in seconds."""

    # Full file metadata and node subsets - 5 minutes
    FILE_METADATA = 300
    # Light file metadata - 10 minutes
    FILE_META_LIGHT = 600
    # Image export URLs - 30 minutes (the signed S3 URLs expire)
    IMAGE_URLS = 1800
    # Version history - 1 minute, changes frequently
    VERSIONS = 60
    # Team projects and project files - 1 hour
    TEAM_DATA = 3600
    # Library components and styles - 30 minutes
    COMPONENTS = 1800

    _BY_KIND: dict[ResourceKind, int] = {
        ResourceKind.FILE: FILE_METADATA,
        ResourceKind.FILE_META: FILE_META_LIGHT,
        ResourceKind.NODES: FILE_METADATA,
        ResourceKind.IMAGES: IMAGE_URLS,
        ResourceKind.VERSIONS: VERSIONS,
        ResourceKind.TEAM_PROJECTS: TEAM_DATA,
        ResourceKind.PROJECT_FILES: TEAM_DATA,
        ResourceKind.TEAM_COMPONENTS: COMPONENTS,
        ResourceKind.TEAM_STYLES: COMPONENTS,
        ResourceKind.COMPONENT: COMPONENTS,
    }

    @classmethod
    def for_kind(cls, kind: ResourceKind) -> int:
        return cls._BY_KIND[kind]


class CacheStats(BaseModel):
    """Snapshot of cache occupancy, as reported by ``fgm cache status``."""

    model_config = ConfigDict(frozen=True)

    memory_entries: int
    # Sum of serialized payload sizes held in memory.
    memory_weighted_size: int
    disk_enabled: bool
    disk_entries: int
    disk_path: Path | None = None
