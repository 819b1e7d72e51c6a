"""Pydantic models: cache identity/storage and typed Figma API responses."""

from fgm.models.cache import CachedEntry, CacheKey, CacheStats, CacheTTL, ResourceKind
from fgm.models.figma import (
    Document,
    File,
    ImageResponse,
    Node,
    ProjectFilesResponse,
    ProjectsResponse,
    User,
    VersionsResponse,
)

__all__ = [
    "CacheKey",
    "CacheStats",
    "CacheTTL",
    "CachedEntry",
    "Document",
    "File",
    "ImageResponse",
    "Node",
    "ProjectFilesResponse",
    "ProjectsResponse",
    "ResourceKind",
    "User",
    "VersionsResponse",
]
