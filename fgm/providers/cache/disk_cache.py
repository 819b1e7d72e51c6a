"""On-disk cache tier: one JSON file per cache key.

Lets cached responses survive between CLI invocations.  Each file holds a
serialized :class:`~fgm.models.cache.CachedEntry` (``{data, fetched_at,
ttl_seconds}``) and is named after the cache key with ``:``, ``/``, ``\\``
and spaces replaced by ``_``.

Nothing here raises.  Mutating helpers return ``CacheError | None`` and
leave the decision to log to the caller; reads return ``None`` for a
missing, unreadable or corrupt file.  Writes go through a temporary file and
``os.replace`` so a concurrent reader sees either the old or the new entry,
never half of one; concurrent writers of the same key are last-writer-wins.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from fgm.models.cache import CachedEntry
from fgm.utils.errors import CacheError

logger = structlog.get_logger(logger_name=__name__)

_EXTENSION = ".json"
_UNSAFE_CHARS = (":", "/", "\\", " ")


def sanitize_key(key: str) -> str:
    """Make a cache key string safe to use as a file name."""
    for char in _UNSAFE_CHARS:
        key = key.replace(char, "_")
    return key


class DiskCacheTier:
    """Directory of per-key JSON files.

    The directory is created on construction.  If that fails (read-only
    home, permissions) the tier reports itself unavailable via
    :attr:`available` and the owning cache runs memory-only.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        error = self._ensure_dir()
        self._available = error is None
        if error is not None:
            logger.warning(
                "disk_cache_unavailable",
                path=str(self._root),
                error=str(error),
            )

    @property
    def root(self) -> Path:
        return self._root

    @property
    def available(self) -> bool:
        return self._available

    def path_for(self, key: str) -> Path:
        return self._root / f"{sanitize_key(key)}{_EXTENSION}"

    # -- Reads -----------------------------------------------------------------

    def read(self, key: str) -> CachedEntry | None:
        """Load the entry for *key*, or ``None`` if absent or unreadable."""
        path = self.path_for(key)
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("disk_cache_read_failed", path=str(path), error=str(exc))
            return None
        try:
            return CachedEntry.model_validate_json(content)
        except ValidationError as exc:
            logger.warning(
                "disk_cache_corrupt_entry",
                path=str(path),
                error_count=exc.error_count(),
            )
            return None
        except ValueError as exc:
            # Undecodable bytes surfacing outside pydantic's error reporting.
            logger.warning("disk_cache_corrupt_entry", path=str(path), error=str(exc))
            return None

    def count(self) -> int:
        """Number of entry files currently in the directory."""
        try:
            return sum(1 for p in self._root.iterdir() if p.suffix == _EXTENSION)
        except OSError:
            return 0

    def total_bytes(self) -> int:
        total = 0
        try:
            for p in self._root.iterdir():
                if p.suffix == _EXTENSION:
                    total += p.stat().st_size
        except OSError:
            return total
        return total

    # -- Writes ----------------------------------------------------------------

    def write(self, key: str, entry: CachedEntry) -> CacheError | None:
        path = self.path_for(key)
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._root,
                prefix=".tmp-",
                suffix=".part",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(entry.model_dump_json())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            return CacheError(message=f"Could not write {path}: {exc}")
        return None

    def delete(self, key: str) -> CacheError | None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            return CacheError(message=f"Could not delete {path}: {exc}")
        return None

    def delete_matching(self, fragment: str) -> tuple[int, list[CacheError]]:
        """Delete every entry file whose name contains *fragment*.

        Returns the number of files removed and the errors encountered.
        """
        removed = 0
        errors: list[CacheError] = []
        needle = sanitize_key(fragment)
        try:
            candidates = [p for p in self._root.iterdir() if needle in p.name]
        except OSError as exc:
            return 0, [CacheError(message=f"Could not list {self._root}: {exc}")]
        for path in candidates:
            try:
                path.unlink(missing_ok=True)
                removed += 1
            except OSError as exc:
                errors.append(CacheError(message=f"Could not delete {path}: {exc}"))
        return removed, errors

    def clear(self) -> CacheError | None:
        """Remove the whole directory and recreate it empty."""
        try:
            shutil.rmtree(self._root)
        except FileNotFoundError:
            pass
        except OSError as exc:
            return CacheError(message=f"Could not clear {self._root}: {exc}")
        return self._ensure_dir()

    def _ensure_dir(self) -> CacheError | None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return CacheError(message=f"Could not create {self._root}: {exc}")
        if not os.access(self._root, os.W_OK):
            return CacheError(message=f"{self._root} is not writable")
        return None
