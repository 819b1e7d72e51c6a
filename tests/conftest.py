"""Shared pytest fixtures for the fgm test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from fgm.providers.cache.tiered_cache import FigmaCache


class FakeClock:
    """Manually advanced wall clock (unix seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> FigmaCache:
    return FigmaCache(disk_path=None, clock=clock)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "fgm-cache"


@pytest.fixture
def disk_cache(cache_dir: Path, clock: FakeClock) -> FigmaCache:
    return FigmaCache(disk_path=cache_dir, clock=clock)
