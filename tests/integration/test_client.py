"""Integration tests for FigmaClient against a mocked Figma API.

HTTP is served by ``httpx.MockTransport`` and sleeps are recorded instead of
awaited, so retry timing is asserted without real waits.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

import httpx
import pytest

from fgm.api.client import FigmaClient
from fgm.api.rate_limit import RateLimiter
from fgm.config.settings import Settings
from fgm.models.cache import CacheKey
from fgm.models.figma import File, ImageResponse
from fgm.providers.cache.tiered_cache import FigmaCache
from fgm.utils.errors import (
    APIError,
    APIRequestError,
    AuthenticationError,
    RateLimitExceededError,
)

BASE = "https://api.figma.test/v1"


def _settings(**overrides: Any) -> Settings:
    defaults: dict[str, Any] = {
        "figma_token": "figd_test-token",
        "api_base_url": BASE,
        "disk_cache_enabled": False,
        "max_retries": 3,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _json(payload: Any, status: int = 200, **headers: str) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **headers},
    )


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


class _Events:
    """Stand-in logger recording ``(level, event)`` pairs."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def __getattr__(self, level: str) -> Callable[..., None]:
        def _log(event: str, **_: Any) -> None:
            self.calls.append((level, event))

        return _log


class _Server:
    """Scripted handler: pops one response factory per request."""

    def __init__(self, *responses: Callable[[], httpx.Response] | httpx.Response) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"unexpected request {request.url}")
        item = self._responses.pop(0)
        return item() if callable(item) else item

    @property
    def count(self) -> int:
        return len(self.requests)


def _client(
    handler: Callable[[httpx.Request], Any],
    sleeps: Callable[[float], Awaitable[Any]],
    cache: FigmaCache | None = None,
    **settings_overrides: Any,
) -> FigmaClient:
    settings = _settings(**settings_overrides)
    return FigmaClient(
        settings=settings,
        cache=cache or FigmaCache.memory_only(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        rate_limiter=RateLimiter(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            random_fn=lambda: 0.0,
        ),
        sleep=sleeps,
    )


_FILE = {
    "name": "Demo",
    "lastModified": "2024-05-01T10:00:00Z",
    "version": "42",
    "document": {
        "id": "0:0",
        "name": "Document",
        "type": "DOCUMENT",
        "children": [
            {
                "id": "0:1",
                "name": "Page 1",
                "type": "CANVAS",
                "children": [{"id": "1:2", "name": "Hero", "type": "FRAME"}],
            }
        ],
    },
}


# ======================================================================
# Construction
# ======================================================================


class TestConstruction:
    def test_missing_token(self) -> None:
        with pytest.raises(AuthenticationError):
            FigmaClient(settings=_settings(figma_token=""), cache=FigmaCache.memory_only())

    @pytest.mark.asyncio
    async def test_sends_auth_headers(self) -> None:
        server = _Server(_json({"id": "u1", "handle": "ana", "email": "a@x.io"}))
        client = _client(server, _Sleeps())
        user = await client.get_me()
        assert user.handle == "ana"
        request = server.requests[0]
        assert request.headers["X-Figma-Token"] == "figd_test-token"
        assert request.headers["User-Agent"] == "fgm-cli/0.1.0"
        assert str(request.url) == f"{BASE}/me"


# ======================================================================
# Request executor
# ======================================================================


class TestExecutor:
    @pytest.mark.asyncio
    async def test_success_is_returned_without_sleeping(self) -> None:
        sleeps = _Sleeps()
        client = _client(_Server(_json({"ok": True})), sleeps)
        assert await client.get_json(f"{BASE}/anything") == {"ok": True}
        assert sleeps.calls == []

    @pytest.mark.asyncio
    async def test_retries_429_then_succeeds(self) -> None:
        sleeps = _Sleeps()
        server = _Server(
            _json({}, status=429),
            _json({}, status=429),
            _json({"ok": True}),
        )
        client = _client(server, sleeps, base_delay_ms=1000)
        assert await client.get_json(f"{BASE}/x") == {"ok": True}
        assert server.count == 3
        assert sleeps.calls == [1.0, 2.0]
        assert client.rate_limiter.retry_count == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        sleeps = _Sleeps()
        server = _Server(*[_json({}, status=429) for _ in range(4)])
        client = _client(server, sleeps, max_retries=3)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await client.get_json(f"{BASE}/x")
        assert exc_info.value.retries == 3
        assert server.count == 4
        assert sleeps.calls == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_zero_retries_fails_on_first_429(self) -> None:
        server = _Server(_json({}, status=429))
        client = _client(server, _Sleeps(), max_retries=0)
        with pytest.raises(RateLimitExceededError):
            await client.get_json(f"{BASE}/x")
        assert server.count == 1

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self) -> None:
        sleeps = _Sleeps()
        server = _Server(_json({}, 429, **{"Retry-After": "7"}), _json({"ok": 1}))
        client = _client(server, sleeps)
        await client.get_json(f"{BASE}/x")
        assert sleeps.calls == [7.0]

    @pytest.mark.asyncio
    async def test_backoff_callback(self) -> None:
        seen: list[tuple[float, int, int]] = []
        server = _Server(_json({}, status=429), _json({"ok": 1}))
        client = _client(server, _Sleeps())
        client._on_backoff = lambda wait, attempt, total: seen.append((wait, attempt, total))
        await client.get_json(f"{BASE}/x")
        assert seen == [(1.0, 1, 3)]

    @pytest.mark.asyncio
    async def test_backoff_is_logged_below_warning(self) -> None:
        events = _Events()
        server = _Server(_json({}, status=429), _json({"ok": 1}))
        client = _client(server, _Sleeps())
        client._logger = events
        await client.get_json(f"{BASE}/x")
        assert ("info", "rate_limited") in events.calls
        assert [lvl for lvl, _ in events.calls if lvl in ("warning", "error")] == []

    @pytest.mark.asyncio
    async def test_concurrent_requests_overlap(self) -> None:
        in_flight = 0
        peak = 0
        all_started = asyncio.Event()

        async def _handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            if peak == 4:
                all_started.set()
            # Times out if requests are serialized.
            await asyncio.wait_for(all_started.wait(), timeout=1.0)
            in_flight -= 1
            return _json({"path": request.url.path})

        client = _client(_handler, _Sleeps())
        results = await asyncio.gather(*(client.get_json(f"{BASE}/n{i}") for i in range(4)))
        assert [r["path"] for r in results] == [f"/v1/n{i}" for i in range(4)]
        assert peak == 4

    @pytest.mark.asyncio
    async def test_backoff_does_not_block_other_callers(self) -> None:
        backoff_started = asyncio.Event()
        finish_backoff = asyncio.Event()
        slow_calls = 0

        async def _sleep(_delay: float) -> None:
            backoff_started.set()
            await finish_backoff.wait()

        def _handler(request: httpx.Request) -> httpx.Response:
            nonlocal slow_calls
            if request.url.path.endswith("/slow"):
                slow_calls += 1
                return _json({}, status=429) if slow_calls == 1 else _json({"slow": True})
            return _json({"fast": True})

        client = _client(_handler, _sleep)
        slow = asyncio.create_task(client.get_json(f"{BASE}/slow"))
        await asyncio.wait_for(backoff_started.wait(), timeout=1.0)

        fast = await asyncio.wait_for(client.get_json(f"{BASE}/fast"), timeout=1.0)
        assert fast == {"fast": True}
        assert not slow.done()

        finish_backoff.set()
        assert await asyncio.wait_for(slow, timeout=1.0) == {"slow": True}
        assert slow_calls == 2

    @pytest.mark.asyncio
    async def test_proactive_throttle_when_quota_low(self) -> None:
        sleeps = _Sleeps()
        server = _Server(
            _json({"n": 1}, **{"X-RateLimit-Remaining": "3"}),
            _json({"n": 2}, **{"X-RateLimit-Remaining": "50"}),
            _json({"n": 3}),
        )
        client = _client(server, sleeps)
        await client.get_json(f"{BASE}/a")
        assert sleeps.calls == []
        await client.get_json(f"{BASE}/b")
        assert sleeps.calls == [0.5]
        await client.get_json(f"{BASE}/c")
        assert sleeps.calls == [0.5]

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self) -> None:
        sleeps = _Sleeps()
        server = _Server(httpx.Response(404, text="Not found"))
        client = _client(server, sleeps)
        with pytest.raises(APIError) as exc_info:
            await client.get_json(f"{BASE}/files/missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.is_not_found is True
        assert exc_info.value.body == "Not found"
        assert server.count == 1
        assert sleeps.calls == []

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self) -> None:
        server = _Server(httpx.Response(503, text="down"))
        client = _client(server, _Sleeps())
        with pytest.raises(APIError):
            await client.get_json(f"{BASE}/x")
        assert server.count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_error_is_not_api_error(self) -> None:
        server = _Server(*[_json({}, status=429) for _ in range(4)])
        client = _client(server, _Sleeps())
        with pytest.raises(RateLimitExceededError) as exc_info:
            await client.get_json(f"{BASE}/x")
        assert not isinstance(exc_info.value, APIError)

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def _boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(_boom, _Sleeps())
        with pytest.raises(APIRequestError) as exc_info:
            await client.get_json(f"{BASE}/x")
        assert not isinstance(exc_info.value, APIError)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        server = _Server(httpx.Response(200, text="<html>"))
        client = _client(server, _Sleeps())
        with pytest.raises(APIRequestError, match="Invalid JSON"):
            await client.get_json(f"{BASE}/x")

    @pytest.mark.asyncio
    async def test_validate_token(self) -> None:
        server = _Server(httpx.Response(403, text="Invalid token"), _json({"id": "u", "handle": "h"}))
        client = _client(server, _Sleeps())
        assert await client.validate_token() is False
        assert await client.validate_token() is True


# ======================================================================
# Cached endpoints
# ======================================================================


class TestCachedEndpoints:
    @pytest.mark.asyncio
    async def test_get_file_fetches_once(self) -> None:
        server = _Server(_json(_FILE))
        client = _client(server, _Sleeps())
        first = await client.get_file("abc")
        second = await client.get_file("abc")
        assert isinstance(first, File)
        assert first == second
        assert first.document.frame_ids() == ["1:2"]
        assert server.count == 1

    @pytest.mark.asyncio
    async def test_force_refresh_refetches(self) -> None:
        server = _Server(_json(_FILE), _json({**_FILE, "version": "43"}))
        client = _client(server, _Sleeps())
        await client.get_file_cached("abc")
        refreshed = await client.get_file_cached("abc", force_refresh=True)
        assert refreshed.version == "43"
        assert server.count == 2

    @pytest.mark.asyncio
    async def test_file_survives_on_disk(self, tmp_path) -> None:
        server = _Server(_json(_FILE))
        cache_dir = tmp_path / "cache"
        client = _client(server, _Sleeps(), cache=FigmaCache(disk_path=cache_dir))
        await client.get_file("abc")

        # A second process: fresh memory tier, same directory, no HTTP.
        other = _client(_Server(), _Sleeps(), cache=FigmaCache(disk_path=cache_dir))
        cached = await other.get_file("abc")
        assert cached.name == "Demo"

    @pytest.mark.asyncio
    async def test_nodes_keyed_on_ordered_ids(self) -> None:
        server = _Server(_json({"nodes": {"1": {}}}), _json({"nodes": {"2": {}}}))
        client = _client(server, _Sleeps())
        await client.get_nodes("abc", ["1:1", "1:2"])
        await client.get_nodes("abc", ["1:1", "1:2"])
        await client.get_nodes("abc", ["1:2", "1:1"])
        assert server.count == 2
        assert server.requests[0].url.params["ids"] == "1:1,1:2"

    @pytest.mark.asyncio
    async def test_endpoint_urls(self) -> None:
        server = _Server(
            _json({"file": {}}),
            _json({"versions": []}),
            _json({"projects": [{"id": "1", "name": "P"}]}),
            _json({"files": []}),
            _json({"meta": {}}),
            _json({"meta": {}}),
            _json({"meta": {}}),
            _json({"images": {}}),
        )
        client = _client(server, _Sleeps())
        await client.get_file_meta("abc")
        await client.get_versions("abc")
        projects = await client.get_team_projects("t1")
        await client.get_project_files("p1")
        await client.get_team_components("t1")
        await client.get_team_styles("t1")
        await client.get_component("ck")
        await client.get_image_fills("abc")

        assert projects.projects[0].name == "P"
        assert [r.url.path for r in server.requests] == [
            "/v1/files/abc/meta",
            "/v1/files/abc/versions",
            "/v1/teams/t1/projects",
            "/v1/projects/p1/files",
            "/v1/teams/t1/components",
            "/v1/teams/t1/styles",
            "/v1/components/ck",
            "/v1/files/abc/images",
        ]

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self) -> None:
        server = _Server(httpx.Response(500, text="boom"), _json({"meta": {}}))
        client = _client(server, _Sleeps())
        with pytest.raises(APIError):
            await client.get_file_meta("abc")
        assert await client.get_file_meta("abc") == {"meta": {}}

    @pytest.mark.asyncio
    async def test_unexpected_shape(self) -> None:
        server = _Server(_json({"name": "no document"}))
        client = _client(server, _Sleeps())
        with pytest.raises(APIRequestError, match="Unexpected response shape"):
            await client.get_file("abc")

    @pytest.mark.asyncio
    async def test_clear_cache(self) -> None:
        server = _Server(_json({"meta": {}}), _json({"meta": {}}))
        client = _client(server, _Sleeps())
        await client.get_file_meta("abc")
        assert client.cache_stats().memory_entries == 1
        client.clear_cache()
        await client.get_file_meta("abc")
        assert server.count == 2


# ======================================================================
# Image export
# ======================================================================


class TestExportImages:
    @pytest.mark.asyncio
    async def test_export_params_and_caching(self) -> None:
        server = _Server(_json({"err": None, "images": {"1:2": "https://cdn/img.png"}}))
        client = _client(server, _Sleeps())
        first = await client.export_images("abc", ["1:2"], fmt="png", scale=2)
        second = await client.export_images("abc", ["1:2"], fmt="png", scale=2.0)
        assert first.images == {"1:2": "https://cdn/img.png"}
        assert second == first
        assert server.count == 1
        params = server.requests[0].url.params
        assert params["ids"] == "1:2"
        assert params["format"] == "png"
        assert params["scale"] == "2"

    @pytest.mark.asyncio
    async def test_different_format_is_separate_entry(self) -> None:
        server = _Server(
            _json({"images": {"1:2": "https://cdn/a.png"}}),
            _json({"images": {"1:2": "https://cdn/a.svg"}}),
        )
        client = _client(server, _Sleeps())
        await client.export_images("abc", ["1:2"], fmt="png")
        svg = await client.export_images("abc", ["1:2"], fmt="svg")
        assert svg.images["1:2"] == "https://cdn/a.svg"
        assert server.count == 2

    @pytest.mark.asyncio
    async def test_error_response_not_cached(self) -> None:
        server = _Server(
            _json({"err": "Render timeout", "images": {"1:2": None}}),
            _json({"err": None, "images": {"1:2": "https://cdn/a.png"}}),
        )
        client = _client(server, _Sleeps())
        failed = await client.export_images("abc", ["1:2"])
        assert failed.err == "Render timeout"
        ok = await client.export_images("abc", ["1:2"])
        assert ok.images["1:2"] == "https://cdn/a.png"
        assert server.count == 2

    @pytest.mark.asyncio
    async def test_empty_images_not_cached(self) -> None:
        server = _Server(_json({"images": {}}), _json({"images": {}}))
        client = _client(server, _Sleeps())
        await client.export_images("abc", ["1:2"])
        await client.export_images("abc", ["1:2"])
        assert server.count == 2

    @pytest.mark.asyncio
    async def test_cached_entry_without_images_is_ignored(self) -> None:
        cache = FigmaCache.memory_only()
        cache.set(
            CacheKey.images("abc", ["1:2"], "png", 1.0),
            ImageResponse(images={}),
            ttl=1800,
        )
        server = _Server(_json({"images": {"1:2": "https://cdn/a.png"}}))
        client = _client(server, _Sleeps(), cache=cache)
        result = await client.export_images("abc", ["1:2"])
        assert result.images["1:2"] == "https://cdn/a.png"
        assert server.count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("fmt", "scale"),
        [("gif", 1.0), ("png", 0.0), ("png", 4.5)],
    )
    async def test_invalid_arguments(self, fmt: str, scale: float) -> None:
        server = _Server()
        client = _client(server, _Sleeps())
        with pytest.raises(ValueError):
            await client.export_images("abc", ["1:2"], fmt=fmt, scale=scale)
        assert server.count == 0

    @pytest.mark.asyncio
    async def test_download_image(self) -> None:
        server = _Server(httpx.Response(200, content=b"\x89PNG"))
        client = _client(server, _Sleeps())
        data = await client.download_image("https://cdn.example/img.png")
        assert data == b"\x89PNG"
        assert "X-Figma-Token" not in server.requests[0].headers

    @pytest.mark.asyncio
    async def test_download_failure(self) -> None:
        server = _Server(httpx.Response(403, text="expired"))
        client = _client(server, _Sleeps())
        with pytest.raises(APIError, match="Failed to download image: HTTP 403"):
            await client.download_image("https://cdn.example/img.png")


# ======================================================================
# Lifecycle
# ======================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_http_client_left_open(self) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(_Server()))
        async with FigmaClient(_settings(), FigmaCache.memory_only(), http_client=http):
            pass
        assert http.is_closed is False
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_http_client_closed(self) -> None:
        client = FigmaClient(_settings(), FigmaCache.memory_only())
        async with client:
            pass
        assert client.http.is_closed is True
