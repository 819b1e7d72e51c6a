"""Figma REST API client with integrated caching and rate limiting.

Every outbound call goes through :meth:`FigmaClient.execute_request`, which

1. pauses briefly when the server reported a nearly exhausted quota,
2. sends the request,
3. records the quota headers in the shared :class:`RateLimiter`,
4. on HTTP 429 waits (``Retry-After`` or exponential backoff with jitter)
   and tries again, up to ``max_retries`` times, then raises
   :class:`RateLimitExceededError`,
5. otherwise resets the limiter and returns the response untouched.

The limiter is shared by all concurrent calls on one client and guarded by
an ``asyncio.Lock``.  The lock covers only the bookkeeping steps; the HTTP
call and every sleep run outside it, so concurrent requests are never
serialized on network latency.  Two callers may both read "not throttled"
and both send; last writer wins on the advisory quota values.

Non-429 errors and transport failures are not retried here.

The resource endpoints follow one pattern: check the injected cache, fetch
on a miss, store the result under the resource kind's TTL.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from fgm.api.rate_limit import RateLimiter
from fgm.config.settings import Settings
from fgm.interfaces.cache_provider import ICacheProvider
from fgm.models.cache import CacheKey, CacheStats, CacheTTL
from fgm.models.figma import (
    File,
    ImageResponse,
    ProjectFilesResponse,
    ProjectsResponse,
    User,
    VersionsResponse,
)
from fgm.utils.errors import (
    APIError,
    APIRequestError,
    AuthenticationError,
    RateLimitExceededError,
)
from fgm.utils.logging import get_logger

_PROVIDER = "figma"
_EXPORT_FORMATS = ("png", "jpg", "svg", "pdf")
_MIN_SCALE = 0.01
_MAX_SCALE = 4.0

_M = TypeVar("_M", bound=BaseModel)

RequestFn = Callable[[], Awaitable[httpx.Response]]
# (wait_seconds, attempt, max_retries)
BackoffCallback = Callable[[float, int, int], None]


class FigmaClient:
    """Async Figma API client.

    Parameters
    ----------
    settings:
        Token, base URL, timeout and retry configuration.
    cache:
        Shared response cache (see :func:`fgm.main.build_cache`).
    http_client:
        Injected ``httpx.AsyncClient`` for testability and connection
        pooling.  When omitted the client creates and owns one.
    rate_limiter:
        Optional pre-built limiter; defaults to one configured from settings.
    on_backoff:
        Called before each retry wait so a CLI can show progress.
    sleep:
        Awaitable sleep used for throttling and backoff waits.
    """

    def __init__(
        self,
        settings: Settings,
        cache: ICacheProvider,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        on_backoff: BackoffCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not settings.figma_token:
            raise AuthenticationError(
                message="No Figma access token configured (set FIGMA_TOKEN)",
                provider_name=_PROVIDER,
            )
        self._settings = settings
        self._base_url = settings.api_base_url.rstrip("/")
        self._cache = cache
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._headers = {
            "X-Figma-Token": settings.figma_token,
            "User-Agent": settings.user_agent,
        }
        self._rate_limiter = rate_limiter or RateLimiter.with_config(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        )
        self._limiter_lock = asyncio.Lock()
        self._on_backoff = on_backoff
        self._sleep = sleep
        self._logger = get_logger(__name__)

    # -- Accessors -------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    @property
    def cache(self) -> ICacheProvider:
        return self._cache

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> FigmaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- Request executor ------------------------------------------------------

    async def execute_request(self, request_fn: RequestFn) -> httpx.Response:
        """Run *request_fn* with throttling and 429 retries.

        *request_fn* must issue exactly one request per call; it is called
        again for every retry.

        Raises
        ------
        RateLimitExceededError
            When 429 responses outlast the retry budget.
        APIRequestError
            On transport failures (connection errors, timeouts).
        """
        while True:
            async with self._limiter_lock:
                pause = self._rate_limiter.proactive_delay_seconds()
            if pause:
                self._logger.debug("proactive_throttle", wait_s=pause)
                await self._sleep(pause)

            try:
                response = await request_fn()
            except httpx.HTTPError as exc:
                self._logger.warning("request_failed", error=str(exc))
                raise APIRequestError(
                    message=f"Request failed: {exc}",
                    provider_name=_PROVIDER,
                ) from exc

            delay: float | None = None
            attempt = 0
            async with self._limiter_lock:
                info = self._rate_limiter.parse_headers(response)
                if info.is_rate_limited:
                    delay = self._rate_limiter.next_retry_delay()
                    attempt = self._rate_limiter.retry_count
                else:
                    self._rate_limiter.reset()

            if not info.is_rate_limited:
                return response

            await response.aclose()
            max_retries = self._rate_limiter.max_retries
            if delay is None:
                self._logger.error("rate_limit_exhausted", max_retries=max_retries)
                raise RateLimitExceededError(
                    provider_name=_PROVIDER,
                    retries=max_retries,
                )

            self._logger.info(
                "rate_limited",
                wait_s=round(delay, 2),
                attempt=attempt,
                max_retries=max_retries,
                retry_after=info.retry_after,
            )
            if self._on_backoff is not None:
                self._on_backoff(delay, attempt, max_retries)
            await self._sleep(delay)

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET *url* through the executor and decode the JSON body.

        Raises
        ------
        APIError
            For any non-2xx status, carrying status code and body.
        """
        response = await self.execute_request(
            lambda: self._http.get(url, params=params, headers=self._headers)
        )
        if not response.is_success:
            body = response.text
            self._logger.warning("api_error", url=url, status=response.status_code)
            raise APIError(
                status_code=response.status_code,
                body=body,
                provider_name=_PROVIDER,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise APIRequestError(
                message=f"Invalid JSON from {url}: {exc}",
                provider_name=_PROVIDER,
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def _cached_fetch(
        self,
        key: CacheKey,
        url: str,
        model: type[_M] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        cached = self._cache.get(key, model)
        if cached is not None:
            self._logger.debug("cache_hit", key=key.as_string())
            return cached

        payload = await self.get_json(url, params=params)
        value = self._validate(payload, model, url) if model is not None else payload
        self._cache.set(key, value, CacheTTL.for_kind(key.kind))
        return value

    @staticmethod
    def _validate(payload: Any, model: type[_M], url: str) -> _M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise APIRequestError(
                message=f"Unexpected response shape from {url}: {exc.error_count()} errors",
                provider_name=_PROVIDER,
            ) from exc

    # -- Account ---------------------------------------------------------------

    async def get_me(self) -> User:
        payload = await self.get_json(f"{self._base_url}/me")
        return self._validate(payload, User, "/me")

    async def validate_token(self) -> bool:
        """Return ``True`` if the API accepts the configured token."""
        url = f"{self._base_url}/me"
        response = await self.execute_request(
            lambda: self._http.get(url, headers=self._headers)
        )
        return response.is_success

    # -- Files -----------------------------------------------------------------

    async def get_file(self, file_key: str) -> File:
        """Full file document (cached 5 minutes)."""
        return await self._cached_fetch(
            CacheKey.file(file_key),
            f"{self._base_url}/files/{file_key}",
            model=File,
        )

    async def get_file_cached(self, file_key: str, force_refresh: bool = False) -> File:
        """Like :meth:`get_file`, but *force_refresh* bypasses the cache."""
        if force_refresh:
            self._cache.invalidate(CacheKey.file(file_key))
        return await self.get_file(file_key)

    async def get_nodes(self, file_key: str, node_ids: Sequence[str]) -> dict[str, Any]:
        """Subset of nodes from a file, keyed on the ordered node-ID list."""
        return await self._cached_fetch(
            CacheKey.nodes(file_key, node_ids),
            f"{self._base_url}/files/{file_key}/nodes",
            params={"ids": ",".join(node_ids)},
        )

    async def get_file_meta(self, file_key: str) -> dict[str, Any]:
        """Light file metadata (cached 10 minutes)."""
        return await self._cached_fetch(
            CacheKey.file_meta(file_key),
            f"{self._base_url}/files/{file_key}/meta",
        )

    async def get_versions(self, file_key: str) -> VersionsResponse:
        """Version history (cached 1 minute)."""
        return await self._cached_fetch(
            CacheKey.versions(file_key),
            f"{self._base_url}/files/{file_key}/versions",
            model=VersionsResponse,
        )

    # -- Teams and projects ----------------------------------------------------

    async def get_team_projects(self, team_id: str) -> ProjectsResponse:
        return await self._cached_fetch(
            CacheKey.team_projects(team_id),
            f"{self._base_url}/teams/{team_id}/projects",
            model=ProjectsResponse,
        )

    async def get_project_files(self, project_id: str) -> ProjectFilesResponse:
        return await self._cached_fetch(
            CacheKey.project_files(project_id),
            f"{self._base_url}/projects/{project_id}/files",
            model=ProjectFilesResponse,
        )

    # -- Libraries -------------------------------------------------------------

    async def get_team_components(self, team_id: str) -> dict[str, Any]:
        return await self._cached_fetch(
            CacheKey.team_components(team_id),
            f"{self._base_url}/teams/{team_id}/components",
        )

    async def get_team_styles(self, team_id: str) -> dict[str, Any]:
        return await self._cached_fetch(
            CacheKey.team_styles(team_id),
            f"{self._base_url}/teams/{team_id}/styles",
        )

    async def get_component(self, component_key: str) -> dict[str, Any]:
        return await self._cached_fetch(
            CacheKey.component(component_key),
            f"{self._base_url}/components/{component_key}",
        )

    # -- Images ----------------------------------------------------------------

    async def export_images(
        self,
        file_key: str,
        node_ids: Sequence[str],
        fmt: str = "png",
        scale: float = 1.0,
    ) -> ImageResponse:
        """Render nodes and return their (temporary) download URLs.

        Only responses without an error and with at least one image are
        cached; a cached entry with no images is ignored.
        """
        if fmt not in _EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format {fmt!r}; use one of {_EXPORT_FORMATS}")
        if not _MIN_SCALE <= scale <= _MAX_SCALE:
            raise ValueError(f"Scale must be between {_MIN_SCALE} and {_MAX_SCALE:g}")

        key = CacheKey.images(file_key, node_ids, fmt, scale)
        cached = self._cache.get(key, ImageResponse)
        if cached is not None and cached.images:
            return cached

        url = f"{self._base_url}/images/{file_key}"
        payload = await self.get_json(
            url,
            params={"ids": ",".join(node_ids), "format": fmt, "scale": f"{scale:g}"},
        )
        images = self._validate(payload, ImageResponse, url)

        if images.err is None and images.images:
            self._cache.set(key, images, CacheTTL.IMAGE_URLS)
        return images

    async def get_image_fills(self, file_key: str) -> dict[str, Any]:
        """Image fill URLs used in a file (not cached)."""
        return await self.get_json(f"{self._base_url}/files/{file_key}/images")

    async def download_image(self, url: str) -> bytes:
        """Download a rendered image from its signed URL.

        These URLs point at the CDN rather than the API, but go through the
        executor anyway for uniform retry and error handling.
        """
        response = await self.execute_request(lambda: self._http.get(url))
        if not response.is_success:
            raise APIError(
                status_code=response.status_code,
                body=response.text,
                provider_name=_PROVIDER,
                message=f"Failed to download image: HTTP {response.status_code}",
            )
        return response.content
