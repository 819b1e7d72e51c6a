"""Custom exception hierarchy for fgm.

All application exceptions inherit from :class:`FgmError`, which carries an
optional ``provider_name`` so error handlers can identify which layer or
remote service (e.g. "figma", "cache") caused the failure.

The hierarchy is organized by where the failure happens:

    FgmError  (base -- catch-all for any fgm error)
    +-- ConfigurationError       (startup / missing config)
    +-- AuthenticationError      (no token, or token rejected)
    +-- InvalidURLError          (unparseable Figma URL or file key)
    +-- APIRequestError          (transport failure, no HTTP status)
    |   +-- APIError             (non-2xx HTTP status other than 429)
    +-- RateLimitExceededError   (429 responses outlasted the retry budget)
    +-- CacheError               (disk/serialization failure inside the cache)

``CacheError`` never reaches command handlers: the cache returns it from its
private helpers and the public methods log and drop it.  Everything else is
raised to the caller.  ``RateLimitExceededError`` deliberately does not
inherit from ``APIError`` so "the server keeps throttling us" can never be
confused with "the resource doesn't exist".
"""


class FgmError(Exception):
    """Base exception for all fgm errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which service triggered the error.  The
    ``__str__`` method prefixes the provider name in brackets for log
    output, e.g. ``[figma] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Startup / input errors
# ---------------------------------------------------------------------------

class ConfigurationError(FgmError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class AuthenticationError(FgmError):
    """Raised when no access token is configured or the API rejects it."""

    def __init__(
        self,
        message: str = "No Figma access token configured",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidURLError(FgmError):
    """Raised when a Figma URL or file key cannot be parsed."""

    def __init__(
        self,
        message: str = "Invalid Figma URL",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Remote API errors
# ---------------------------------------------------------------------------

class APIRequestError(FgmError):
    """Raised when a request to the remote API fails.

    ``status_code`` and ``body`` are populated when the server answered;
    both are ``None`` for connection failures and timeouts.
    """

    def __init__(
        self,
        message: str = "API request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self._status_code = status_code
        self._body = body
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def body(self) -> str | None:
        return self._body


class APIError(APIRequestError):
    """Raised for a non-2xx response (other than an exhausted 429)."""

    def __init__(
        self,
        status_code: int,
        body: str = "",
        provider_name: str | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message=message or f"API error {status_code}: {body}",
            provider_name=provider_name,
            status_code=status_code,
            body=body,
        )

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RateLimitExceededError(FgmError):
    """Raised when 429 responses continue after the retry budget is spent.

    Not retried further by the client; the command should fail with a
    message telling the user to wait before trying again.
    """

    def __init__(
        self,
        message: str = (
            "Rate limit exceeded after maximum retries. "
            "Please wait before trying again."
        ),
        provider_name: str | None = None,
        retries: int = 0,
    ) -> None:
        self._retries = retries
        super().__init__(message=message, provider_name=provider_name)

    @property
    def retries(self) -> int:
        return self._retries


# ---------------------------------------------------------------------------
# Cache errors
# ---------------------------------------------------------------------------

class CacheError(FgmError):
    """A failed cache read/write.  Returned, logged and discarded; never raised
    out of the cache's public methods."""

    def __init__(
        self,
        message: str = "Cache operation failed",
        provider_name: str | None = "cache",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
