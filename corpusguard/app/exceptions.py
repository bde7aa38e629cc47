"""Custom exceptions for the corpusguard application."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from starlette.responses import Response


class CorpusGuardError(Exception):
    """Base class for corpusguard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(CorpusGuardError):
    """Raised at startup when required configuration is missing.

    Fatal: the limiter (and every handler it protects) must not start
    rather than silently run without limiting.
    """
    status_code = 500


class BackendUnavailableError(CorpusGuardError):
    """Raised when the shared counter store cannot be reached mid-check.

    Maps to HTTP 503 Service Unavailable when it escapes, but the admission
    API normally converts it into the configured fail-open/fail-closed outcome.
    """
    status_code = 503

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        message = f"Shared counter store unavailable during {operation}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RateLimitExceededError(CorpusGuardError):
    """Raised by the route dependency to short-circuit a denied request.

    Carries the fully built denial response, which the application's
    exception handler returns verbatim.
    """
    status_code = 429

    def __init__(self, response: "Response", detail: str = "Rate limit exceeded"):
        self.response = response
        super().__init__(detail)


class UnknownPresetError(CorpusGuardError, KeyError):
    """Raised when a route asks for a preset that is not registered."""
    status_code = 500

    def __init__(self, name: str):
        self.name = name
        CorpusGuardError.__init__(self, f"Unknown rate limit preset: {name!r}")

    def __str__(self) -> str:
        return self.message
