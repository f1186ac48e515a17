"""Error taxonomy for the IdeaVerdict orchestration service.

Every error carries an HTTP status code and a client-safe message. The
request handlers convert these into responses in one place; nothing below
the gateway boundary ever reaches a client verbatim.

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

UNAVAILABLE_MESSAGE = "AI is temporarily unavailable. Please try again later."


class IdeaVerdictError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    public_message: str = "An unexpected error occurred. Please try again later."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)

    @property
    def retry_after(self) -> float | None:
        """Seconds the client should wait before retrying, if known."""
        return None


@dataclass
class FieldError:
    """A single offending field in a rejected payload."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class ClientInputError(IdeaVerdictError):
    """Malformed JSON or schema violation."""

    status_code = 400
    public_message = "Validation failed"

    def __init__(self, details: list[FieldError]):
        self.details = details
        summary = "; ".join(f"{d.field}: {d.message}" for d in details)
        super().__init__(f"Validation failed: {summary}")


class AuthError(IdeaVerdictError):
    """Missing or invalid bearer credential."""

    status_code = 401
    public_message = "Unauthorized. Please log in and try again."


class RateLimitExceeded(IdeaVerdictError):
    """Raised when the local per-client rate limit is exceeded."""

    status_code = 429
    public_message = "Rate limit exceeded. Please try again later."

    def __init__(self, key: str, retry_after: float = 0):
        self.key = key
        self._retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {key}. Retry after {retry_after:.1f}s")

    @property
    def retry_after(self) -> float:
        return self._retry_after


class ConfigurationError(IdeaVerdictError):
    """The service is missing configuration it needs (credentials, URLs)."""

    status_code = 500
    public_message = "AI service unavailable"


class IdentityServiceError(IdeaVerdictError):
    """The identity service could not be reached or answered with a server error."""

    status_code = 503
    public_message = "Authentication service unavailable. Please try again later."


class GatewayError(IdeaVerdictError):
    """Failure talking to the upstream model provider.

    Attributes:
        status: Upstream (or synthesized) HTTP status.
        is_quota_exceeded: The provider reported quota/resource exhaustion.
        is_rate_limited: The provider answered 429.
    """

    public_message = UNAVAILABLE_MESSAGE

    def __init__(
        self,
        message: str,
        status: int = 500,
        is_quota_exceeded: bool = False,
        is_rate_limited: bool = False,
    ):
        self.status = status
        self.is_quota_exceeded = is_quota_exceeded
        self.is_rate_limited = is_rate_limited
        super().__init__(message)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.is_rate_limited or self.is_quota_exceeded:
            return 429
        if self.status == 503:
            return 503
        return 500


class GatewayQuotaError(GatewayError):
    """One or more upstream credentials reported quota exhaustion."""

    DEFAULT_RETRY_AFTER = 60.0

    def __init__(
        self,
        message: str = UNAVAILABLE_MESSAGE,
        status: int = 429,
        is_rate_limited: bool = True,
        all_credentials_exhausted: bool = False,
    ):
        self.all_credentials_exhausted = all_credentials_exhausted
        super().__init__(
            message,
            status=status,
            is_quota_exceeded=True,
            is_rate_limited=is_rate_limited,
        )

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 503 if self.all_credentials_exhausted else 429

    @property
    def retry_after(self) -> float:
        return self.DEFAULT_RETRY_AFTER


class GatewayServiceError(GatewayError):
    """Any non-quota upstream failure: bad status, malformed or empty output."""

    def __init__(self, message: str = "AI service error", status: int = 500):
        super().__init__(message, status=status)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 500


class QuotaCooldownError(GatewayError):
    """Upstream is confirmed globally exhausted; no network call was made."""

    def __init__(self, remaining: float):
        self.remaining = remaining
        super().__init__(UNAVAILABLE_MESSAGE, status=503, is_quota_exceeded=True)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 503

    @property
    def retry_after(self) -> float:
        return self.remaining


def error_body(error: IdeaVerdictError) -> dict[str, Any]:
    """Build the client-facing JSON body for an error."""
    body: dict[str, Any] = {"error": error.public_message}
    if isinstance(error, ClientInputError):
        body["details"] = [d.to_dict() for d in error.details]
    if error.retry_after is not None:
        body["retryAfter"] = retry_after_seconds(error.retry_after)
    return body


def retry_after_seconds(value: float) -> int:
    """Round a retry hint up to whole seconds, never below one."""
    whole = int(value)
    if whole < value:
        whole += 1
    return max(1, whole)
