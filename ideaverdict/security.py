# ================================================================
# IdeaVerdict - Security Module
# Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
# ================================================================

"""
Security utilities for the IdeaVerdict endpoints.

Features:
- Text sanitization and cost-control truncation
- Client identity resolution from proxy headers
- CORS origin policy (explicit allow-list plus preview-domain patterns)
- Security headers
- Bearer-token verification against the external identity service
- Audit logging
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from ideaverdict.errors import AuthError, ConfigurationError, IdentityServiceError

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


# ================================================================
# Input Sanitization
# ================================================================

# Control characters except tab, newline and carriage return
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(text: str) -> str:
    """Strip control characters and surrounding whitespace."""
    return CONTROL_CHARS.sub("", text).strip()


def truncate_text(text: str, max_length: int) -> str:
    """Cap text at ``max_length`` characters, marking the cut with '...'."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# ================================================================
# Client Identity
# ================================================================

CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """Return the originating client address from proxy headers.

    Header names are expected lowercased. ``X-Forwarded-For`` contributes its
    first hop only.
    """
    for name in CLIENT_IP_HEADERS:
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return UNKNOWN_CLIENT


def mask_client(client: str) -> str:
    """Shorten a client address for logs."""
    return client if len(client) <= 10 else client[:10] + "..."


# ================================================================
# CORS Origin Policy
# ================================================================

DEFAULT_ALLOWED_ORIGINS = (
    "https://ideaverdict.in",
    "https://www.ideaverdict.in",
    "http://localhost:5173",
    "http://localhost:3000",
)

DEFAULT_ORIGIN_PATTERNS = (
    r"https://[a-z0-9-]+\.lovable\.app",
    r"https://[a-z0-9-]+\.lovableproject\.com",
    r"https://[a-z0-9-]+-preview--[a-z0-9-]+\.lovable\.app",
)


@dataclass(frozen=True)
class OriginPolicy:
    """Which browser origins may call the API."""

    allowed_origins: tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    origin_patterns: tuple[str, ...] = DEFAULT_ORIGIN_PATTERNS

    @property
    def origin_regex(self) -> str | None:
        """Single anchored alternation of all patterns, for CORSMiddleware."""
        if not self.origin_patterns:
            return None
        return "^(?:" + "|".join(f"(?:{p})" for p in self.origin_patterns) + ")$"

    def is_allowed(self, origin: str | None) -> bool:
        if not origin:
            return False
        if origin in self.allowed_origins:
            return True
        regex = self.origin_regex
        return bool(regex and re.fullmatch(regex, origin))


# ================================================================
# Security Headers
# ================================================================


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
}


def add_security_headers(headers: dict[str, str]) -> dict[str, str]:
    """Add security headers to response."""
    return {**SECURITY_HEADERS, **headers}


# ================================================================
# Authentication
# ================================================================


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity returned by the identity service."""

    user_id: str
    email: str | None = None


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthError: Header missing or not a bearer credential.
    """
    if not authorization:
        raise AuthError("Missing Authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header is not a bearer token")
    return token.strip()


class TokenVerifier(ABC):
    """Validates bearer credentials with an external identity provider."""

    @abstractmethod
    async def verify(self, authorization: str | None) -> AuthenticatedUser:
        """Return the caller's identity or raise ``AuthError``."""


class HttpTokenVerifier(TokenVerifier):
    """Verifies tokens by asking the identity service's user endpoint.

    The endpoint answers 200 with a JSON user object (``id``, ``email``) for
    a valid token. A 4xx status means the token is rejected; an unreachable
    service or a 5xx status raises ``IdentityServiceError``.
    """

    def __init__(
        self,
        user_url: str | None,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.user_url = user_url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def verify(self, authorization: str | None) -> AuthenticatedUser:
        token = extract_bearer_token(authorization)
        if not self.user_url:
            logger.error("Identity service URL is not configured")
            raise ConfigurationError("Identity service URL is not configured")

        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            if self._client is not None:
                response = await self._client.get(self.user_url, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.user_url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Identity service unreachable: {e}")
            raise IdentityServiceError("Identity service unreachable") from e

        if response.status_code >= 500:
            logger.error(f"Identity service error ({response.status_code})")
            raise IdentityServiceError(f"Identity service error ({response.status_code})")
        if response.status_code != 200:
            raise AuthError(f"Identity service rejected token ({response.status_code})")

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise AuthError("Malformed identity response") from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise AuthError("Identity response has no user id")
        return AuthenticatedUser(user_id=str(user_id), email=data.get("email"))


class StaticTokenVerifier(TokenVerifier):
    """Accepts a fixed set of tokens. For local development and tests."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    async def verify(self, authorization: str | None) -> AuthenticatedUser:
        token = extract_bearer_token(authorization)
        user_id = self._tokens.get(token)
        if user_id is None:
            raise AuthError("Unknown token")
        return AuthenticatedUser(user_id=user_id)


# ================================================================
# Audit Logging
# ================================================================


@dataclass
class AuditEvent:
    """Audit log event."""

    timestamp: float
    event_type: str
    user_id: str | None
    ip_address: str | None
    action: str
    resource: str | None
    status: str
    details: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Logs security-relevant events."""

    def __init__(self, logger_name: str = "ideaverdict.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    def log_event(self, event: AuditEvent) -> None:
        """Log an audit event."""
        log_data = {
            "timestamp": event.timestamp,
            "event_type": event.event_type,
            "user_id": event.user_id,
            "ip_address": event.ip_address,
            "action": event.action,
            "resource": event.resource,
            "status": event.status,
            **event.details,
        }
        self._logger.info(f"AUDIT: {log_data}")

    def log_authentication(
        self,
        success: bool,
        resource: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log authentication attempt."""
        self.log_event(
            AuditEvent(
                timestamp=time.time(),
                event_type="authentication",
                user_id=user_id,
                ip_address=ip_address,
                action="verify_token",
                resource=resource,
                status="success" if success else "failure",
                details={"reason": reason} if reason else {},
            )
        )

    def log_rate_limited(self, resource: str, ip_address: str, retry_after: float) -> None:
        """Log a request rejected by the local rate limiter."""
        self.log_event(
            AuditEvent(
                timestamp=time.time(),
                event_type="rate_limit",
                user_id=None,
                ip_address=ip_address,
                action="reject",
                resource=resource,
                status="failure",
                details={"retry_after": round(retry_after, 1)},
            )
        )


__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuthenticatedUser",
    "CONTROL_CHARS",
    "HttpTokenVerifier",
    "OriginPolicy",
    "SECURITY_HEADERS",
    "StaticTokenVerifier",
    "TokenVerifier",
    "add_security_headers",
    "extract_bearer_token",
    "mask_client",
    "resolve_client_ip",
    "sanitize_text",
    "truncate_text",
]
