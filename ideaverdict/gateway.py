# ================================================================
# IdeaVerdict - Model Gateway Client
# Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
# ================================================================
# Sends prompts to the upstream generative model with a primary
# credential, falling back once to a secondary credential on quota
# exhaustion. Failure tracking across calls lives in cooldown.py.
# ================================================================

"""
Model gateway client for IdeaVerdict.

The gateway talks to Google's Gemini ``generateContent`` endpoint through a
pluggable transport. Only quota-type failures (HTTP 429 or a body reporting
quota/resource exhaustion) are retried, and only once, with the secondary
credential. Everything else propagates immediately.

Example:
    >>> client = ModelGatewayClient(GeminiTransport(), primary_key="k1", secondary_key="k2")
    >>> result = await client.call(GatewayRequest(prompt="Structure this idea: ..."))
    >>> result.text, result.used_fallback

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from ideaverdict.errors import (
    UNAVAILABLE_MESSAGE,
    ConfigurationError,
    GatewayError,
    GatewayQuotaError,
    GatewayServiceError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT = 60.0

QUOTA_MARKERS = ("quota", "resource_exhausted")


# ================================================================
# Request / Response Types
# ================================================================


@dataclass(frozen=True)
class ChatTurn:
    """One prior message in a conversation."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class GatewayRequest:
    """Capability-specific generation parameters."""

    prompt: str
    system_prompt: str | None = None
    temperature: float = 0.7
    max_output_tokens: int = 1000
    response_mime_type: str | None = None
    history: tuple[ChatTurn, ...] = ()


@dataclass(frozen=True)
class GatewayResult:
    """Text returned by the model and whether the secondary key produced it."""

    text: str
    used_fallback: bool


def is_quota_error(status: int, body: str) -> bool:
    """Return True if an upstream failure means quota/resource exhaustion."""
    if status == 429:
        return True
    lowered = body.lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


# ================================================================
# Transports
# ================================================================


class ModelTransport(ABC):
    """Sends one generation request with one credential."""

    @abstractmethod
    async def generate(self, api_key: str, request: GatewayRequest) -> str:
        """Return the generated text.

        Raises:
            GatewayQuotaError: The credential is out of quota.
            GatewayServiceError: Any other failure, including empty output.
        """


class GeminiTransport(ModelTransport):
    """httpx transport for the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return f"{self.api_base}/{self.model}:generateContent"

    def build_payload(self, request: GatewayRequest) -> dict[str, Any]:
        """Translate a gateway request into the Gemini JSON body."""
        contents = [
            {
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [{"text": turn.content}],
            }
            for turn in request.history
        ]
        contents.append({"role": "user", "parts": [{"text": request.prompt}]})

        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if request.response_mime_type:
            generation_config["responseMimeType"] = request.response_mime_type

        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}
        return payload

    async def generate(self, api_key: str, request: GatewayRequest) -> str:
        payload = self.build_payload(request)
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Model request timed out after {self.timeout}s: {e}")
            raise GatewayServiceError("AI request timed out", status=504) from e
        except httpx.HTTPError as e:
            logger.error(f"Model transport error: {e}")
            raise GatewayServiceError("AI service error", status=502) from e

        if response.status_code >= 400:
            body = response.text
            logger.error(f"Model API error ({response.status_code}): {body[:1000]}")
            if is_quota_error(response.status_code, body):
                raise GatewayQuotaError(
                    status=response.status_code,
                    is_rate_limited=response.status_code == 429,
                )
            raise GatewayServiceError("AI service error", status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayServiceError("Malformed response from AI") from e

        text = extract_text(data)
        if not text:
            raise GatewayServiceError("No content received from AI")
        return text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def extract_text(data: Any) -> str:
    """Pull the first candidate's text parts out of a Gemini response."""
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    texts = [p.get("text", "") for p in parts if isinstance(p, dict)]
    return "".join(t for t in texts if isinstance(t, str)).strip()


# ================================================================
# Gateway Client
# ================================================================


class ModelGatewayClient:
    """Primary/secondary credential failover around a transport.

    Holds no state between calls; see ``QuotaCooldownGuard`` for the
    breaker that remembers double exhaustion.
    """

    def __init__(
        self,
        transport: ModelTransport,
        primary_key: str | None,
        secondary_key: str | None = None,
    ):
        self.transport = transport
        self._primary_key = primary_key
        self._secondary_key = secondary_key

    @property
    def has_fallback(self) -> bool:
        return bool(self._secondary_key)

    async def call(self, request: GatewayRequest) -> GatewayResult:
        """Generate text, retrying once with the secondary key on quota errors.

        Raises:
            ConfigurationError: No primary credential is configured.
            GatewayQuotaError: Quota exhausted. ``all_credentials_exhausted``
                is set when the secondary key failed on quota as well.
            GatewayError: Unified "temporarily unavailable" failure of the
                secondary attempt, or any non-quota failure of the primary.
        """
        if not self._primary_key:
            logger.error("No model API key configured")
            raise ConfigurationError("No model API key configured")

        try:
            text = await self.transport.generate(self._primary_key, request)
            return GatewayResult(text=text, used_fallback=False)
        except GatewayQuotaError:
            if not self._secondary_key:
                logger.warning("Primary key quota exceeded and no secondary key configured")
                raise
            logger.warning("Primary key quota exceeded, trying secondary key")

        try:
            text = await self.transport.generate(self._secondary_key, request)
        except GatewayQuotaError as e:
            logger.error(f"Secondary key quota exceeded as well (status={e.status})")
            raise GatewayQuotaError(
                status=503, is_rate_limited=False, all_credentials_exhausted=True
            ) from e
        except GatewayError as e:
            logger.error(f"Secondary key failed after primary quota error: {e}")
            raise GatewayError(UNAVAILABLE_MESSAGE, status=503) from e

        logger.info("Used fallback API key")
        return GatewayResult(text=text, used_fallback=True)
