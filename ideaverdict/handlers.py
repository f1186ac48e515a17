# ================================================================
# IdeaVerdict - Request Handlers
# Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
# ================================================================

"""
Per-capability request handlers.

Every capability runs the same pipeline, cheapest checks first so that
rejected requests never cost a network call:

    identity -> rate limit -> (evaluate) authenticate -> validate
             -> cache lookup -> cooldown guard -> gateway -> cache store

Errors raised anywhere in the pipeline are converted to responses here and
nowhere else.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from ideaverdict.cache import ResponseCache, fingerprint
from ideaverdict.errors import (
    AuthError,
    GatewayServiceError,
    IdeaVerdictError,
    IdentityServiceError,
    RateLimitExceeded,
    error_body,
    retry_after_seconds,
)
from ideaverdict.metrics import metrics, track_request
from ideaverdict.prompts import (
    build_chat_request,
    build_evaluate_request,
    build_structure_request,
)
from ideaverdict.rate_limiting import InMemoryRateLimiter
from ideaverdict.schemas import (
    ChatRequest,
    ChatResponse,
    EvaluateRequest,
    EvaluateResponse,
    StrictRequest,
    StructuredIdea,
    StructureRequest,
    StructureResponse,
    parse_request,
)
from ideaverdict.security import mask_client, resolve_client_ip, sanitize_text, truncate_text
from ideaverdict.service import ServiceContainer
from ideaverdict.verdict import derive_outcome, derive_verdict, extract_score

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = IdeaVerdictError.public_message

STRUCTURE_INPUT_CAP = 3000
STRUCTURE_FIELD_CAP = 2000
STRUCTURE_FIELDS = ("problem", "solution", "targetUsers", "differentiation", "workflow")

CHAT_MIN_MESSAGE_LENGTH = 3
CHAT_SHORT_MESSAGE_REPLY = "Please ask a more detailed question (at least 3 characters)."


@dataclass
class InboundRequest:
    """Transport-neutral view of an HTTP request."""

    headers: dict[str, str]
    body: bytes = b""

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], body: bytes = b"") -> InboundRequest:
        return cls(headers={k.lower(): v for k, v in headers.items()}, body=body)


@dataclass
class HandlerResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class CapabilityHandler(ABC):
    """Template for one capability's request pipeline.

    Subclasses supply the schema, the cache key and the upstream processing;
    the admission checks and error mapping are shared.
    """

    name: str
    schema: type[StrictRequest]

    def __init__(self, services: ServiceContainer):
        self.services = services

    @property
    def limiter(self) -> InMemoryRateLimiter:
        return self.services.limiter(self.name)

    @property
    def cache(self) -> ResponseCache:
        return self.services.cache(self.name)

    async def handle(self, request: InboundRequest) -> HandlerResponse:
        with track_request(self.name) as outcome:
            response = await self._run(request)
            outcome.status_code = response.status_code
            return response

    async def _run(self, request: InboundRequest) -> HandlerResponse:
        client = resolve_client_ip(request.headers)
        headers: dict[str, str] = {}

        try:
            rate = self.limiter.check_or_raise(f"ip:{client}")
            headers["X-RateLimit-Remaining"] = str(rate.remaining)

            await self.authenticate(request, client)

            payload = parse_request(self.schema, request.body)

            early = self.short_circuit(payload)
            if early is not None:
                return HandlerResponse(200, early, headers)

            key = self.cache_key(payload)
            if key is not None:
                cached = self.cache.get(key)
                metrics.inc_cache(self.name, hit=cached is not None)
                if cached is not None:
                    logger.info(f"{self.name}: cache hit")
                    headers["X-Cache"] = "HIT"
                    return HandlerResponse(200, json.loads(cached), headers)

            body = await self.process(payload)

            if key is not None:
                self.cache.put(key, json.dumps(body))
            headers["X-Cache"] = "MISS"
            return HandlerResponse(200, body, headers)

        except RateLimitExceeded as e:
            self.services.audit.log_rate_limited(self.name, mask_client(client), e.retry_after)
            return self.error_response(e, headers)
        except IdeaVerdictError as e:
            return self.error_response(e, headers)
        except Exception:
            logger.exception(f"{self.name}: unexpected error")
            return HandlerResponse(500, {"error": INTERNAL_ERROR_MESSAGE}, headers)

    def error_response(self, error: IdeaVerdictError, headers: dict[str, str]) -> HandlerResponse:
        status = error.status_code
        if status >= 500:
            logger.error(f"{self.name}: {type(error).__name__}: {error}")
        else:
            logger.warning(f"{self.name}: {type(error).__name__}: {error}")

        if isinstance(error, RateLimitExceeded):
            headers["X-RateLimit-Remaining"] = "0"
        if error.retry_after is not None:
            headers["Retry-After"] = str(retry_after_seconds(error.retry_after))
        return HandlerResponse(status, error_body(error), headers)

    async def authenticate(self, request: InboundRequest, client: str) -> None:
        """Reject unauthenticated callers. Open by default."""

    def short_circuit(self, payload: Any) -> Optional[dict[str, Any]]:
        """Answer without an upstream call, or return None to continue."""
        return None

    @abstractmethod
    def cache_key(self, payload: Any) -> Optional[str]:
        """Fingerprint for the response cache, or None to bypass it."""

    @abstractmethod
    async def process(self, payload: Any) -> dict[str, Any]:
        """Call upstream and build the success body."""


# ================================================================
# Evaluate
# ================================================================


class EvaluateHandler(CapabilityHandler):
    """Scores an idea and derives the authoritative verdict."""

    name = "evaluate"
    schema = EvaluateRequest

    async def authenticate(self, request: InboundRequest, client: str) -> None:
        masked = mask_client(client)
        try:
            user = await self.services.verifier.verify(request.headers.get("authorization"))
        except (AuthError, IdentityServiceError) as e:
            self.services.audit.log_authentication(
                False, self.name, ip_address=masked, reason=str(e)
            )
            raise
        self.services.audit.log_authentication(
            True, self.name, user_id=user.user_id, ip_address=masked
        )

    def cache_key(self, payload: EvaluateRequest) -> str:
        return fingerprint(
            "eval",
            payload.problem,
            payload.solution,
            payload.target_users,
            payload.differentiation,
            payload.workflow,
            extra=(payload.project_type,),
        )

    async def process(self, payload: EvaluateRequest) -> dict[str, Any]:
        clean = payload.model_copy(
            update={
                "problem": sanitize_text(payload.problem),
                "solution": sanitize_text(payload.solution),
                "target_users": sanitize_text(payload.target_users),
                "differentiation": sanitize_text(payload.differentiation),
                "workflow": sanitize_text(payload.workflow) if payload.workflow else None,
            }
        )
        result = await self.services.guard.call(build_evaluate_request(clean))

        outcome = derive_outcome(result.text, self.services.band_table)
        metrics.inc_verdict(outcome.verdict.value)

        response = EvaluateResponse(
            verdict=outcome.label,
            verdict_category=outcome.verdict.value,
            full_evaluation=outcome.raw_text,
            score=outcome.score,
            project_type=payload.project_type,
            execution_difficulty=outcome.execution_difficulty,
            inferred_category=outcome.inferred_category,
        )
        return response.model_dump(by_alias=True)


# ================================================================
# Structure
# ================================================================

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_structured_idea(text: str) -> StructuredIdea | None:
    """Parse the model's JSON answer, or None if it is not a JSON object."""
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    fields = {}
    for name in STRUCTURE_FIELDS:
        value = data.get(name)
        fields[name] = sanitize_text(value)[:STRUCTURE_FIELD_CAP] if isinstance(value, str) else ""
    return StructuredIdea.model_validate(fields)


class StructureHandler(CapabilityHandler):
    """Splits a raw idea paragraph into the evaluation form's fields."""

    name = "structure"
    schema = StructureRequest

    def cache_key(self, payload: StructureRequest) -> str:
        return fingerprint("struct", payload.idea)

    async def process(self, payload: StructureRequest) -> dict[str, Any]:
        idea = truncate_text(sanitize_text(payload.idea), STRUCTURE_INPUT_CAP)
        result = await self.services.guard.call(build_structure_request(idea))

        structured = parse_structured_idea(result.text)
        if structured is None:
            logger.error(f"Unparseable structure output: {result.text[:500]}")
            raise GatewayServiceError("Failed to parse AI response")

        return StructureResponse(structured=structured).model_dump(by_alias=True)


# ================================================================
# Chat
# ================================================================


class ChatHandler(CapabilityHandler):
    """Answers questions about an existing verdict without changing it."""

    name = "chat"
    schema = ChatRequest

    def short_circuit(self, payload: ChatRequest) -> Optional[dict[str, Any]]:
        if not payload.is_first_message and len(payload.message) < CHAT_MIN_MESSAGE_LENGTH:
            return ChatResponse(response=CHAT_SHORT_MESSAGE_REPLY).model_dump()
        return None

    def cache_key(self, payload: ChatRequest) -> Optional[str]:
        # Answers depend on the conversation so far
        if payload.conversation_history:
            return None
        score = extract_score(payload.verdict_text)
        category = derive_verdict(score, payload.verdict_type, self.services.band_table)
        return fingerprint(
            "chat",
            payload.message,
            payload.verdict_text,
            payload.idea_problem,
            extra=(category.value, "first" if payload.is_first_message else "followup"),
        )

    async def process(self, payload: ChatRequest) -> dict[str, Any]:
        score = extract_score(payload.verdict_text)
        category = derive_verdict(score, payload.verdict_type, self.services.band_table)
        if category.label != payload.verdict_type.strip().upper():
            logger.info(
                f"Chat verdict re-derived as {category.label} (client sent {payload.verdict_type!r})"
            )

        clean = payload.model_copy(update={"message": sanitize_text(payload.message)})
        request = build_chat_request(clean, category, score, self.services.band_table)
        result = await self.services.guard.call(request)
        return ChatResponse(response=result.text).model_dump()


HANDLERS: dict[str, type[CapabilityHandler]] = {
    EvaluateHandler.name: EvaluateHandler,
    StructureHandler.name: StructureHandler,
    ChatHandler.name: ChatHandler,
}


def build_handlers(services: ServiceContainer) -> dict[str, CapabilityHandler]:
    """One handler instance per capability, sharing ``services``."""
    return {name: handler_cls(services) for name, handler_cls in HANDLERS.items()}
