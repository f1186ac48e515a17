"""Request and response models for the IdeaVerdict endpoints.

Request models are strict: unknown fields are rejected and every string
field carries length bounds. Field names match the JSON the web client
sends (camelCase for evaluate/structure, mixed for chat).

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ideaverdict.errors import ClientInputError, FieldError

ProjectType = Literal["startup", "hardware", "academic", "personal"]


class StrictRequest(BaseModel):
    """Base for inbound payloads."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        populate_by_name=True,
    )


# ================================================================
# Evaluate
# ================================================================


class EvaluateRequest(StrictRequest):
    """Idea submitted for evaluation."""

    problem: str = Field(
        ...,
        min_length=20,
        max_length=15000,
        description="The problem the idea solves",
    )
    solution: str = Field(default="", max_length=15000)
    target_users: str = Field(..., alias="targetUsers", min_length=3, max_length=15000)
    differentiation: str = Field(default="", max_length=15000)
    workflow: Optional[str] = Field(default=None, max_length=20000)
    project_type: ProjectType = Field(default="startup", alias="projectType")


class EvaluateResponse(BaseModel):
    """Authoritative evaluation result."""

    model_config = ConfigDict(populate_by_name=True)

    verdict: str = Field(..., description="Verdict label derived from the score")
    verdict_category: str = Field(..., alias="verdictCategory")
    full_evaluation: str = Field(..., alias="fullEvaluation")
    score: Optional[int] = Field(default=None, ge=0, le=100)
    project_type: str = Field(..., alias="projectType")
    execution_difficulty: Optional[str] = Field(default=None, alias="executionDifficulty")
    inferred_category: Optional[str] = Field(default=None, alias="inferredCategory")


# ================================================================
# Structure
# ================================================================


class StructureRequest(StrictRequest):
    """Raw idea paragraph to split into form fields."""

    idea: str = Field(..., min_length=50, max_length=5000)


class StructuredIdea(BaseModel):
    """Form fields extracted from a raw idea."""

    model_config = ConfigDict(populate_by_name=True)

    problem: str = ""
    solution: str = ""
    target_users: str = Field(default="", alias="targetUsers")
    differentiation: str = ""
    workflow: str = ""


class StructureResponse(BaseModel):
    structured: StructuredIdea


# ================================================================
# Chat
# ================================================================


class ConversationTurn(StrictRequest):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)


class ChatRequest(StrictRequest):
    """Follow-up question about an existing verdict."""

    message: str = Field(default="", max_length=2000)
    verdict_text: str = Field(..., min_length=1, max_length=30000)
    verdict_type: str = Field(default="UNKNOWN", max_length=100)
    idea_problem: Optional[str] = Field(default=None, max_length=15000)
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list, alias="conversationHistory", max_length=30
    )
    is_first_message: bool = Field(default=False, alias="isFirstMessage")


class ChatResponse(BaseModel):
    response: str


# ================================================================
# Validation
# ================================================================


def parse_request(model: type[StrictRequest], body: bytes | str) -> StrictRequest:
    """Validate a raw JSON body against ``model``.

    Raises:
        ClientInputError: With one ``FieldError`` per offending field.
    """
    try:
        return model.model_validate_json(body or b"")
    except ValidationError as e:
        raise ClientInputError(validation_details(e)) from e


def validation_details(error: ValidationError) -> list[FieldError]:
    """Flatten a pydantic error into field-level messages."""
    details = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ()))
        if item.get("type") == "json_invalid":
            details.append(FieldError(field="body", message="Invalid JSON in request body"))
        else:
            details.append(FieldError(field=loc or "body", message=item.get("msg", "invalid")))
    return details
