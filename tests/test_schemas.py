"""Tests for request validation.

Antagon Inc. | CAGE: 17E75
"""

import json

import pytest

from ideaverdict.errors import ClientInputError
from ideaverdict.schemas import (
    ChatRequest,
    EvaluateRequest,
    EvaluateResponse,
    StructureRequest,
    parse_request,
)

VALID_EVALUATE = {
    "problem": "Small clinics lose hours every week reconciling insurance claims by hand.",
    "solution": "Automated claim reconciliation",
    "targetUsers": "Independent clinics",
    "differentiation": "Works with paper EOBs",
    "projectType": "startup",
}


def fields_of(error: ClientInputError) -> set:
    return {d.field for d in error.details}


class TestEvaluateRequest:
    def test_valid(self):
        payload = parse_request(EvaluateRequest, json.dumps(VALID_EVALUATE))

        assert payload.target_users == "Independent clinics"
        assert payload.project_type == "startup"
        assert payload.workflow is None

    def test_defaults(self):
        body = {"problem": VALID_EVALUATE["problem"], "targetUsers": "Clinics"}
        payload = parse_request(EvaluateRequest, json.dumps(body))

        assert payload.solution == ""
        assert payload.project_type == "startup"

    def test_short_problem_names_field(self):
        """Test that a too-short problem is reported against the problem field."""
        body = {**VALID_EVALUATE, "problem": "too short"}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(EvaluateRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"problem"}
        assert exc_info.value.status_code == 400

    def test_reports_every_offending_field(self):
        body = {**VALID_EVALUATE, "problem": "x", "targetUsers": "", "projectType": "moonshot"}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(EvaluateRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"problem", "targetUsers", "projectType"}

    def test_rejects_unknown_fields(self):
        body = {**VALID_EVALUATE, "admin": True}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(EvaluateRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"admin"}

    def test_whitespace_only_problem_rejected(self):
        body = {**VALID_EVALUATE, "problem": " " * 50}

        with pytest.raises(ClientInputError):
            parse_request(EvaluateRequest, json.dumps(body))

    def test_oversized_field(self):
        body = {**VALID_EVALUATE, "solution": "x" * 15001}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(EvaluateRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"solution"}


class TestMalformedBodies:
    @pytest.mark.parametrize("body", [b"", b"{not json", b"[1, 2]", b'"text"'])
    def test_reported_against_body(self, body):
        with pytest.raises(ClientInputError) as exc_info:
            parse_request(StructureRequest, body)

        assert fields_of(exc_info.value) == {"body"}


class TestStructureRequest:
    def test_bounds(self):
        parse_request(StructureRequest, json.dumps({"idea": "x" * 50}))

        with pytest.raises(ClientInputError):
            parse_request(StructureRequest, json.dumps({"idea": "x" * 49}))
        with pytest.raises(ClientInputError):
            parse_request(StructureRequest, json.dumps({"idea": "x" * 5001}))


class TestChatRequest:
    def test_aliases(self):
        body = {
            "message": "Why this verdict?",
            "verdict_text": "IDEA STRENGTH SCORE: 40%",
            "verdict_type": "BUILD ONLY IF NARROWED",
            "conversationHistory": [{"role": "user", "content": "hi"}],
            "isFirstMessage": False,
        }

        payload = parse_request(ChatRequest, json.dumps(body))

        assert payload.conversation_history[0].role == "user"
        assert payload.is_first_message is False

    def test_history_limits(self):
        turn = {"role": "user", "content": "q"}
        body = {"verdict_text": "v", "conversationHistory": [turn] * 31}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(ChatRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"conversationHistory"}

    def test_invalid_role(self):
        body = {"verdict_text": "v", "conversationHistory": [{"role": "system", "content": "x"}]}

        with pytest.raises(ClientInputError) as exc_info:
            parse_request(ChatRequest, json.dumps(body))

        assert fields_of(exc_info.value) == {"conversationHistory.0.role"}

    def test_message_too_long(self):
        body = {"verdict_text": "v", "message": "m" * 2001}

        with pytest.raises(ClientInputError):
            parse_request(ChatRequest, json.dumps(body))


class TestEvaluateResponse:
    def test_serializes_camel_case(self):
        response = EvaluateResponse(
            verdict="BUILD",
            verdict_category="build",
            full_evaluation="...",
            score=80,
            project_type="startup",
        )

        data = response.model_dump(by_alias=True)

        assert data["verdictCategory"] == "build"
        assert data["fullEvaluation"] == "..."
        assert data["projectType"] == "startup"
        assert data["executionDifficulty"] is None
