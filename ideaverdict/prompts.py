"""Prompt builders for the three capabilities.

The evaluation prompt asks for a labeled "IDEA STRENGTH SCORE" line that the
verdict deriver parses; the model's own VERDICT line is advisory only.

Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
"""

from __future__ import annotations

from ideaverdict.gateway import ChatTurn, GatewayRequest
from ideaverdict.schemas import ChatRequest, EvaluateRequest
from ideaverdict.verdict import VerdictBandTable, VerdictCategory

EVALUATE_SYSTEM_PROMPT = """You are Idea Verdict, a thoughtful startup and project evaluation assistant.
Give honest, balanced feedback that helps founders make informed decisions.

Classify the idea as a Startup, a Project (portfolio, academic, open-source), or an Own Experiment.
For startups weigh problem clarity, solution fit, target users, market opportunity,
differentiation and execution feasibility. Competition signals validation; penalize it only
when the market has no gaps or the idea offers no meaningful differentiation.

Compute an Idea Strength Score from 0 to 100:
- Problem Significance (0-25)
- Solution Quality (0-25)
- Market & Competition (0-20)
- Differentiation (0-15)
- Execution Feasibility (0-15)
Round to the nearest multiple of 5. The final verdict is derived from the score.

OUTPUT FORMAT
PROJECT TYPE: [Startup | Project | Own Experiment]
VERDICT: [Your recommendation]
IDEA STRENGTH SCORE: [X]%
EXECUTION DIFFICULTY: [Low | Medium | High]
(Brief explanation of what drove the score)

PRIMARY REASON:
STRENGTHS:
AREAS FOR IMPROVEMENT:
COMPETITIVE LANDSCAPE:
RECOMMENDATIONS:"""

STRUCTURE_SYSTEM_PROMPT = """You are Nova, an idea structuring assistant.
Convert a raw, unstructured idea description into a clean structured form.
Do not give verdicts, scores or opinions on viability. Do not add features the user did not mention.
If information is missing, make reasonable inferences.

Respond with JSON only:
{
  "problem": "2-3 sentences on the problem being solved",
  "solution": "2-3 sentences on the proposed solution",
  "targetUsers": "who specifically will use this",
  "differentiation": "what makes this unique compared to existing solutions",
  "workflow": "how the solution works step by step"
}"""

CHAT_SYSTEM_PROMPT = """You are a Verdict Assistant.
You do not judge ideas and you do not change verdicts. You only explain, clarify and answer
questions based on the existing verdict text. Never reassess the idea and never suggest
building if the verdict is negative. Redirect vague or emotional questions to concrete reasons
from the verdict. Keep responses to 2-4 sentences unless more detail is requested."""


def build_evaluate_request(payload: EvaluateRequest) -> GatewayRequest:
    prompt = (
        f"Evaluate this idea:\n\n"
        f"PROJECT TYPE: {payload.project_type}\n\n"
        f"PROBLEM:\n{payload.problem}\n\n"
        f"SOLUTION:\n{payload.solution}\n\n"
        f"TARGET USERS:\n{payload.target_users}\n\n"
        f"DIFFERENTIATION:\n{payload.differentiation}"
    )
    if payload.workflow:
        prompt += (
            "\n\nWORKFLOW / MECHANISM (optional context - do not reward complexity):\n"
            f"{payload.workflow}"
        )
    prompt += "\n\nProvide your verdict following the exact output format."

    return GatewayRequest(
        prompt=prompt,
        system_prompt=EVALUATE_SYSTEM_PROMPT,
        temperature=0.4,
        max_output_tokens=2048,
    )


def build_structure_request(idea: str) -> GatewayRequest:
    return GatewayRequest(
        prompt=f"Structure this idea:\n\n{idea}",
        system_prompt=STRUCTURE_SYSTEM_PROMPT,
        temperature=0.5,
        max_output_tokens=1000,
        response_mime_type="application/json",
    )


def build_chat_request(
    payload: ChatRequest,
    category: VerdictCategory,
    score: int | None,
    table: VerdictBandTable,
) -> GatewayRequest:
    """Build the chat request around the authoritative verdict category."""
    score_line = f"{score}%" if score is not None else "not stated"
    context = (
        "VERDICT CONTEXT:\n"
        f"Verdict: {category.display_label}\n"
        f"Idea Strength Score: {score_line}\n"
        f"Score bands: {table.describe()}\n"
    )
    if payload.idea_problem:
        context += f"Idea problem: {payload.idea_problem}\n"
    context += (
        f"\nFull Verdict:\n{payload.verdict_text}\n\n---\n"
        "Answer questions about this verdict. The verdict is FINAL."
    )

    if payload.is_first_message and not payload.message:
        prompt = (
            "Greet the user in two sentences: state the score and verdict above, "
            "then offer to explain the reasoning or any specific area."
        )
    else:
        prompt = payload.message

    return GatewayRequest(
        prompt=prompt,
        system_prompt=f"{CHAT_SYSTEM_PROMPT}\n\n{context}",
        temperature=0.6,
        max_output_tokens=600,
        history=tuple(
            ChatTurn(role=turn.role, content=turn.content)
            for turn in payload.conversation_history
        ),
    )
