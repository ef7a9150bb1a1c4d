from __future__ import annotations

import asyncio
import json

import pytest

from bulk_grader.clients.grading import LLMGradingClient
from bulk_grader.clients.stub import StubLLMClient
from bulk_grader.domain.dto import GradingRequest, QuestionRequest
from bulk_grader.domain.grading_context import build_legacy_context
from bulk_grader.domain.models import GradingContext


def _request(context: GradingContext) -> GradingRequest:
    return GradingRequest(
        submission_id="sub_1",
        student_name="Jane Doe",
        transcript="Carbon pricing lets firms find the cheapest abatement.",
        segments=[],
        context=context,
    )


def _letter_context() -> GradingContext:
    rubric = {
        "name": "Pitch",
        "criteria": [
            {"id": "content", "name": "Content", "weight": 1.0},
            {"id": "delivery", "name": "Delivery", "weight": 1.0},
            {"id": "evidence", "name": "Evidence", "weight": 0.0},
        ],
        "gradingScale": {
            "type": "letter",
            "max_score": 100,
            "letter_grades": [
                {"label": "B", "min_score": 70, "max_score": 79.9},
                {"label": "C", "min_score": 60, "max_score": 69.9},
            ],
        },
    }
    return GradingContext(
        bundle_version_id="bv_1",
        rubric_json=json.dumps(rubric),
        assignment_summary="Assignment: Pitch",
        document_context="",
        course_summary="",
    )


@pytest.mark.unit
def test_evaluate_computes_score_locally_from_criteria() -> None:
    async def _run() -> None:
        llm = StubLLMClient()
        client = LLMGradingClient(llm=llm)
        request = _request(_letter_context())

        analysis = await client.analyze(request)
        evaluation = await client.evaluate(request, analysis=analysis)

        # evidence carries zero weight: (0.8 + 0.7) / 2
        assert evaluation.overall_score == 75.0
        assert evaluation.letter_grade == "B"
        assert evaluation.grading_scale_used == "letter"
        assert evaluation.max_possible_score == 100
        assert [item.criterion_id for item in evaluation.criteria_breakdown] == ["content", "delivery", "evidence"]
        assert [call.task for call in llm.calls] == ["analyze", "evaluate"]
        assert "Jane Doe" in llm.calls[0].user_prompt

    asyncio.run(_run())


@pytest.mark.unit
def test_questions_are_capped_and_ids_assigned() -> None:
    async def _run() -> None:
        llm = StubLLMClient()
        client = LLMGradingClient(llm=llm)
        context = build_legacy_context(rubric_criteria="Clarity", assignment_name="Pitch")
        analysis = await client.analyze(_request(context))

        questions = await client.generate_questions(
            QuestionRequest(transcript="text", analysis=analysis, context=context, max_questions=1)
        )
        findings = await client.verify(_request(context), analysis=analysis)

        assert [item.id for item in questions] == ["q-1"]
        assert findings[0].id == "finding-1"
        assert findings[0].status == "accurate"

    asyncio.run(_run())


@pytest.mark.unit
def test_invalid_llm_payload_raises_value_error() -> None:
    llm = StubLLMClient(overrides={"analyze": {"key_claims": "not-a-list"}})
    client = LLMGradingClient(llm=llm)
    context = build_legacy_context(rubric_criteria=None, assignment_name=None)

    with pytest.raises(ValueError):
        asyncio.run(client.analyze(_request(context)))
