from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging

from bulk_grader.domain.contracts import LLMClient
from bulk_grader.domain.dto import GradingRequest, LLMClientRequest, QuestionRequest
from bulk_grader.domain.grading_chain import GradingChainSpec, load_chain_spec, render_prompt, validate_response
from bulk_grader.domain.models import GradingContext
from bulk_grader.domain.scoring import (
    CriteriaScore,
    band_label_for,
    deterministic_overall_score,
    letter_grade_for,
    scale_max,
)
from bulk_grader.lib.records.types import (
    Analysis,
    CriterionScore,
    GradingScale,
    KeyClaim,
    LogicalGap,
    MissingEvidence,
    Question,
    RubricEvaluation,
    VerificationFinding,
)

COMPONENT_ID = "clients.grading.llm"
logger = logging.getLogger("runtime")


@dataclass
class LLMGradingClient:
    """GradingClient backed by a prompt chain and any LLMClient."""

    llm: LLMClient
    chain: GradingChainSpec = field(default_factory=load_chain_spec)

    async def analyze(self, request: GradingRequest) -> Analysis:
        payload = await self._run("analyze", inputs=self._inputs(request))
        return Analysis(
            key_claims=[
                KeyClaim(id=f"claim-{idx}", claim=item["claim"], evidence=list(item.get("evidence", [])))
                for idx, item in enumerate(payload["key_claims"], start=1)
            ],
            logical_gaps=[
                LogicalGap(id=f"gap-{idx}", description=item["description"], severity=item.get("severity", "minor"))
                for idx, item in enumerate(payload["logical_gaps"], start=1)
            ],
            missing_evidence=[
                MissingEvidence(id=f"evidence-{idx}", description=item["description"])
                for idx, item in enumerate(payload["missing_evidence"], start=1)
            ],
            overall_strength=float(payload["overall_strength"]),
        )

    async def evaluate(self, request: GradingRequest, *, analysis: Analysis) -> RubricEvaluation:
        inputs = self._inputs(request)
        inputs["analysis"] = analysis.model_dump(mode="json")
        payload = await self._run("evaluate", inputs=inputs)

        weights, scale = _rubric_weights_and_scale(request.context)
        breakdown: list[CriterionScore] = []
        for item in payload["criteria"]:
            breakdown.append(
                CriterionScore(
                    criterion_id=item.get("criterion_id"),
                    criterion=item["criterion"],
                    score=float(item["score"]),
                    max_score=float(item["max_score"]),
                    feedback=item.get("feedback", ""),
                )
            )
        overall = deterministic_overall_score(
            criteria=[
                CriteriaScore(
                    name=item.criterion,
                    score=item.score,
                    max_score=item.max_score or 0.0,
                    weight=weights.get(item.criterion_id or "", 1.0),
                )
                for item in breakdown
            ],
            scale=scale,
        )
        return RubricEvaluation(
            overall_score=overall,
            grading_scale_used=scale.type if scale is not None else None,
            max_possible_score=scale_max(scale),
            letter_grade=letter_grade_for(score=overall, scale=scale) if overall is not None else None,
            band_label=band_label_for(score=overall, scale=scale) if overall is not None else None,
            criteria_breakdown=breakdown,
            strengths=[str(item) for item in payload["strengths"]],
            improvements=[str(item) for item in payload["improvements"]],
            overall_feedback=str(payload.get("overall_feedback", "")),
        )

    async def generate_questions(self, request: QuestionRequest) -> list[Question]:
        limit = min(request.max_questions, self.chain.runtime.max_questions)
        payload = await self._run(
            "questions",
            inputs={
                "transcript": request.transcript,
                "analysis": request.analysis.model_dump(mode="json"),
                "context": _context_inputs(request.context),
                "max_questions": limit,
            },
        )
        return [
            Question(id=f"q-{idx}", question=item["question"], category=item.get("category", "general"))
            for idx, item in enumerate(payload["questions"][:limit], start=1)
        ]

    async def verify(self, request: GradingRequest, *, analysis: Analysis) -> list[VerificationFinding]:
        inputs = self._inputs(request)
        inputs["analysis"] = [item.claim for item in analysis.key_claims]
        payload = await self._run("verify", inputs=inputs)
        return [
            VerificationFinding(
                id=f"finding-{idx}",
                statement=item["statement"],
                status=item["status"],
                explanation=item.get("explanation", ""),
            )
            for idx, item in enumerate(payload["findings"], start=1)
        ]

    def _inputs(self, request: GradingRequest) -> dict[str, object]:
        return {
            "student_name": request.student_name,
            "transcript": request.transcript,
            "context": _context_inputs(request.context),
        }

    async def _run(self, task: str, *, inputs: dict[str, object]) -> dict:
        prompt = self.chain.task(task)
        result = await self.llm.complete(
            LLMClientRequest(
                system_prompt=self.chain.system_prompt,
                user_prompt=render_prompt(template=prompt.user_template, inputs=inputs),
                model=self.chain.model,
                temperature=self.chain.runtime.temperature,
                seed=self.chain.runtime.seed,
                response_language=self.chain.runtime.response_language,
                task=task,
            )
        )
        payload: object = result.raw_json
        if payload is None:
            try:
                payload = json.loads(result.raw_text)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{task}: llm output is not valid JSON") from exc
        validate_response(payload=payload, schema=prompt.response)
        logger.info(
            "llm task completed",
            extra={
                "component": COMPONENT_ID,
                "stage": task,
                "latency_ms": result.latency_ms,
            },
        )
        return payload  # type: ignore[return-value]


def _context_inputs(context: GradingContext) -> dict[str, object]:
    return {
        "rubric_json": context.rubric_json,
        "assignment_summary": context.assignment_summary,
        "document_context": context.document_context,
        "course_summary": context.course_summary,
        "evaluation_guidance": context.evaluation_guidance,
    }


def _rubric_weights_and_scale(context: GradingContext) -> tuple[dict[str, float], GradingScale | None]:
    rubric = json.loads(context.rubric_json)
    criteria = rubric.get("criteria")
    weights: dict[str, float] = {}
    if isinstance(criteria, list):
        for item in criteria:
            if isinstance(item, dict) and isinstance(item.get("id"), str):
                weights[item["id"]] = float(item.get("weight", 1.0))
    scale_raw = rubric.get("gradingScale")
    scale = GradingScale.model_validate(scale_raw) if isinstance(scale_raw, dict) else None
    return weights, scale
