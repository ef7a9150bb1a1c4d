from __future__ import annotations

import json

from bulk_grader.domain.models import GradingContext
from bulk_grader.lib.records.types import (
    AssignmentRecord,
    BundleVersionRecord,
    CourseRecord,
    DocumentRecord,
    RubricRecord,
)

DOCUMENT_CONTEXT_CHARS = 2000
LEGACY_RUBRIC_NAME = "Batch rubric"


def render_rubric_json(rubric: RubricRecord) -> str:
    """Render the rubric text handed to the scorer.

    Output depends only on the rubric snapshot, so one bundle version always
    yields byte-identical rubric text.
    """
    payload = {
        "name": rubric.name,
        "criteria": [
            {
                "id": item.id,
                "name": item.name,
                "description": item.description,
                "weight": item.weight,
                "requiredEvidence": list(item.required_evidence_types),
            }
            for item in rubric.criteria
        ],
    }
    if rubric.grading_scale is not None:
        payload["gradingScale"] = rubric.grading_scale.model_dump(mode="json")
    return json.dumps(payload, indent=2, ensure_ascii=False)


def render_assignment_summary(assignment: AssignmentRecord) -> str:
    return f"Assignment: {assignment.name}\n\nInstructions:\n{assignment.instructions}"


def render_document_context(documents: list[DocumentRecord]) -> str:
    return "\n\n---\n\n".join(
        f"[{item.type.upper()}] {item.name}:\n{item.raw_text[:DOCUMENT_CONTEXT_CHARS]}"
        for item in documents
    )


def render_course_summary(course: CourseRecord | None) -> str:
    if course is None:
        return ""
    if course.summary:
        return course.summary
    summary = f"Course: {course.name} ({course.course_code}) - {course.term}\n"
    if course.description:
        summary += f"\n{course.description}\n"
    if course.key_themes:
        summary += f"\nKey themes: {', '.join(course.key_themes)}"
    return summary


def build_grading_context(*, version: BundleVersionRecord, course: CourseRecord | None) -> GradingContext:
    snapshot = version.snapshot
    return GradingContext(
        bundle_version_id=version.id,
        rubric_json=render_rubric_json(snapshot.rubric),
        assignment_summary=render_assignment_summary(snapshot.assignment),
        document_context=render_document_context(snapshot.documents),
        course_summary=render_course_summary(course),
        evaluation_guidance=snapshot.evaluation_guidance or "",
    )


def build_legacy_context(*, rubric_criteria: str | None, assignment_name: str | None) -> GradingContext:
    """Context for batches created with a free-text rubric instead of a bundle."""
    rubric_text = (rubric_criteria or "").strip()
    return GradingContext(
        bundle_version_id=None,
        rubric_json=json.dumps({"name": LEGACY_RUBRIC_NAME, "criteria": rubric_text}, indent=2, ensure_ascii=False),
        assignment_summary=f"Assignment: {assignment_name}" if assignment_name else "",
        document_context="",
        course_summary="",
    )
