from __future__ import annotations

import logging

from bulk_grader.domain.contracts import StorageClient, TextExtractor
from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.domain.ids import new_document_id
from bulk_grader.lib.records.types import (
    AssignmentRecord,
    CourseRecord,
    DocumentRecord,
    GradingScale,
    RubricCriterion,
    RubricRecord,
)
from bulk_grader.repositories.context_store import ContextStore

COMPONENT_ID = "domain.context"
MIN_DOCUMENT_CHARS = 10
DOCUMENT_TYPES = ("lecture_notes", "reading", "slides", "policy", "example", "other")

logger = logging.getLogger("runtime")


async def create_course(
    *,
    contexts: ContextStore,
    name: str,
    course_code: str = "",
    term: str = "",
    description: str | None = None,
) -> CourseRecord:
    if not name.strip():
        raise DomainValidationError("course name is required")
    return await contexts.create_course(name=name.strip(), course_code=course_code, term=term, description=description)


async def create_assignment(
    *,
    contexts: ContextStore,
    course_id: str,
    name: str,
    instructions: str = "",
    rubric_id: str | None = None,
    due_date: str | None = None,
) -> AssignmentRecord:
    if not course_id or not name.strip():
        raise DomainValidationError("course_id and name are required")
    if rubric_id and await contexts.get_rubric(rubric_id) is None:
        raise DomainNotFoundError(f"rubric not found: {rubric_id}")
    return await contexts.create_assignment(
        course_id=course_id,
        name=name.strip(),
        instructions=instructions,
        rubric_id=rubric_id,
        due_date=due_date,
    )


def normalize_criteria(raw: list[dict[str, object]]) -> list[RubricCriterion]:
    """Fill missing ids, names and weights the way rubric authors leave them out."""
    criteria: list[RubricCriterion] = []
    for idx, item in enumerate(raw, start=1):
        criteria.append(
            RubricCriterion.model_validate(
                {
                    **item,
                    "id": item.get("id") or f"criterion-{idx}",
                    "name": item.get("name") or f"Criterion {idx}",
                    "weight": item.get("weight") or 1.0,
                }
            )
        )
    return criteria


async def create_rubric(
    *,
    contexts: ContextStore,
    course_id: str,
    name: str,
    criteria: list[dict[str, object]],
    assignment_id: str | None = None,
    grading_scale: GradingScale | None = None,
    raw_text: str | None = None,
) -> RubricRecord:
    if not course_id or not name.strip():
        raise DomainValidationError("course_id, name and criteria are required")
    if await contexts.get_course(course_id) is None:
        raise DomainNotFoundError(f"course not found: {course_id}")
    if assignment_id and await contexts.get_assignment(assignment_id) is None:
        raise DomainNotFoundError(f"assignment not found: {assignment_id}")
    rubric = await contexts.create_rubric(
        course_id=course_id,
        name=name.strip(),
        criteria=normalize_criteria(criteria),
        assignment_id=assignment_id,
        grading_scale=grading_scale,
        raw_text=raw_text,
    )
    logger.info(
        "rubric created",
        extra={"component": COMPONENT_ID, "rubric_id": rubric.id, "criteria_count": len(rubric.criteria)},
    )
    return rubric


async def update_rubric(
    *,
    contexts: ContextStore,
    rubric_id: str,
    name: str | None = None,
    criteria: list[dict[str, object]] | None = None,
    grading_scale: GradingScale | None = None,
) -> RubricRecord:
    normalized = normalize_criteria(criteria) if criteria is not None else None
    if normalized is not None and not normalized:
        raise DomainValidationError("rubric must contain at least one criterion")
    return await contexts.update_rubric(
        rubric_id=rubric_id,
        name=name,
        criteria=normalized,
        grading_scale=grading_scale,
    )


async def upload_document(
    *,
    contexts: ContextStore,
    storage: StorageClient,
    extractor: TextExtractor,
    course_id: str,
    filename: str,
    payload: bytes,
    doc_type: str = "other",
    assignment_id: str | None = None,
) -> DocumentRecord:
    """Extract text from an uploaded course file, keep the bytes, and record the document."""
    if not course_id or not filename:
        raise DomainValidationError("course_id and file are required")
    if doc_type not in DOCUMENT_TYPES:
        raise DomainValidationError(f"unsupported document type: {doc_type}")
    if await contexts.get_course(course_id) is None:
        raise DomainNotFoundError(f"course not found: {course_id}")

    extraction = extractor.extract(file_bytes=payload, filename=filename)
    if len(extraction.text.strip()) < MIN_DOCUMENT_CHARS:
        raise DomainValidationError("Extracted text is empty or too short")

    file_key = f"documents/{course_id}/{new_document_id()}/{filename}"
    storage.put_bytes(key=file_key, payload=payload)
    document = await contexts.create_document(
        course_id=course_id,
        assignment_id=assignment_id,
        name=filename,
        raw_text=extraction.text,
        word_count=extraction.word_count,
        doc_type=doc_type,
        file_key=file_key,
    )
    logger.info(
        "document extracted",
        extra={"component": COMPONENT_ID, "document_id": document.id, "word_count": extraction.word_count},
    )
    return document
