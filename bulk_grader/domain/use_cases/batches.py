from __future__ import annotations

import logging

from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.lib.records.types import BatchRecord
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore

COMPONENT_ID = "domain.batch"

logger = logging.getLogger("runtime")


async def create_batch(
    *,
    batches: BatchStore,
    contexts: ContextStore,
    name: str,
    course_name: str | None = None,
    assignment_name: str | None = None,
    course_id: str | None = None,
    assignment_id: str | None = None,
    bundle_version_id: str | None = None,
    rubric_criteria: str | None = None,
) -> BatchRecord:
    if not name.strip():
        raise DomainValidationError("batch name is required")
    if bundle_version_id and await contexts.get_bundle_version(bundle_version_id) is None:
        raise DomainNotFoundError(f"bundle version not found: {bundle_version_id}")
    batch = await batches.create_batch(
        name=name.strip(),
        course_name=course_name,
        assignment_name=assignment_name,
        course_id=course_id,
        assignment_id=assignment_id,
        bundle_version_id=bundle_version_id,
        rubric_criteria=rubric_criteria,
    )
    logger.info(
        "batch created",
        extra={"component": COMPONENT_ID, "batch_id": batch.id, "bundle_version_id": bundle_version_id},
    )
    return batch


async def get_batch(*, batches: BatchStore, batch_id: str) -> BatchRecord:
    batch = await batches.get_batch(batch_id)
    if batch is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")
    return batch


async def delete_batch(*, batches: BatchStore, batch_id: str) -> None:
    if not await batches.delete_batch(batch_id):
        raise DomainNotFoundError(f"batch not found: {batch_id}")
    logger.info("batch deleted", extra={"component": COMPONENT_ID, "batch_id": batch_id})


async def update_expected_uploads(*, batches: BatchStore, batch_id: str, expected_count: int) -> BatchRecord:
    """Raise the number of uploads the client announced. The value never decreases."""
    if expected_count < 0:
        raise DomainValidationError("expected_count must be >= 0")

    def _raise(batch: BatchRecord) -> BatchRecord:
        current = batch.expected_upload_count or 0
        return batch.model_copy(update={"expected_upload_count": max(current, expected_count)})

    updated = await batches.update_batch(batch_id, _raise)
    if updated is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")
    return updated
