from __future__ import annotations

import logging

from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.domain.lifecycle import ensure_transition
from bulk_grader.domain.models import RegradeItemResult, RegradeResult, SubmissionStatus
from bulk_grader.domain.use_cases.status import sync_batch_counters
from bulk_grader.lib.records.types import BundleVersionRecord, SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore

COMPONENT_ID = "domain.submission.regrade"
NOT_FOUND_ERROR = "Not found"

logger = logging.getLogger("runtime")

# Derived fields that belong to one grading run; regrade clears all of them.
RESET_FIELDS: dict[str, object] = {
    "analysis": None,
    "rubric_evaluation": None,
    "questions": None,
    "verification_findings": None,
    "context_citations": None,
    "error_message": None,
    "error_code": None,
    "started_at": None,
    "completed_at": None,
    "claimed_by": None,
    "claim_token": None,
    "lease_expires_at": None,
}


async def regrade_submissions(
    *,
    batches: BatchStore,
    contexts: ContextStore,
    submission_ids: list[str] | None = None,
    batch_id: str | None = None,
    bundle_version_id: str | None = None,
) -> RegradeResult:
    """Reset submissions to ``queued`` and put them back on the queue.

    Validation happens before any write: an empty request or an unknown
    bundle version rejects the whole call. Unknown submission ids are
    reported per id and do not stop the others. Submissions still being
    processed are reset too; the worker's claim token no longer matches, so
    its late results are discarded.
    """
    version: BundleVersionRecord | None = None
    if bundle_version_id:
        version = await contexts.get_bundle_version(bundle_version_id)
        if version is None:
            raise DomainNotFoundError(f"bundle version not found: {bundle_version_id}")

    targets = [item for item in (submission_ids or []) if item]
    if batch_id:
        if await batches.get_batch(batch_id) is None:
            raise DomainNotFoundError(f"batch not found: {batch_id}")
        members = await batches.get_batch_submissions(batch_id)
        targets.extend(item.id for item in members if item.id not in targets)
    elif not targets:
        raise DomainValidationError("submission_ids or batch_id is required")

    results: list[RegradeItemResult] = []
    touched_batches: list[str] = []
    for submission_id in targets:
        reset = await batches.modify_submission(
            submission_id,
            lambda current: _reset(current, bundle_version_id=bundle_version_id),
        )
        if reset is None:
            results.append(RegradeItemResult(submission_id=submission_id, success=False, error=NOT_FOUND_ERROR))
            continue
        await batches.queue.enqueue(submission_id=reset.id, batch_id=reset.batch_id)
        if reset.batch_id not in touched_batches:
            touched_batches.append(reset.batch_id)
        results.append(RegradeItemResult(submission_id=submission_id, success=True))

    for touched in touched_batches:
        await sync_batch_counters(batches=batches, batch_id=touched)

    queued_count = sum(1 for item in results if item.success)
    message = f"{queued_count} submission(s) queued for re-grading"
    if version is not None:
        message += f" with context v{version.version}"
    logger.info(
        "regrade queued",
        extra={
            "component": COMPONENT_ID,
            "batch_id": batch_id,
            "bundle_version_id": bundle_version_id,
            "queued_count": queued_count,
            "requested_count": len(targets),
        },
    )
    return RegradeResult(
        results=results,
        queued_count=queued_count,
        bundle_version_id=bundle_version_id,
        message=message,
    )


def _reset(submission: SubmissionRecord, *, bundle_version_id: str | None) -> SubmissionRecord:
    if submission.status != SubmissionStatus.QUEUED:
        ensure_transition(from_state=submission.status, to_state=SubmissionStatus.QUEUED)
    changes = dict(RESET_FIELDS)
    changes["status"] = SubmissionStatus.QUEUED.value
    if bundle_version_id:
        changes["bundle_version_id"] = bundle_version_id
    return submission.model_copy(update=changes)
