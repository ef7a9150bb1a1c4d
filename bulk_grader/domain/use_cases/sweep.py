from __future__ import annotations

import logging

from bulk_grader.domain.lifecycle import ensure_transition, is_processing
from bulk_grader.domain.models import SubmissionStatus
from bulk_grader.domain.use_cases.status import sync_batch_counters
from bulk_grader.lib.records.types import SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore

COMPONENT_ID = "domain.submission.sweep"
LEASE_EXPIRED_MESSAGE = "Processing stalled: worker lease expired"

logger = logging.getLogger("runtime")


def is_lease_expired(submission: SubmissionRecord, *, now_ms: int) -> bool:
    return (
        is_processing(submission.status)
        and submission.lease_expires_at is not None
        and submission.lease_expires_at <= now_ms
    )


async def sweep_expired_claims(*, batches: BatchStore) -> list[str]:
    """Fail in-flight submissions whose worker stopped renewing its lease.

    Every batch is inspected regardless of its cached status; the decision
    rests on each submission's own state and lease. Nothing is requeued; the
    failed submissions wait for an explicit regrade like any other failure.
    Returns the ids that were failed.
    """
    now = batches.clock()
    swept: list[str] = []
    for batch in await batches.list_batches():
        batch_swept: list[str] = []
        for submission in await batches.get_batch_submissions(batch.id):
            if not is_lease_expired(submission, now_ms=now):
                continue
            expected_token = submission.claim_token

            def _expire(current: SubmissionRecord) -> SubmissionRecord | None:
                # Re-checked under the store lock; a heartbeat may have landed since the read.
                if current.claim_token != expected_token or not is_lease_expired(current, now_ms=now):
                    return None
                ensure_transition(from_state=current.status, to_state=SubmissionStatus.FAILED)
                return current.model_copy(
                    update={
                        "status": SubmissionStatus.FAILED.value,
                        "error_code": "lease_expired",
                        "error_message": LEASE_EXPIRED_MESSAGE,
                        "completed_at": now,
                        "claimed_by": None,
                        "claim_token": None,
                        "lease_expires_at": None,
                    }
                )

            if await batches.modify_submission(submission.id, _expire) is not None:
                batch_swept.append(submission.id)

        if batch_swept:
            await sync_batch_counters(batches=batches, batch_id=batch.id)
            logger.warning(
                "expired claims swept",
                extra={
                    "component": COMPONENT_ID,
                    "batch_id": batch.id,
                    "stage": "sweep",
                    "error_code": "lease_expired",
                    "swept_count": len(batch_swept),
                },
            )
            swept.extend(batch_swept)
    return swept
