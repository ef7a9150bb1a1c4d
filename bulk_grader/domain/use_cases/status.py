from __future__ import annotations

import logging

from bulk_grader.domain.errors import DomainNotFoundError
from bulk_grader.domain.models import BatchStats, ReconciledBatchStatus, RecoveryReport
from bulk_grader.domain.reconcile import (
    compute_grading_status,
    compute_stats,
    counters_differ,
    dedupe_by_id,
    needs_recovery,
    should_clear_expected_uploads,
    summarize,
)
from bulk_grader.lib.records.types import BatchRecord, SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.keys import submission_id_from_key

COMPONENT_ID = "domain.status.reconcile"
DEFAULT_SCAN_PAGE_SIZE = 100
DEFAULT_SCAN_MAX_PAGES = 20

logger = logging.getLogger("runtime")


async def reconcile_batch_status(
    *,
    batches: BatchStore,
    batch_id: str,
    scan_page_size: int = DEFAULT_SCAN_PAGE_SIZE,
    scan_max_pages: int = DEFAULT_SCAN_MAX_PAGES,
) -> ReconciledBatchStatus:
    """Recompute a batch's authoritative status from its submission records.

    Membership gaps are repaired first: when the membership set is empty or
    yields fewer submissions than the cached total, the queue and then the
    submission keyspace are searched for records pointing at this batch, and
    those are adopted back into the set. Cached batch counters are rewritten
    whenever they disagree with the recomputed numbers.
    """
    batch = await batches.get_batch(batch_id)
    if batch is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")

    member_ids = await batches.queue.members(batch_id=batch_id)
    submissions = await batches.get_submissions(sorted(member_ids))

    recovery = RecoveryReport()
    if needs_recovery(cached_total=batch.total_submissions, loaded_count=len(submissions)):
        recovered, recovery = await _recover_orphans(
            batches=batches,
            batch=batch,
            known_ids=member_ids | {item.id for item in submissions},
            loaded_count=len(submissions),
            scan_page_size=scan_page_size,
            scan_max_pages=scan_max_pages,
        )
        submissions.extend(recovered)

    submissions, duplicates = dedupe_by_id(submissions)
    if duplicates:
        recovery = RecoveryReport(
            adopted_from_queue=recovery.adopted_from_queue,
            adopted_from_scan=recovery.adopted_from_scan,
            duplicates_dropped=duplicates,
            scan_pages=recovery.scan_pages,
        )

    grading = compute_grading_status(submissions)
    stats = compute_stats(submissions, grading=grading)
    repaired, expected_upload_count = await _write_back(
        batches=batches,
        batch=batch,
        stats=stats,
        received=len(submissions),
    )

    return ReconciledBatchStatus(
        batch_id=batch_id,
        grading=grading,
        stats=stats,
        submissions=[summarize(item) for item in submissions],
        queue_length=await batches.queue.length(),
        expected_upload_count=expected_upload_count,
        counters_repaired=repaired,
        recovery=recovery,
    )


async def sync_batch_counters(*, batches: BatchStore, batch_id: str) -> BatchStats | None:
    """Refresh cached counters from the membership set, without recovery."""
    batch = await batches.get_batch(batch_id)
    if batch is None:
        return None
    submissions = await batches.get_batch_submissions(batch_id)
    grading = compute_grading_status(submissions)
    stats = compute_stats(submissions, grading=grading)
    await _write_back(batches=batches, batch=batch, stats=stats, received=len(submissions))
    return stats


async def _recover_orphans(
    *,
    batches: BatchStore,
    batch: BatchRecord,
    known_ids: set[str],
    loaded_count: int,
    scan_page_size: int,
    scan_max_pages: int,
) -> tuple[list[SubmissionRecord], RecoveryReport]:
    seen = set(known_ids)
    from_queue: list[SubmissionRecord] = []
    for submission_id in await batches.queue.entries():
        if submission_id in seen:
            continue
        seen.add(submission_id)
        candidate = await batches.get_submission(submission_id)
        if candidate is not None and candidate.batch_id == batch.id:
            from_queue.append(candidate)

    from_scan: list[SubmissionRecord] = []
    pages = 0
    if needs_recovery(cached_total=batch.total_submissions, loaded_count=loaded_count + len(from_queue)):
        cursor: str | None = None
        while pages < scan_max_pages:
            cursor, keys = await batches.scan_submission_keys(cursor=cursor, count=scan_page_size)
            pages += 1
            for key in keys:
                submission_id = submission_id_from_key(key)
                if submission_id in seen:
                    continue
                seen.add(submission_id)
                candidate = await batches.get_submission(submission_id)
                if candidate is not None and candidate.batch_id == batch.id:
                    from_scan.append(candidate)
            if cursor is None:
                break

    adopted = [item.id for item in [*from_queue, *from_scan]]
    if adopted:
        await batches.queue.adopt(batch_id=batch.id, submission_ids=adopted)
        logger.warning(
            "orphaned submissions adopted",
            extra={
                "component": COMPONENT_ID,
                "batch_id": batch.id,
                "adopted_from_queue": len(from_queue),
                "adopted_from_scan": len(from_scan),
            },
        )
    return [*from_queue, *from_scan], RecoveryReport(
        adopted_from_queue=len(from_queue),
        adopted_from_scan=len(from_scan),
        scan_pages=pages,
    )


async def _write_back(
    *,
    batches: BatchStore,
    batch: BatchRecord,
    stats: BatchStats,
    received: int,
) -> tuple[bool, int | None]:
    clear_expected = should_clear_expected_uploads(batch=batch, received=received, now_ms=batches.clock())
    if not counters_differ(batch, stats) and not clear_expected:
        return False, batch.expected_upload_count

    def _apply(current: BatchRecord) -> BatchRecord:
        changes: dict[str, object] = {
            "total_submissions": stats.counts.total,
            "processed_count": stats.processed_count,
            "failed_count": stats.failed_count,
            "status": stats.batch_status.value,
        }
        if clear_expected:
            changes["expected_upload_count"] = None
        return current.model_copy(update=changes)

    updated = await batches.update_batch(batch.id, _apply)
    if updated is None:
        return False, batch.expected_upload_count
    return True, updated.expected_upload_count
