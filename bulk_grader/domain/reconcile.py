from __future__ import annotations

from collections.abc import Iterable, Sequence

from bulk_grader.domain.lifecycle import is_terminal
from bulk_grader.domain.models import (
    BatchStats,
    BatchStatus,
    GradingStatus,
    GradingStatusResult,
    StatusCounts,
    SubmissionStatus,
    SubmissionSummary,
)
from bulk_grader.lib.records.types import BatchRecord, SubmissionRecord

STALE_UPLOAD_WINDOW_MS = 5 * 60 * 1000


def is_graded(submission: SubmissionRecord) -> bool:
    return submission.status == SubmissionStatus.READY and submission.overall_score() is not None


def is_score_missing(submission: SubmissionRecord) -> bool:
    return submission.status == SubmissionStatus.READY and submission.overall_score() is None


def needs_recovery(*, cached_total: int, loaded_count: int) -> bool:
    return cached_total > loaded_count or loaded_count == 0


def dedupe_by_id(submissions: Iterable[SubmissionRecord]) -> tuple[list[SubmissionRecord], int]:
    seen: set[str] = set()
    unique: list[SubmissionRecord] = []
    dropped = 0
    for item in submissions:
        if item.id in seen:
            dropped += 1
            continue
        seen.add(item.id)
        unique.append(item)
    return unique, dropped


def count_statuses(submissions: Sequence[SubmissionRecord]) -> StatusCounts:
    by_status = {status: 0 for status in SubmissionStatus}
    for item in submissions:
        if item.status in by_status:
            by_status[SubmissionStatus(item.status)] += 1
    return StatusCounts(
        total=len(submissions),
        queued=by_status[SubmissionStatus.QUEUED],
        uploading=by_status[SubmissionStatus.UPLOADING],
        transcribing=by_status[SubmissionStatus.TRANSCRIBING],
        analyzing=by_status[SubmissionStatus.ANALYZING],
        ready=by_status[SubmissionStatus.READY],
        failed=by_status[SubmissionStatus.FAILED],
    )


def compute_grading_status(submissions: Sequence[SubmissionRecord]) -> GradingStatusResult:
    """Derive the aggregate status from submission records alone.

    Cached batch counters are never consulted. A ready submission without a
    score does not count as graded and, once everything is terminal, turns
    the aggregate into ERROR rather than COMPLETED.
    """
    total = len(submissions)
    graded = sum(1 for item in submissions if is_graded(item))

    if total == 0:
        return GradingStatusResult(
            status=GradingStatus.NOT_STARTED,
            graded_count=0,
            total_count=0,
            message="No submissions in this batch yet",
        )

    if all(item.status == SubmissionStatus.QUEUED for item in submissions):
        return GradingStatusResult(
            status=GradingStatus.NOT_STARTED,
            graded_count=graded,
            total_count=total,
            message=f"{total} submission(s) waiting to be graded",
        )

    score_missing = sum(1 for item in submissions if is_score_missing(item))
    if score_missing > 0 and all(is_terminal(item.status) for item in submissions):
        return GradingStatusResult(
            status=GradingStatus.ERROR,
            graded_count=graded,
            total_count=total,
            message=f"{score_missing} submission(s) marked ready without a score; regrade to recover",
        )

    if graded == total:
        return GradingStatusResult(
            status=GradingStatus.COMPLETED,
            graded_count=graded,
            total_count=total,
            message=f"All {total} submission(s) graded",
        )

    failed = sum(1 for item in submissions if item.status == SubmissionStatus.FAILED)
    message = f"{graded} of {total} submission(s) graded"
    if failed:
        message += f", {failed} failed"
    return GradingStatusResult(
        status=GradingStatus.IN_PROGRESS,
        graded_count=graded,
        total_count=total,
        message=message,
    )


def batch_status_for(grading_status: GradingStatus) -> BatchStatus:
    if grading_status == GradingStatus.COMPLETED:
        return BatchStatus.COMPLETED
    if grading_status == GradingStatus.NOT_STARTED:
        return BatchStatus.ACTIVE
    return BatchStatus.PROCESSING


def compute_stats(submissions: Sequence[SubmissionRecord], *, grading: GradingStatusResult) -> BatchStats:
    counts = count_statuses(submissions)
    return BatchStats(
        counts=counts,
        graded_count=grading.graded_count,
        processed_count=grading.graded_count,
        failed_count=counts.failed,
        score_missing_count=sum(1 for item in submissions if is_score_missing(item)),
        batch_status=batch_status_for(grading.status),
    )


def counters_differ(batch: BatchRecord, stats: BatchStats) -> bool:
    return (
        batch.total_submissions != stats.counts.total
        or batch.processed_count != stats.processed_count
        or batch.failed_count != stats.failed_count
        or batch.status != stats.batch_status
    )


def should_clear_expected_uploads(*, batch: BatchRecord, received: int, now_ms: int) -> bool:
    expected = batch.expected_upload_count
    if expected is None:
        return False
    if received >= expected:
        return True
    return expected > 0 and received == 0 and now_ms - batch.created_at > STALE_UPLOAD_WINDOW_MS


def summarize(submission: SubmissionRecord) -> SubmissionSummary:
    score = submission.overall_score() if submission.status == SubmissionStatus.READY else None
    return SubmissionSummary(
        id=submission.id,
        student_name=submission.student_name,
        original_filename=submission.original_filename,
        status=submission.status,
        error_message=submission.error_message,
        overall_score=score,
        has_grade_data=submission.rubric_evaluation is not None,
        bundle_version_id=submission.bundle_version_id,
        created_at=submission.created_at,
        completed_at=submission.completed_at,
    )
