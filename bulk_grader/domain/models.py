from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from bulk_grader.domain.error_taxonomy import ErrorCode


# Canonical submission lifecycle states.
#
# IMPORTANT:
# - Keep this enum synchronized with bulk_grader/domain/lifecycle.py
#   (ALLOWED_TRANSITIONS, PROCESSING_STATES, TERMINAL_STATES).
# - Any status add/remove/rename must be done atomically across both files.
class SubmissionStatus(StrEnum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    READY = "ready"
    FAILED = "failed"


# Cached batch status written back by the status reconciler.
class BatchStatus(StrEnum):
    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETED = "completed"


# Authoritative aggregate status derived from submission records.
class GradingStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class SubmissionClaim:
    submission_id: str
    batch_id: str
    claim_token: str
    worker_id: str
    lease_expires_at: int


@dataclass(frozen=True)
class ProcessOutcome:
    submission_id: str
    status: SubmissionStatus | None
    error_code: ErrorCode | None = None
    detail: str = ""
    # Ownership was lost mid-flight (lease swept or regrade reset); results were discarded.
    stale: bool = False


@dataclass(frozen=True)
class StatusCounts:
    total: int = 0
    queued: int = 0
    uploading: int = 0
    transcribing: int = 0
    analyzing: int = 0
    ready: int = 0
    failed: int = 0


@dataclass(frozen=True)
class GradingStatusResult:
    status: GradingStatus
    graded_count: int
    total_count: int
    message: str


@dataclass(frozen=True)
class BatchStats:
    counts: StatusCounts
    graded_count: int
    processed_count: int
    failed_count: int
    score_missing_count: int
    batch_status: BatchStatus


@dataclass(frozen=True)
class SubmissionSummary:
    id: str
    student_name: str
    original_filename: str
    status: str
    error_message: str | None
    overall_score: float | None
    has_grade_data: bool
    bundle_version_id: str | None
    created_at: int
    completed_at: int | None


@dataclass(frozen=True)
class RecoveryReport:
    adopted_from_queue: int = 0
    adopted_from_scan: int = 0
    duplicates_dropped: int = 0
    scan_pages: int = 0


@dataclass(frozen=True)
class ReconciledBatchStatus:
    batch_id: str
    grading: GradingStatusResult
    stats: BatchStats
    submissions: list[SubmissionSummary]
    queue_length: int
    expected_upload_count: int | None
    counters_repaired: bool
    recovery: RecoveryReport = field(default_factory=RecoveryReport)


@dataclass(frozen=True)
class RegradeItemResult:
    submission_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class RegradeResult:
    results: list[RegradeItemResult]
    queued_count: int
    bundle_version_id: str | None
    message: str


@dataclass(frozen=True)
class TriggerResult:
    processed: int
    dispatched: int
    queue_length: int
    requeued: int = 0


@dataclass(frozen=True)
class DrainResult:
    processed: int
    iterations: int
    elapsed_ms: int
    budget_exhausted: bool


@dataclass(frozen=True)
class GradingContext:
    bundle_version_id: str | None
    rubric_json: str
    assignment_summary: str
    document_context: str
    course_summary: str
    evaluation_guidance: str = ""
