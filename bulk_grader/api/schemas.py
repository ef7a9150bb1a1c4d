from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from bulk_grader.lib.records.types import (
    AssignmentRecord,
    BundleRecord,
    BundleVersionRecord,
    CourseRecord,
    GradingScale,
    RubricRecord,
    SubmissionRecord,
)

ULID_PATTERN = r"[0-9A-HJKMNP-TV-Z]{26}"
BATCH_ID_PATTERN = rf"^bat_{ULID_PATTERN}$"
SUBMISSION_ID_PATTERN = rf"^sub_{ULID_PATTERN}$"
BUNDLE_VERSION_ID_PATTERN = rf"^bv_{ULID_PATTERN}$"


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    processed_total: int
    idle_ticks_total: int
    swept_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics
    queue_length: int
    inflight_dispatches: int


class CreateBatchRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    course_name: str | None = None
    assignment_name: str | None = None
    course_id: str | None = None
    assignment_id: str | None = None
    bundle_version_id: str | None = None
    rubric_criteria: str | None = None


class BatchResponse(BaseModel):
    id: str = Field(pattern=BATCH_ID_PATTERN)
    name: str
    course_name: str | None = None
    assignment_name: str | None = None
    course_id: str | None = None
    assignment_id: str | None = None
    bundle_version_id: str | None = None
    rubric_criteria: str | None = None
    total_submissions: int
    processed_count: int
    failed_count: int
    status: Literal["active", "processing", "completed"]
    expected_upload_count: int | None = None
    created_at: int
    updated_at: int


class ListBatchesResponse(BaseModel):
    items: list[BatchResponse]


class DeleteBatchResponse(BaseModel):
    success: bool
    batch_id: str


class ExpectedUploadsRequest(BaseModel):
    expected_count: int = Field(ge=0)


class PresignUploadRequest(BaseModel):
    batch_id: str = Field(min_length=1)
    filename: str = Field(min_length=1, max_length=512)
    content_type: str = Field(min_length=1, max_length=128)


class PresignUploadResponse(BaseModel):
    success: bool = True
    submission_id: str = Field(pattern=SUBMISSION_ID_PATTERN)
    file_key: str
    upload_url: str
    expires_in: int


class PresignDownloadResponse(BaseModel):
    success: bool = True
    url: str
    file_key: str


class EnqueueRequest(BaseModel):
    batch_id: str = Field(min_length=1)
    file_key: str = Field(min_length=1)
    original_filename: str = Field(min_length=1, max_length=512)
    submission_id: str | None = Field(default=None, pattern=SUBMISSION_ID_PATTERN)
    file_size: int = Field(default=0, ge=0)
    mime_type: str | None = None
    student_name: str | None = None
    student_id: str | None = None


class SubmissionSummaryResponse(BaseModel):
    id: str
    student_name: str
    original_filename: str
    status: str
    error_message: str | None = None
    overall_score: float | None = None
    has_grade_data: bool
    bundle_version_id: str | None = None
    created_at: int
    completed_at: int | None = None


class EnqueueResponse(BaseModel):
    success: bool = True
    created: bool
    submission: SubmissionSummaryResponse


class ListSubmissionsResponse(BaseModel):
    batch_id: str
    items: list[SubmissionSummaryResponse]


class SubmissionDetailResponse(BaseModel):
    submission: SubmissionRecord
    download_url: str | None = None


class ProcessRequest(BaseModel):
    batch_id: str | None = None


class ProcessNowResponse(BaseModel):
    success: bool = True
    processed: int
    dispatched: int
    queue_length: int
    requeued: int


class ProcessBatchResponse(BaseModel):
    success: bool = True
    processed: int
    iterations: int
    elapsed_ms: int
    budget_exhausted: bool


class ProcessOneResponse(BaseModel):
    processed: int


class RegradeRequest(BaseModel):
    submission_id: str | None = None
    submission_ids: list[str] | None = None
    batch_id: str | None = None
    bundle_version_id: str | None = None


class RegradeItemResponse(BaseModel):
    submission_id: str
    success: bool
    error: str | None = None


class RegradeResponse(BaseModel):
    success: bool = True
    message: str
    queued_count: int
    bundle_version_id: str | None = None
    results: list[RegradeItemResponse]


class BundleVersionSummaryResponse(BaseModel):
    id: str
    version: int
    created_at: int
    rubric_name: str
    criteria_count: int


class BundleVersionListResponse(BaseModel):
    bundle_id: str
    versions: list[BundleVersionSummaryResponse]


class StatusStatsResponse(BaseModel):
    total: int
    queued: int
    uploading: int
    transcribing: int
    analyzing: int
    ready: int
    failed: int
    graded: int
    score_missing: int


class RecoveryResponse(BaseModel):
    adopted_from_queue: int
    adopted_from_scan: int
    duplicates_dropped: int
    scan_pages: int


class BatchStatusResponse(BaseModel):
    batch_id: str
    status: Literal["not_started", "in_progress", "completed", "error"]
    graded_count: int
    total_count: int
    message: str
    batch_status: Literal["active", "processing", "completed"]
    stats: StatusStatsResponse
    submissions: list[SubmissionSummaryResponse]
    queue_length: int
    expected_upload_count: int | None = None
    counters_repaired: bool
    recovery: RecoveryResponse


class CreateCourseRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    course_code: str = ""
    term: str = ""
    description: str | None = None


class CourseResponse(BaseModel):
    course: CourseRecord


class CreateAssignmentRequest(BaseModel):
    course_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=256)
    instructions: str = ""
    rubric_id: str | None = None
    due_date: str | None = None


class AssignmentResponse(BaseModel):
    assignment: AssignmentRecord


class CreateRubricRequest(BaseModel):
    course_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=256)
    criteria: list[dict[str, object]] = Field(min_length=1)
    assignment_id: str | None = None
    grading_scale: GradingScale | None = None
    raw_text: str | None = None


class UpdateRubricRequest(BaseModel):
    rubric_id: str = Field(min_length=1)
    name: str | None = None
    criteria: list[dict[str, object]] | None = None
    grading_scale: GradingScale | None = None


class RubricResponse(BaseModel):
    rubric: RubricRecord


class DocumentResponse(BaseModel):
    id: str
    course_id: str
    assignment_id: str | None = None
    name: str
    type: str
    file_key: str | None = None
    word_count: int
    preview: str
    created_at: int


class BundleResponse(BaseModel):
    bundle: BundleRecord
    latest_version: BundleVersionRecord | None = None
    versions: list[BundleVersionRecord] | None = None


class GradingContextResponse(BaseModel):
    bundle_version_id: str | None = None
    rubric_json: str
    assignment_summary: str
    document_context: str
    course_summary: str
    evaluation_guidance: str


class SnapshotRequest(BaseModel):
    bundle_id: str | None = None
    assignment_id: str | None = None
    created_by: str | None = None


class SnapshotResponse(BaseModel):
    success: bool = True
    id: str = Field(pattern=BUNDLE_VERSION_ID_PATTERN)
    bundle_id: str
    version: int = Field(ge=1)
    created_at: int
