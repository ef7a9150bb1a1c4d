from __future__ import annotations

from dataclasses import asdict

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.schemas import (
    EnqueueRequest,
    EnqueueResponse,
    ListSubmissionsResponse,
    PresignDownloadResponse,
    PresignUploadRequest,
    PresignUploadResponse,
    SubmissionDetailResponse,
    SubmissionSummaryResponse,
)
from bulk_grader.domain.models import SubmissionSummary
from bulk_grader.domain.reconcile import summarize
from bulk_grader.domain.use_cases import submissions as submission_use_cases

COMPONENT_ID = "api.submissions"


def summary_response(summary: SubmissionSummary) -> SubmissionSummaryResponse:
    return SubmissionSummaryResponse.model_validate(asdict(summary))


async def presign_upload_handler(*, request: PresignUploadRequest, api_deps: ApiDeps) -> PresignUploadResponse:
    presigned = await submission_use_cases.presign_upload(
        batches=api_deps.batches,
        storage=api_deps.storage,
        batch_id=request.batch_id,
        filename=request.filename,
        content_type=request.content_type,
    )
    return PresignUploadResponse(
        submission_id=presigned.submission_id,
        file_key=presigned.file_key,
        upload_url=presigned.upload_url,
        expires_in=presigned.expires_in,
    )


async def presign_download_handler(*, file_key: str, api_deps: ApiDeps) -> PresignDownloadResponse:
    url = submission_use_cases.presign_download(storage=api_deps.storage, file_key=file_key)
    return PresignDownloadResponse(url=url, file_key=file_key)


async def enqueue_handler(*, request: EnqueueRequest, api_deps: ApiDeps) -> EnqueueResponse:
    submission, created = await submission_use_cases.enqueue_submission(
        batches=api_deps.batches,
        batch_id=request.batch_id,
        file_key=request.file_key,
        original_filename=request.original_filename,
        submission_id=request.submission_id,
        file_size=request.file_size,
        mime_type=request.mime_type,
        student_name=request.student_name,
        student_id=request.student_id,
    )
    return EnqueueResponse(created=created, submission=summary_response(summarize(submission)))


async def list_submissions_handler(*, batch_id: str, api_deps: ApiDeps) -> ListSubmissionsResponse:
    submissions = await submission_use_cases.list_batch_submissions(batches=api_deps.batches, batch_id=batch_id)
    return ListSubmissionsResponse(
        batch_id=batch_id,
        items=[summary_response(summarize(item)) for item in submissions],
    )


async def get_submission_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionDetailResponse:
    submission = await submission_use_cases.get_submission(batches=api_deps.batches, submission_id=submission_id)
    return SubmissionDetailResponse(
        submission=submission,
        download_url=api_deps.storage.presign_download(key=submission.file_key),
    )
