from __future__ import annotations

import logging
from pathlib import PurePosixPath

from bulk_grader.domain.contracts import StorageClient
from bulk_grader.domain.dto import PresignedUpload
from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.domain.ids import new_submission_id
from bulk_grader.domain.models import SubmissionStatus
from bulk_grader.domain.names import infer_student_name
from bulk_grader.lib.records.types import SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore

COMPONENT_ID = "domain.submission.create"
ALLOWED_MEDIA_FAMILIES = ("audio", "video")
DEFAULT_MIME_TYPE = "video/mp4"
UPLOAD_URL_TTL_SECONDS = 3600

logger = logging.getLogger("runtime")


def submission_file_key(*, batch_id: str, submission_id: str, filename: str) -> str:
    suffix = PurePosixPath(filename).suffix.lower().lstrip(".") or "bin"
    return f"batches/{batch_id}/{submission_id}.{suffix}"


async def presign_upload(
    *,
    batches: BatchStore,
    storage: StorageClient,
    batch_id: str,
    filename: str,
    content_type: str,
) -> PresignedUpload:
    """Reserve a submission id and file key and hand back a direct-upload URL.

    Nothing is written to the record store; the submission only exists once
    the client calls enqueue after the upload finished.
    """
    if not batch_id or not filename or not content_type:
        raise DomainValidationError("batch_id, filename and content_type are required")
    if content_type.split("/", 1)[0] not in ALLOWED_MEDIA_FAMILIES:
        raise DomainValidationError(f"Unsupported content type: {content_type}. Allowed: video/*, audio/*")
    if await batches.get_batch(batch_id) is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")

    submission_id = new_submission_id()
    file_key = submission_file_key(batch_id=batch_id, submission_id=submission_id, filename=filename)
    upload_url = storage.presign_upload(key=file_key, content_type=content_type, expires_in=UPLOAD_URL_TTL_SECONDS)
    return PresignedUpload(
        submission_id=submission_id,
        file_key=file_key,
        upload_url=upload_url,
        content_type=content_type,
        expires_in=UPLOAD_URL_TTL_SECONDS,
    )


def presign_download(*, storage: StorageClient, file_key: str) -> str:
    if not file_key:
        raise DomainValidationError("key is required")
    return storage.presign_download(key=file_key)


async def enqueue_submission(
    *,
    batches: BatchStore,
    batch_id: str,
    file_key: str,
    original_filename: str,
    submission_id: str | None = None,
    file_size: int = 0,
    mime_type: str | None = None,
    student_name: str | None = None,
    student_id: str | None = None,
) -> tuple[SubmissionRecord, bool]:
    """Create a queued submission and push it onto the queue.

    Returns ``(submission, created)``. When ``submission_id`` names an existing
    record the call is a no-op and returns that record with ``created=False``.
    """
    if not batch_id or not file_key or not original_filename:
        raise DomainValidationError("batch_id, file_key and original_filename are required")
    batch = await batches.get_batch(batch_id)
    if batch is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")

    if submission_id:
        existing = await batches.get_submission(submission_id)
        if existing is not None:
            if existing.batch_id != batch_id:
                raise DomainValidationError("submission belongs to a different batch")
            logger.info(
                "enqueue ignored for existing submission",
                extra={"component": COMPONENT_ID, "batch_id": batch_id, "submission_id": submission_id},
            )
            return existing, False

    submission = SubmissionRecord(
        id=submission_id or new_submission_id(),
        batch_id=batch_id,
        course_id=batch.course_id,
        assignment_id=batch.assignment_id,
        original_filename=original_filename,
        file_key=file_key,
        file_size=file_size,
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        student_name=(student_name or "").strip() or infer_student_name(original_filename),
        student_id=student_id,
        bundle_version_id=batch.bundle_version_id,
        status=SubmissionStatus.QUEUED.value,
        created_at=batches.clock(),
    )
    await batches.create_submission(submission)
    logger.info(
        "submission enqueued",
        extra={"component": COMPONENT_ID, "batch_id": batch_id, "submission_id": submission.id},
    )
    return submission, True


async def get_submission(*, batches: BatchStore, submission_id: str) -> SubmissionRecord:
    submission = await batches.get_submission(submission_id)
    if submission is None:
        raise DomainNotFoundError(f"submission not found: {submission_id}")
    return submission


async def list_batch_submissions(*, batches: BatchStore, batch_id: str) -> list[SubmissionRecord]:
    if await batches.get_batch(batch_id) is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")
    return await batches.get_batch_submissions(batch_id)


async def requeue_stuck_submissions(*, batches: BatchStore, batch_id: str) -> int:
    """Push a batch's still-queued submissions back onto an empty queue.

    Covers queue entries lost between the record write and the push, or
    popped by a worker that died before claiming.
    """
    stuck = [item for item in await batches.get_batch_submissions(batch_id) if item.status == SubmissionStatus.QUEUED]
    for submission in stuck:
        await batches.queue.enqueue(submission_id=submission.id, batch_id=batch_id)
    if stuck:
        logger.info(
            "stuck submissions requeued",
            extra={"component": COMPONENT_ID, "batch_id": batch_id, "requeued_count": len(stuck)},
        )
    return len(stuck)
