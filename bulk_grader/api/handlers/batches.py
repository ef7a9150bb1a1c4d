from __future__ import annotations

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.schemas import (
    BatchResponse,
    CreateBatchRequest,
    DeleteBatchResponse,
    ListBatchesResponse,
)
from bulk_grader.domain.use_cases import batches as batch_use_cases
from bulk_grader.lib.records.types import BatchRecord

COMPONENT_ID = "api.batches"


def batch_response(batch: BatchRecord) -> BatchResponse:
    return BatchResponse.model_validate(batch.model_dump())


async def create_batch_handler(*, request: CreateBatchRequest, api_deps: ApiDeps) -> BatchResponse:
    batch = await batch_use_cases.create_batch(
        batches=api_deps.batches,
        contexts=api_deps.contexts,
        name=request.name,
        course_name=request.course_name,
        assignment_name=request.assignment_name,
        course_id=request.course_id,
        assignment_id=request.assignment_id,
        bundle_version_id=request.bundle_version_id,
        rubric_criteria=request.rubric_criteria,
    )
    return batch_response(batch)


async def list_batches_handler(*, api_deps: ApiDeps) -> ListBatchesResponse:
    return ListBatchesResponse(items=[batch_response(item) for item in await api_deps.batches.list_batches()])


async def get_batch_handler(*, batch_id: str, api_deps: ApiDeps) -> BatchResponse:
    return batch_response(await batch_use_cases.get_batch(batches=api_deps.batches, batch_id=batch_id))


async def delete_batch_handler(*, batch_id: str, api_deps: ApiDeps) -> DeleteBatchResponse:
    await batch_use_cases.delete_batch(batches=api_deps.batches, batch_id=batch_id)
    return DeleteBatchResponse(success=True, batch_id=batch_id)


async def update_expected_uploads_handler(*, batch_id: str, expected_count: int, api_deps: ApiDeps) -> BatchResponse:
    batch = await batch_use_cases.update_expected_uploads(
        batches=api_deps.batches,
        batch_id=batch_id,
        expected_count=expected_count,
    )
    return batch_response(batch)
