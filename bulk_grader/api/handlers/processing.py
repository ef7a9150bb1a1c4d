from __future__ import annotations

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.schemas import ProcessBatchResponse, ProcessNowResponse, ProcessOneResponse

COMPONENT_ID = "api.processing"


async def process_now_handler(*, batch_id: str | None, api_deps: ApiDeps) -> ProcessNowResponse:
    result = await api_deps.controller.trigger(batch_id=batch_id)
    return ProcessNowResponse(
        processed=result.processed,
        dispatched=result.dispatched,
        queue_length=result.queue_length,
        requeued=result.requeued,
    )


async def process_batch_handler(*, batch_id: str | None, api_deps: ApiDeps) -> ProcessBatchResponse:
    result = await api_deps.controller.run_until_drained(batch_id=batch_id)
    return ProcessBatchResponse(
        processed=result.processed,
        iterations=result.iterations,
        elapsed_ms=result.elapsed_ms,
        budget_exhausted=result.budget_exhausted,
    )


async def process_one_handler(*, api_deps: ApiDeps) -> ProcessOneResponse:
    """Target of a single network dispatch: pop and fully process at most one submission."""
    return ProcessOneResponse(processed=await api_deps.processor.process_next())
