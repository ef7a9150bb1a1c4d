from __future__ import annotations

from dataclasses import asdict

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.handlers.submissions import summary_response
from bulk_grader.api.schemas import BatchStatusResponse, RecoveryResponse, StatusStatsResponse
from bulk_grader.domain.use_cases.status import reconcile_batch_status

COMPONENT_ID = "api.batch_status"


async def batch_status_handler(*, batch_id: str, api_deps: ApiDeps) -> BatchStatusResponse:
    """Reconciled status; every call may repair membership and cached counters."""
    reconciled = await reconcile_batch_status(
        batches=api_deps.batches,
        batch_id=batch_id,
        scan_page_size=api_deps.reconcile.scan_page_size,
        scan_max_pages=api_deps.reconcile.scan_max_pages,
    )
    stats = reconciled.stats
    return BatchStatusResponse(
        batch_id=reconciled.batch_id,
        status=reconciled.grading.status.value,
        graded_count=reconciled.grading.graded_count,
        total_count=reconciled.grading.total_count,
        message=reconciled.grading.message,
        batch_status=stats.batch_status.value,
        stats=StatusStatsResponse(
            **asdict(stats.counts),
            graded=stats.graded_count,
            score_missing=stats.score_missing_count,
        ),
        submissions=[summary_response(item) for item in reconciled.submissions],
        queue_length=reconciled.queue_length,
        expected_upload_count=reconciled.expected_upload_count,
        counters_repaired=reconciled.counters_repaired,
        recovery=RecoveryResponse.model_validate(asdict(reconciled.recovery)),
    )
