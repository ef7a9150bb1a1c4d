from __future__ import annotations

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.schemas import (
    BundleVersionListResponse,
    BundleVersionSummaryResponse,
    RegradeItemResponse,
    RegradeRequest,
    RegradeResponse,
)
from bulk_grader.domain.use_cases.bundles import list_version_summaries
from bulk_grader.domain.use_cases.regrade import regrade_submissions

COMPONENT_ID = "api.regrade"


async def regrade_handler(*, request: RegradeRequest, api_deps: ApiDeps) -> RegradeResponse:
    submission_ids = list(request.submission_ids or [])
    if request.submission_id and request.submission_id not in submission_ids:
        submission_ids.append(request.submission_id)
    result = await regrade_submissions(
        batches=api_deps.batches,
        contexts=api_deps.contexts,
        submission_ids=submission_ids,
        batch_id=request.batch_id,
        bundle_version_id=request.bundle_version_id,
    )
    return RegradeResponse(
        message=result.message,
        queued_count=result.queued_count,
        bundle_version_id=result.bundle_version_id,
        results=[
            RegradeItemResponse(submission_id=item.submission_id, success=item.success, error=item.error)
            for item in result.results
        ],
    )


async def list_regrade_versions_handler(*, bundle_id: str, api_deps: ApiDeps) -> BundleVersionListResponse:
    summaries = await list_version_summaries(contexts=api_deps.contexts, bundle_id=bundle_id)
    return BundleVersionListResponse(
        bundle_id=bundle_id,
        versions=[
            BundleVersionSummaryResponse(
                id=item.id,
                version=item.version,
                created_at=item.created_at,
                rubric_name=item.rubric_name,
                criteria_count=item.criteria_count,
            )
            for item in summaries
        ],
    )
