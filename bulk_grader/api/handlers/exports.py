from __future__ import annotations

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.domain.use_cases.export import ExportPayload, export_batch

COMPONENT_ID = "api.export_results"


async def export_results_handler(*, batch_id: str, export_format: str, api_deps: ApiDeps) -> ExportPayload:
    """Build the batch export; the route turns it into a download response."""
    return await export_batch(batches=api_deps.batches, batch_id=batch_id, export_format=export_format)
