from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import re

from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.lib.records import encode_export_json, encode_export_rows
from bulk_grader.lib.records.types import BatchRecord, ExportRowRecord, SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore

COMPONENT_ID = "domain.export.prepare"
EXPORT_FORMATS = ("csv", "json")
_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class ExportPayload:
    filename: str
    media_type: str
    content: bytes


def build_export_rows(submissions: list[SubmissionRecord]) -> list[ExportRowRecord]:
    """One row per submission, graded or not; list-valued fields are joined with '; '."""
    rows: list[ExportRowRecord] = []
    for item in submissions:
        evaluation = item.rubric_evaluation
        analysis = item.analysis
        score = evaluation.overall_score if evaluation is not None else None
        rows.append(
            ExportRowRecord(
                student_name=item.student_name,
                file_name=item.original_filename,
                status=item.status,
                overall_score=f"{score:.1f}" if score is not None else "",
                strengths=_join(evaluation.strengths if evaluation else []),
                improvements=_join(evaluation.improvements if evaluation else []),
                key_claims=_join([claim.claim for claim in analysis.key_claims] if analysis else []),
                logical_gaps=_join([gap.description for gap in analysis.logical_gaps] if analysis else []),
                missing_evidence=_join([entry.description for entry in analysis.missing_evidence] if analysis else []),
                questions=_join([question.question for question in item.questions or []]),
                completed_at=_iso(item.completed_at),
            )
        )
    return rows


async def export_batch(*, batches: BatchStore, batch_id: str, export_format: str = "csv") -> ExportPayload:
    if export_format not in EXPORT_FORMATS:
        raise DomainValidationError(f"unsupported export format: {export_format}")
    batch = await batches.get_batch(batch_id)
    if batch is None:
        raise DomainNotFoundError(f"batch not found: {batch_id}")
    submissions = await batches.get_batch_submissions(batch_id)

    if export_format == "json":
        return ExportPayload(
            filename=f"{_safe_name(batch)}_results.json",
            media_type="application/json",
            content=encode_export_json(batch, submissions),
        )
    return ExportPayload(
        filename=f"{_safe_name(batch)}_results.csv",
        media_type="text/csv",
        content=encode_export_rows(build_export_rows(submissions)),
    )


def _safe_name(batch: BatchRecord) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", batch.name) or batch.id


def _join(values: list[str]) -> str:
    return "; ".join(str(item) for item in values)


def _iso(timestamp_ms: int | None) -> str:
    if timestamp_ms is None:
        return ""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).isoformat().replace("+00:00", "Z")
