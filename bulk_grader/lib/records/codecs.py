from __future__ import annotations

import csv
import io
import json
from typing import TypeVar

from pydantic import BaseModel

from bulk_grader.lib.records.types import BatchRecord, ExportRowRecord, SubmissionRecord

RecordT = TypeVar("RecordT", bound=BaseModel)


def to_document(record: BaseModel) -> dict[str, object]:
    return record.model_dump(mode="json")


def from_document(model: type[RecordT], document: dict[str, object]) -> RecordT:
    return model.model_validate(document)


def export_columns() -> list[str]:
    return [
        field.serialization_alias or name
        for name, field in ExportRowRecord.model_fields.items()
    ]


def encode_export_rows(rows: list[ExportRowRecord]) -> bytes:
    # Header row is always written so an empty batch still exports a valid CSV.
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=export_columns(), lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row.model_dump(mode="json", by_alias=True))
    return buffer.getvalue().encode("utf-8")


def encode_export_json(batch: BatchRecord, submissions: list[SubmissionRecord]) -> bytes:
    payload = {
        "batch": to_document(batch),
        "submissions": [to_document(item) for item in submissions],
    }
    return json.dumps(payload, sort_keys=True).encode("utf-8")
