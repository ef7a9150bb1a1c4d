from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

STRUCTURED_KEYS = (
    "role",
    "service",
    "run_id",
    "component",
    "batch_id",
    "submission_id",
    "bundle_version_id",
    "stage",
    "error_code",
    "retry_classification",
    "worker_id",
    "bundle_id",
    "version",
    "rubric_id",
    "criteria_count",
    "document_id",
    "word_count",
    "latency_ms",
    "processed",
    "dispatched",
    "pending",
    "queue_length",
    "requeued_count",
    "iterations",
    "elapsed_ms",
    "budget_exhausted",
    "swept_count",
    "queued_count",
    "requested_count",
    "adopted_from_queue",
    "adopted_from_scan",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key in STRUCTURED_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload)


def configure_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
