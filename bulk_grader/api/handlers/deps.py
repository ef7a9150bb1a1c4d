from __future__ import annotations

from dataclasses import dataclass
import os

from bulk_grader.domain.contracts import StorageClient, TextExtractor
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore
from bulk_grader.workers.fanout import FanoutController
from bulk_grader.workers.processor import SubmissionProcessor


@dataclass(frozen=True)
class ReconcileSettings:
    scan_page_size: int = 100
    scan_max_pages: int = 20


def reconcile_settings_from_env() -> ReconcileSettings:
    return ReconcileSettings(
        scan_page_size=_env_int("GRADER_SCAN_PAGE_SIZE", 100),
        scan_max_pages=_env_int("GRADER_SCAN_MAX_PAGES", 20),
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class ApiDeps:
    batches: BatchStore
    contexts: ContextStore
    storage: StorageClient
    extractor: TextExtractor
    processor: SubmissionProcessor
    controller: FanoutController
    reconcile: ReconcileSettings = ReconcileSettings()
