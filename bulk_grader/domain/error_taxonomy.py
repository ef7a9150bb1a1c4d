from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

# Canonical error vocabulary persisted on failed submissions.
ErrorCode = Literal[
    "validation_error",
    "file_fetch_failed",
    "transcription_failed",
    "transcript_too_short",
    "context_missing",
    "analysis_failed",
    "schema_validation_failed",
    "lease_expired",
    "internal_error",
]

RetryClassification = Literal["recoverable", "terminal"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "file_fetch_failed",
    "transcription_failed",
    "transcript_too_short",
    "context_missing",
    "analysis_failed",
    "schema_validation_failed",
    "lease_expired",
    "internal_error",
)

# Failures a plain regrade is expected to fix. Nothing is retried automatically;
# the classification only tells operators whether a regrade is worth issuing
# before touching the input file or the grading context.
RECOVERABLE_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        "file_fetch_failed",
        "transcription_failed",
        "analysis_failed",
        "lease_expired",
        "internal_error",
    }
)

# Stage-specific allowlist. Codes outside the map are normalized to
# internal_error by resolve_stage_error().
STAGE_ERROR_MAP: Mapping[str, frozenset[ErrorCode]] = {
    "transcribing": frozenset(
        {
            "file_fetch_failed",
            "transcription_failed",
            "transcript_too_short",
            "validation_error",
            "internal_error",
        }
    ),
    "analyzing": frozenset(
        {
            "context_missing",
            "analysis_failed",
            "schema_validation_failed",
            "validation_error",
            "internal_error",
        }
    ),
    "sweep": frozenset(
        {
            "lease_expired",
            "internal_error",
        }
    ),
}


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> RetryClassification:
    if code in RECOVERABLE_ERROR_CODES:
        return "recoverable"
    return "terminal"


def resolve_stage_error(*, stage: str, code: str) -> ErrorCode:
    allowed = STAGE_ERROR_MAP.get(stage, frozenset({"internal_error"}))
    if code in allowed and is_canonical_error_code(code):
        return code
    return "internal_error"
