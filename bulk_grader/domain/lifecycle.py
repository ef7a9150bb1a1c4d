from __future__ import annotations

from bulk_grader.domain.errors import DomainInvariantError
from bulk_grader.domain.models import SubmissionStatus

PROCESSING_STATES: frozenset[SubmissionStatus] = frozenset(
    {
        SubmissionStatus.UPLOADING,
        SubmissionStatus.TRANSCRIBING,
        SubmissionStatus.ANALYZING,
    }
)

TERMINAL_STATES: frozenset[SubmissionStatus] = frozenset(
    {
        SubmissionStatus.READY,
        SubmissionStatus.FAILED,
    }
)

# Forward edges are owned by the worker. The edge back to queued exists on
# every non-queued state and is only taken by regrade, which may also reset
# a submission stuck mid-flight.
ALLOWED_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.QUEUED: frozenset({SubmissionStatus.UPLOADING, SubmissionStatus.TRANSCRIBING}),
    SubmissionStatus.UPLOADING: frozenset(
        {SubmissionStatus.TRANSCRIBING, SubmissionStatus.FAILED, SubmissionStatus.QUEUED}
    ),
    SubmissionStatus.TRANSCRIBING: frozenset(
        {SubmissionStatus.ANALYZING, SubmissionStatus.FAILED, SubmissionStatus.QUEUED}
    ),
    SubmissionStatus.ANALYZING: frozenset(
        {SubmissionStatus.READY, SubmissionStatus.FAILED, SubmissionStatus.QUEUED}
    ),
    SubmissionStatus.READY: frozenset({SubmissionStatus.QUEUED}),
    SubmissionStatus.FAILED: frozenset({SubmissionStatus.QUEUED}),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def is_processing(status: str) -> bool:
    return status in PROCESSING_STATES


def ensure_transition(*, from_state: str, to_state: str) -> None:
    try:
        source = SubmissionStatus(from_state)
        target = SubmissionStatus(to_state)
    except ValueError as exc:
        raise DomainInvariantError(f"unknown submission status: {exc}") from exc
    if target not in ALLOWED_TRANSITIONS[source]:
        raise DomainInvariantError(f"transition is not allowed: {from_state} -> {to_state}")
