from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging

from pydantic import ValidationError

from bulk_grader.domain.contracts import GradingClient, StorageClient, TranscriptionClient
from bulk_grader.domain.dto import GradingRequest, QuestionRequest, TranscriptionResult
from bulk_grader.domain.error_taxonomy import ErrorCode, classify_error, resolve_stage_error
from bulk_grader.domain.errors import DomainInvariantError
from bulk_grader.domain.grading_context import build_legacy_context
from bulk_grader.domain.ids import new_claim_token
from bulk_grader.domain.lifecycle import ensure_transition
from bulk_grader.domain.models import GradingContext, ProcessOutcome, SubmissionClaim, SubmissionStatus
from bulk_grader.domain.use_cases.status import sync_batch_counters
from bulk_grader.lib.records.types import SubmissionRecord
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.repositories.context_store import ContextStore

logger = logging.getLogger("runtime")

MIN_TRANSCRIPT_CHARS = 10
TRANSCRIPT_TOO_SHORT_MESSAGE = "Transcription returned empty or too short"


class StageFailure(Exception):
    def __init__(self, *, stage: str, code: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.code: ErrorCode = resolve_stage_error(stage=stage, code=code)


@dataclass
class SubmissionProcessor:
    """Runs one queued submission through transcribing -> analyzing -> ready | failed.

    Only a submission still in ``queued`` can be claimed, so a duplicate queue
    entry or a second dispatch for the same id has no side effects. Every
    write after the claim is guarded by the claim token: once a regrade or the
    stale sweep takes the submission away, this worker's late results are
    dropped instead of overwriting the newer state.
    """

    worker_id: str
    batches: BatchStore
    contexts: ContextStore
    storage: StorageClient
    transcription: TranscriptionClient
    grading: GradingClient
    claim_lease_seconds: int = 600
    heartbeat_interval_ms: int = 15000
    max_questions: int = 8

    async def process_next(self) -> int:
        """Pop entries until one submission has been processed; 0 means the queue is empty."""
        while True:
            submission_id = await self.batches.queue.dequeue_one()
            if submission_id is None:
                return 0
            outcome = await self.process_submission(submission_id)
            if outcome is not None:
                return 1

    async def process_submission(self, submission_id: str) -> ProcessOutcome | None:
        claim = await self.claim(submission_id)
        if claim is None:
            logger.info(
                "queue entry skipped",
                extra={"submission_id": submission_id, "worker_id": self.worker_id},
            )
            return None

        lease_lost = False
        stop_heartbeat = asyncio.Event()

        async def _heartbeat_loop() -> None:
            nonlocal lease_lost
            interval_seconds = max(self.heartbeat_interval_ms, 1) / 1000
            while not stop_heartbeat.is_set():
                try:
                    await asyncio.wait_for(stop_heartbeat.wait(), timeout=interval_seconds)
                    break
                except TimeoutError:
                    pass

                try:
                    renewed = await self.heartbeat(claim)
                except Exception:
                    # A missed beat; the lease stays valid until it expires.
                    logger.warning(
                        "heartbeat failed",
                        extra={
                            "submission_id": claim.submission_id,
                            "batch_id": claim.batch_id,
                            "worker_id": self.worker_id,
                        },
                        exc_info=True,
                    )
                    continue
                if not renewed:
                    lease_lost = True
                    stop_heartbeat.set()
                    break

        heartbeat_task = asyncio.create_task(_heartbeat_loop())
        try:
            outcome = await self._run_claimed(claim)
        finally:
            stop_heartbeat.set()
            await heartbeat_task

        if lease_lost and not outcome.stale:
            # Final write already went through the token guard; only report.
            logger.warning(
                "lease lost during processing",
                extra={"submission_id": claim.submission_id, "batch_id": claim.batch_id},
            )

        try:
            await sync_batch_counters(batches=self.batches, batch_id=claim.batch_id)
        except Exception:
            logger.exception(
                "batch counter sync failed",
                extra={"submission_id": claim.submission_id, "batch_id": claim.batch_id},
            )
        return outcome

    async def claim(self, submission_id: str) -> SubmissionClaim | None:
        now = self.batches.clock()
        token = new_claim_token()
        lease_expires_at = now + self.claim_lease_seconds * 1000

        def _claim(submission: SubmissionRecord) -> SubmissionRecord | None:
            if submission.status != SubmissionStatus.QUEUED:
                return None
            ensure_transition(from_state=submission.status, to_state=SubmissionStatus.TRANSCRIBING)
            return submission.model_copy(
                update={
                    "status": SubmissionStatus.TRANSCRIBING.value,
                    "started_at": now,
                    "completed_at": None,
                    "error_code": None,
                    "error_message": None,
                    "claimed_by": self.worker_id,
                    "claim_token": token,
                    "lease_expires_at": lease_expires_at,
                }
            )

        claimed = await self.batches.modify_submission(submission_id, _claim)
        if claimed is None:
            return None
        return SubmissionClaim(
            submission_id=claimed.id,
            batch_id=claimed.batch_id,
            claim_token=token,
            worker_id=self.worker_id,
            lease_expires_at=lease_expires_at,
        )

    async def heartbeat(self, claim: SubmissionClaim) -> bool:
        lease_expires_at = self.batches.clock() + self.claim_lease_seconds * 1000
        extended = await self._update_owned(
            claim,
            lambda submission: submission.model_copy(update={"lease_expires_at": lease_expires_at}),
        )
        return extended is not None

    async def _run_claimed(self, claim: SubmissionClaim) -> ProcessOutcome:
        try:
            submission = await self.batches.get_submission(claim.submission_id)
            if submission is None:
                raise DomainInvariantError("claimed submission disappeared")
            transcript = await self._transcribe(submission)
            analyzing = await self._update_owned(
                claim,
                lambda current: _advance(
                    current,
                    SubmissionStatus.ANALYZING,
                    transcript=transcript.text,
                    transcript_segments=transcript.segments,
                    duration_ms=transcript.duration_ms,
                ),
            )
            if analyzing is None:
                return self._stale(claim)
            ready_fields = await self._grade(analyzing, transcript)
        except StageFailure as failure:
            return await self._fail(claim, code=failure.code, message=str(failure), stage=failure.stage)
        except Exception as exc:
            logger.exception(
                "submission processing crashed",
                extra={"submission_id": claim.submission_id, "batch_id": claim.batch_id},
            )
            return await self._fail(claim, code="internal_error", message=str(exc), stage="analyzing")

        completed_at = self.batches.clock()
        finished = await self._update_owned(
            claim,
            lambda current: _release(
                _advance(current, SubmissionStatus.READY, completed_at=completed_at, **ready_fields)
            ),
        )
        if finished is None:
            return self._stale(claim)
        logger.info(
            "submission graded",
            extra={
                "submission_id": claim.submission_id,
                "batch_id": claim.batch_id,
                "bundle_version_id": finished.bundle_version_id,
            },
        )
        return ProcessOutcome(submission_id=claim.submission_id, status=SubmissionStatus.READY)

    async def _transcribe(self, submission: SubmissionRecord) -> TranscriptionResult:
        try:
            audio = self.storage.get_bytes(key=submission.file_key)
        except Exception as exc:
            raise StageFailure(stage="transcribing", code="file_fetch_failed", message=f"File fetch failed: {exc}") from exc
        try:
            transcript = await self.transcription.transcribe(audio=audio, mime_type=submission.mime_type)
        except Exception as exc:
            raise StageFailure(stage="transcribing", code="transcription_failed", message=str(exc)) from exc
        if len(transcript.text.strip()) < MIN_TRANSCRIPT_CHARS:
            raise StageFailure(
                stage="transcribing",
                code="transcript_too_short",
                message=TRANSCRIPT_TOO_SHORT_MESSAGE,
            )
        return transcript

    async def _grade(self, submission: SubmissionRecord, transcript: TranscriptionResult) -> dict[str, object]:
        context, bundle_version_id = await self._resolve_context(submission)
        request = GradingRequest(
            submission_id=submission.id,
            student_name=submission.student_name,
            transcript=transcript.text,
            segments=transcript.segments,
            context=context,
        )
        try:
            analysis = await self.grading.analyze(request)
            evaluation = await self.grading.evaluate(request, analysis=analysis)
            questions = await self.grading.generate_questions(
                QuestionRequest(
                    transcript=transcript.text,
                    analysis=analysis,
                    context=context,
                    max_questions=self.max_questions,
                )
            )
            findings = await self.grading.verify(request, analysis=analysis)
        except (ValueError, ValidationError) as exc:
            raise StageFailure(stage="analyzing", code="schema_validation_failed", message=str(exc)) from exc
        except Exception as exc:
            raise StageFailure(stage="analyzing", code="analysis_failed", message=str(exc)) from exc

        return {
            "bundle_version_id": bundle_version_id,
            "analysis": analysis,
            "rubric_evaluation": evaluation,
            "questions": questions[: self.max_questions],
            "verification_findings": findings,
        }

    async def _resolve_context(self, submission: SubmissionRecord) -> tuple[GradingContext, str | None]:
        batch = await self.batches.get_batch(submission.batch_id)
        bundle_version_id = submission.bundle_version_id or (batch.bundle_version_id if batch else None)
        if bundle_version_id is not None:
            context = await self.contexts.get_grading_context(bundle_version_id)
            if context is None:
                raise StageFailure(
                    stage="analyzing",
                    code="context_missing",
                    message=f"Bundle version not found: {bundle_version_id}",
                )
            return context, bundle_version_id
        return (
            build_legacy_context(
                rubric_criteria=batch.rubric_criteria if batch else None,
                assignment_name=batch.assignment_name if batch else None,
            ),
            None,
        )

    async def _fail(self, claim: SubmissionClaim, *, code: ErrorCode, message: str, stage: str) -> ProcessOutcome:
        completed_at = self.batches.clock()
        failed = await self._update_owned(
            claim,
            lambda current: _release(
                _advance(
                    current,
                    SubmissionStatus.FAILED,
                    error_code=code,
                    error_message=message,
                    completed_at=completed_at,
                )
            ),
        )
        if failed is None:
            return self._stale(claim)
        logger.warning(
            "submission failed",
            extra={
                "submission_id": claim.submission_id,
                "batch_id": claim.batch_id,
                "stage": stage,
                "error_code": code,
                "retry_classification": classify_error(code),
            },
        )
        return ProcessOutcome(
            submission_id=claim.submission_id,
            status=SubmissionStatus.FAILED,
            error_code=code,
            detail=message,
        )

    def _stale(self, claim: SubmissionClaim) -> ProcessOutcome:
        logger.warning(
            "claim ownership is stale",
            extra={"submission_id": claim.submission_id, "batch_id": claim.batch_id},
        )
        return ProcessOutcome(submission_id=claim.submission_id, status=None, stale=True)

    async def _update_owned(
        self,
        claim: SubmissionClaim,
        mutate: Callable[[SubmissionRecord], SubmissionRecord],
    ) -> SubmissionRecord | None:
        def _guarded(submission: SubmissionRecord) -> SubmissionRecord | None:
            if submission.claim_token != claim.claim_token:
                return None
            return mutate(submission)

        return await self.batches.modify_submission(claim.submission_id, _guarded)


def _advance(submission: SubmissionRecord, target: SubmissionStatus, **fields: object) -> SubmissionRecord:
    ensure_transition(from_state=submission.status, to_state=target)
    return submission.model_copy(update={"status": target.value, **fields})


def _release(submission: SubmissionRecord) -> SubmissionRecord:
    return submission.model_copy(update={"claimed_by": None, "claim_token": None, "lease_expires_at": None})
