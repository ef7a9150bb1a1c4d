from __future__ import annotations

import asyncio

import pytest

from bulk_grader.domain.models import SubmissionStatus
from bulk_grader.domain.use_cases.bundles import snapshot_bundle
from bulk_grader.domain.use_cases.regrade import regrade_submissions
from bulk_grader.workers.processor import TRANSCRIPT_TOO_SHORT_MESSAGE
from tests.unit.factories import build_harness, seed_bundle_context


@pytest.mark.unit
def test_process_next_grades_queued_submission() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch(rubric_criteria="Clarity, evidence, delivery")
        submission = await harness.upload(batch)

        assert await harness.processor.process_next() == 1
        assert await harness.processor.process_next() == 0

        stored = await harness.batches.get_submission(submission.id)
        assert stored is not None
        assert stored.status == SubmissionStatus.READY
        assert stored.overall_score() == 70.0
        assert stored.transcript is not None
        assert stored.analysis is not None and len(stored.analysis.key_claims) == 2
        assert stored.questions is not None and len(stored.questions) == 2
        assert stored.claim_token is None
        assert stored.completed_at == harness.clock.now

        refreshed = await harness.batches.get_batch(batch.id)
        assert refreshed is not None
        assert refreshed.processed_count == 1
        assert refreshed.status == "completed"

    asyncio.run(_run())


@pytest.mark.unit
def test_duplicate_queue_entry_is_processed_once() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        await harness.batches.queue.enqueue(submission_id=submission.id, batch_id=batch.id)
        assert await harness.batches.queue.length() == 2

        assert await harness.processor.process_next() == 1
        assert await harness.processor.process_next() == 0
        assert harness.transcription.calls == 1
        assert await harness.batches.queue.length() == 0

    asyncio.run(_run())


@pytest.mark.unit
def test_concurrent_claims_for_same_submission_have_one_winner() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)

        outcomes = await asyncio.gather(
            harness.processor.process_submission(submission.id),
            harness.processor.process_submission(submission.id),
            harness.processor.process_submission(submission.id),
        )

        winners = [item for item in outcomes if item is not None]
        assert len(winners) == 1
        assert winners[0].status == SubmissionStatus.READY
        assert harness.transcription.calls == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_short_transcript_fails_submission() -> None:
    async def _run() -> None:
        harness = build_harness()
        harness.transcription.text = "um"
        batch = await harness.new_batch()
        submission = await harness.upload(batch)

        assert await harness.processor.process_next() == 1

        stored = await harness.batches.get_submission(submission.id)
        assert stored is not None
        assert stored.status == SubmissionStatus.FAILED
        assert stored.error_code == "transcript_too_short"
        assert stored.error_message == TRANSCRIPT_TOO_SHORT_MESSAGE
        assert stored.rubric_evaluation is None

        refreshed = await harness.batches.get_batch(batch.id)
        assert refreshed is not None
        assert refreshed.failed_count == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_missing_media_file_fails_with_fetch_error() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        harness.storage.objects.clear()

        outcome = await harness.processor.process_submission(submission.id)

        assert outcome is not None
        assert outcome.status == SubmissionStatus.FAILED
        assert outcome.error_code == "file_fetch_failed"
        assert harness.transcription.calls == 0

    asyncio.run(_run())


@pytest.mark.unit
def test_malformed_llm_output_fails_schema_validation() -> None:
    async def _run() -> None:
        harness = build_harness()
        harness.llm.overrides["evaluate"] = {"strengths": []}
        batch = await harness.new_batch()
        submission = await harness.upload(batch)

        await harness.processor.process_next()

        stored = await harness.batches.get_submission(submission.id)
        assert stored is not None
        assert stored.status == SubmissionStatus.FAILED
        assert stored.error_code == "schema_validation_failed"
        assert stored.transcript is not None

    asyncio.run(_run())


@pytest.mark.unit
def test_unknown_bundle_version_fails_with_context_missing() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        await harness.batches.modify_submission(
            submission.id,
            lambda current: current.model_copy(update={"bundle_version_id": "bv_missing"}),
        )

        await harness.processor.process_next()

        stored = await harness.batches.get_submission(submission.id)
        assert stored is not None
        assert stored.status == SubmissionStatus.FAILED
        assert stored.error_code == "context_missing"

    asyncio.run(_run())


@pytest.mark.unit
def test_bundle_version_rubric_weights_drive_score() -> None:
    async def _run() -> None:
        harness = build_harness()
        assignment_id, _ = await seed_bundle_context(harness)
        version = await snapshot_bundle(contexts=harness.contexts, assignment_id=assignment_id)
        batch = await harness.new_batch(bundle_version_id=version.id)
        submission = await harness.upload(batch)
        assert submission.bundle_version_id == version.id

        await harness.processor.process_next()

        stored = await harness.batches.get_submission(submission.id)
        assert stored is not None
        assert stored.status == SubmissionStatus.READY
        assert stored.bundle_version_id == version.id
        # content weighs 2.0: (0.8 * 2 + 0.7 + 0.6) / 4
        assert stored.overall_score() == 72.5

    asyncio.run(_run())


@pytest.mark.unit
def test_regrade_during_processing_discards_late_results() -> None:
    async def _run() -> None:
        harness = build_harness()
        harness.transcription.delay_seconds = 0.05
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        assert await harness.batches.queue.dequeue_one() == submission.id

        task = asyncio.create_task(harness.processor.process_submission(submission.id))
        await asyncio.sleep(0.01)
        in_flight = await harness.batches.get_submission(submission.id)
        assert in_flight is not None
        assert in_flight.status == SubmissionStatus.TRANSCRIBING

        result = await regrade_submissions(
            batches=harness.batches,
            contexts=harness.contexts,
            submission_ids=[submission.id],
        )
        assert result.queued_count == 1

        outcome = await task
        assert outcome is not None
        assert outcome.stale is True

        reset = await harness.batches.get_submission(submission.id)
        assert reset is not None
        assert reset.status == SubmissionStatus.QUEUED
        assert reset.analysis is None
        assert await harness.batches.queue.length() == 1

        harness.transcription.delay_seconds = 0.0
        assert await harness.processor.process_next() == 1
        graded = await harness.batches.get_submission(submission.id)
        assert graded is not None
        assert graded.status == SubmissionStatus.READY

    asyncio.run(_run())


@pytest.mark.unit
def test_heartbeat_extends_lease_while_processing() -> None:
    async def _run() -> None:
        harness = build_harness(claim_lease_seconds=30)
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        claim = await harness.processor.claim(submission.id)
        assert claim is not None

        harness.clock.advance(10_000)
        assert await harness.processor.heartbeat(claim) is True
        extended = await harness.batches.get_submission(submission.id)
        assert extended is not None
        assert extended.lease_expires_at == harness.clock.now + 30_000

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_is_refused_for_non_queued_submission() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)

        first = await harness.processor.claim(submission.id)
        second = await harness.processor.claim(submission.id)

        assert first is not None
        assert second is None
        assert await harness.processor.claim("sub_does_not_exist") is None

    asyncio.run(_run())


@pytest.mark.unit
def test_heartbeat_errors_do_not_abort_processing() -> None:
    async def _run() -> None:
        harness = build_harness(heartbeat_interval_ms=1)
        harness.transcription.delay_seconds = 0.02
        beats: list[str] = []

        async def _failing_heartbeat(claim) -> bool:
            beats.append(claim.submission_id)
            raise ConnectionError("store unavailable")

        harness.processor.heartbeat = _failing_heartbeat
        batch = await harness.new_batch()
        uploaded = [await harness.upload(batch, filename=f"student_{idx}.mp4") for idx in range(3)]

        processed = [await harness.processor.process_next() for _ in range(3)]

        assert processed == [1, 1, 1]
        assert beats
        assert await harness.batches.queue.length() == 0
        for item in uploaded:
            stored = await harness.batches.get_submission(item.id)
            assert stored is not None
            assert stored.status == SubmissionStatus.READY

    asyncio.run(_run())
