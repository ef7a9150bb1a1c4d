from __future__ import annotations

import asyncio

import pytest

from bulk_grader.domain.errors import DomainNotFoundError
from bulk_grader.domain.models import GradingStatus, SubmissionStatus
from bulk_grader.domain.reconcile import STALE_UPLOAD_WINDOW_MS, compute_grading_status
from bulk_grader.domain.use_cases.batches import update_expected_uploads
from bulk_grader.domain.use_cases.status import reconcile_batch_status
from bulk_grader.lib.records.types import RubricEvaluation, SubmissionRecord
from bulk_grader.repositories.keys import batch_submissions_key
from tests.unit.factories import build_harness


def _submission(idx: int, status: str, score: float | None = None, graded: bool = True) -> SubmissionRecord:
    evaluation = RubricEvaluation(overall_score=score) if graded else None
    return SubmissionRecord(
        id=f"sub_{idx}",
        batch_id="bat_1",
        original_filename=f"student_{idx}.mp4",
        file_key=f"batches/bat_1/sub_{idx}.mp4",
        student_name=f"Student {idx}",
        status=status,
        rubric_evaluation=evaluation if status == SubmissionStatus.READY else None,
        created_at=idx,
    )


@pytest.mark.unit
def test_grading_status_for_empty_and_waiting_batches() -> None:
    empty = compute_grading_status([])
    assert empty.status == GradingStatus.NOT_STARTED
    assert empty.total_count == 0

    waiting = compute_grading_status([_submission(1, "queued"), _submission(2, "queued")])
    assert waiting.status == GradingStatus.NOT_STARTED
    assert waiting.message == "2 submission(s) waiting to be graded"


@pytest.mark.unit
def test_grading_status_completed_only_when_every_submission_has_a_score() -> None:
    done = compute_grading_status([_submission(1, "ready", 80.0), _submission(2, "ready", 64.5)])
    assert done.status == GradingStatus.COMPLETED
    assert done.graded_count == 2

    partial = compute_grading_status([_submission(1, "ready", 80.0), _submission(2, "failed")])
    assert partial.status == GradingStatus.IN_PROGRESS
    assert partial.message == "1 of 2 submission(s) graded, 1 failed"


@pytest.mark.unit
def test_ready_without_score_is_an_error_once_everything_is_terminal() -> None:
    missing = compute_grading_status([_submission(1, "ready", 75.0), _submission(2, "ready", graded=False)])
    assert missing.status == GradingStatus.ERROR
    assert missing.graded_count == 1

    still_running = compute_grading_status(
        [_submission(1, "ready", graded=False), _submission(2, "transcribing")]
    )
    assert still_running.status == GradingStatus.IN_PROGRESS


@pytest.mark.unit
def test_reconcile_adopts_orphan_found_in_queue() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        kept = await harness.upload(batch)
        orphan = await harness.upload(batch, filename="lost_member.mp4")
        await harness.store.srem(batch_submissions_key(batch.id), orphan.id)

        status = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)

        assert status.recovery.adopted_from_queue == 1
        assert status.recovery.adopted_from_scan == 0
        assert status.recovery.scan_pages == 0
        assert {item.id for item in status.submissions} == {kept.id, orphan.id}
        assert await harness.batches.queue.members(batch_id=batch.id) == {kept.id, orphan.id}

    asyncio.run(_run())


@pytest.mark.unit
def test_reconcile_scans_keyspace_when_queue_is_not_enough() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        other = await harness.new_batch(name="Other batch")
        for idx in range(3):
            await harness.upload(other, filename=f"other_{idx}.mp4")
        orphans = [await harness.upload(batch, filename=f"orphan_{idx}.mp4") for idx in range(2)]
        await harness.controller.run_until_drained()
        await harness.store.srem(batch_submissions_key(batch.id), *(item.id for item in orphans))

        status = await reconcile_batch_status(
            batches=harness.batches,
            batch_id=batch.id,
            scan_page_size=2,
            scan_max_pages=10,
        )

        assert status.recovery.adopted_from_queue == 0
        assert status.recovery.adopted_from_scan == 2
        assert status.recovery.scan_pages == 3
        assert status.grading.status == GradingStatus.COMPLETED
        assert status.grading.graded_count == 2

    asyncio.run(_run())


@pytest.mark.unit
def test_reconcile_repairs_stale_counters_once() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        await harness.upload(batch)
        await harness.controller.run_until_drained()
        await harness.batches.update_batch(
            batch.id,
            lambda current: current.model_copy(update={"processed_count": 7, "failed_count": 2, "status": "active"}),
        )

        first = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        second = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)

        assert first.counters_repaired is True
        assert second.counters_repaired is False
        refreshed = await harness.batches.get_batch(batch.id)
        assert refreshed is not None
        assert (refreshed.processed_count, refreshed.failed_count, refreshed.status) == (1, 0, "completed")

    asyncio.run(_run())


@pytest.mark.unit
def test_reconcile_reports_score_missing() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        submission = await harness.upload(batch)
        await harness.controller.run_until_drained()
        await harness.batches.modify_submission(
            submission.id,
            lambda current: current.model_copy(update={"rubric_evaluation": None}),
        )

        status = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)

        assert status.grading.status == GradingStatus.ERROR
        assert status.stats.score_missing_count == 1
        assert status.submissions[0].overall_score is None
        assert status.submissions[0].has_grade_data is False

    asyncio.run(_run())


@pytest.mark.unit
def test_expected_upload_count_is_cleared_when_uploads_arrive() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        await update_expected_uploads(batches=harness.batches, batch_id=batch.id, expected_count=2)

        await harness.upload(batch, filename="first.mp4")
        pending = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        assert pending.expected_upload_count == 2

        await harness.upload(batch, filename="second.mp4")
        arrived = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        assert arrived.expected_upload_count is None

    asyncio.run(_run())


@pytest.mark.unit
def test_expected_upload_count_expires_when_nothing_arrives() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        await update_expected_uploads(batches=harness.batches, batch_id=batch.id, expected_count=4)

        fresh = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        assert fresh.expected_upload_count == 4

        harness.clock.advance(STALE_UPLOAD_WINDOW_MS + 1)
        stale = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        assert stale.expected_upload_count is None

    asyncio.run(_run())


@pytest.mark.unit
def test_reconcile_unknown_batch_raises() -> None:
    harness = build_harness()
    with pytest.raises(DomainNotFoundError):
        asyncio.run(reconcile_batch_status(batches=harness.batches, batch_id="bat_missing"))


@pytest.mark.unit
def test_reconcile_recovers_when_cached_total_is_zero() -> None:
    async def _run() -> None:
        harness = build_harness()
        batch = await harness.new_batch()
        lost = [await harness.upload(batch, filename=f"lost_{idx}.mp4") for idx in range(3)]
        await harness.controller.run_until_drained()
        await harness.store.srem(batch_submissions_key(batch.id), *(item.id for item in lost))
        await harness.batches.update_batch(
            batch.id,
            lambda current: current.model_copy(update={"total_submissions": 0, "processed_count": 0}),
        )

        status = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)

        assert status.recovery.adopted_from_queue == 0
        assert status.recovery.adopted_from_scan == 3
        assert status.grading.total_count == 3
        assert await harness.batches.queue.members(batch_id=batch.id) == {item.id for item in lost}
        refreshed = await harness.batches.get_batch(batch.id)
        assert refreshed is not None
        assert refreshed.total_submissions == 3

    asyncio.run(_run())
