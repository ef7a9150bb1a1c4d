from __future__ import annotations

import asyncio

import pytest

from bulk_grader.clients.grading import LLMGradingClient
from bulk_grader.domain.use_cases.regrade import regrade_submissions
from bulk_grader.domain.use_cases.status import reconcile_batch_status
from bulk_grader.workers.processor import SubmissionProcessor
from tests.unit.factories import build_harness


@pytest.mark.integration
def test_competing_workers_process_each_submission_once() -> None:
    async def _run() -> None:
        harness = build_harness()
        harness.transcription.delay_seconds = 0.01
        workers = [
            SubmissionProcessor(
                worker_id=f"worker-{idx}",
                batches=harness.batches,
                contexts=harness.contexts,
                storage=harness.storage,
                transcription=harness.transcription,
                grading=LLMGradingClient(llm=harness.llm),
            )
            for idx in range(4)
        ]
        batch = await harness.new_batch()
        submissions = [await harness.upload(batch, filename=f"student_{idx}.mp4") for idx in range(10)]
        # Duplicate queue entries must not cause a second grading run.
        for item in submissions[:3]:
            await harness.batches.queue.enqueue(submission_id=item.id, batch_id=batch.id)

        async def _drain(worker: SubmissionProcessor) -> int:
            processed = 0
            while await harness.batches.queue.length() > 0:
                processed += await worker.process_next()
            return processed

        totals = await asyncio.gather(*(_drain(worker) for worker in workers))

        assert sum(totals) == 10
        assert harness.transcription.calls == 10
        status = await reconcile_batch_status(batches=harness.batches, batch_id=batch.id)
        assert status.grading.status.value == "completed"
        assert status.grading.graded_count == 10

    asyncio.run(_run())


@pytest.mark.integration
def test_regrade_while_processing_converges_to_single_result() -> None:
    async def _run() -> None:
        harness = build_harness()
        harness.transcription.delay_seconds = 0.05
        batch = await harness.new_batch()
        submission = await harness.upload(batch)

        inflight = asyncio.create_task(harness.processor.process_next())
        await asyncio.sleep(0.01)
        await regrade_submissions(batches=harness.batches, contexts=harness.contexts, submission_ids=[submission.id])
        await inflight

        current = await harness.batches.get_submission(submission.id)
        assert current is not None
        assert current.status == "queued"
        assert current.rubric_evaluation is None

        drained = await harness.controller.run_until_drained(batch_id=batch.id)
        assert drained.processed == 1
        final = await harness.batches.get_submission(submission.id)
        assert final is not None
        assert final.status == "ready"
        assert final.rubric_evaluation is not None

    asyncio.run(_run())
