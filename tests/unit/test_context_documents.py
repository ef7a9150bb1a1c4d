from __future__ import annotations

import asyncio

import pytest

from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError, UnsupportedFormatError
from bulk_grader.domain.extraction import DocumentTextExtractor, clean_text, extension_from_filename
from bulk_grader.domain.use_cases.bundles import get_version_context, snapshot_bundle
from bulk_grader.domain.use_cases.context import create_rubric, normalize_criteria, upload_document
from tests.unit.factories import build_harness, seed_bundle_context


@pytest.mark.unit
def test_text_extraction_cleans_whitespace() -> None:
    result = DocumentTextExtractor().extract(
        file_bytes=b"Week 1\r\n\r\n\r\n\r\nCarbon   pricing\tbasics\x00",
        filename="notes.md",
    )
    assert result.text == "Week 1\n\nCarbon pricing basics"
    assert result.word_count == 5


@pytest.mark.unit
def test_unsupported_extension_is_rejected() -> None:
    with pytest.raises(UnsupportedFormatError):
        extension_from_filename(filename="slides.pptx")
    assert extension_from_filename(filename="Reading.PDF") == ".pdf"
    assert clean_text(text="  a \n\n\n\n b ") == "a \n\n b"


@pytest.mark.unit
def test_normalize_criteria_fills_defaults() -> None:
    criteria = normalize_criteria([{"description": "Clear thesis"}, {"id": "delivery", "name": "Delivery", "weight": 3}])

    assert [(item.id, item.name, item.weight) for item in criteria] == [
        ("criterion-1", "Criterion 1", 1.0),
        ("delivery", "Delivery", 3.0),
    ]


@pytest.mark.unit
def test_uploaded_document_flows_into_next_bundle_version() -> None:
    async def _run() -> None:
        harness = build_harness()
        assignment_id, _ = await seed_bundle_context(harness)
        assignment = await harness.contexts.get_assignment(assignment_id)
        assert assignment is not None

        document = await upload_document(
            contexts=harness.contexts,
            storage=harness.storage,
            extractor=DocumentTextExtractor(),
            course_id=assignment.course_id,
            filename="lecture-4.txt",
            payload=b"Pigouvian taxes correct negative externalities at their source.",
            doc_type="lecture_notes",
        )

        assert document.file_key is not None
        assert document.file_key.startswith(f"documents/{assignment.course_id}/")
        assert harness.storage.objects[document.file_key].startswith(b"Pigouvian")
        version = await snapshot_bundle(contexts=harness.contexts, assignment_id=assignment_id)
        context = await get_version_context(contexts=harness.contexts, version_id=version.id)
        assert "[LECTURE_NOTES] lecture-4.txt" in context.document_context
        assert "Course: Climate Policy (ENV-210) - Fall" in context.course_summary

    asyncio.run(_run())


@pytest.mark.unit
def test_upload_document_rejects_bad_input() -> None:
    async def _run() -> None:
        harness = build_harness()
        course = await harness.contexts.create_course(name="Rhetoric")
        extractor = DocumentTextExtractor()

        with pytest.raises(DomainValidationError, match="too short"):
            await upload_document(
                contexts=harness.contexts,
                storage=harness.storage,
                extractor=extractor,
                course_id=course.id,
                filename="empty.txt",
                payload=b"   ",
            )
        with pytest.raises(DomainValidationError, match="document type"):
            await upload_document(
                contexts=harness.contexts,
                storage=harness.storage,
                extractor=extractor,
                course_id=course.id,
                filename="a.txt",
                payload=b"long enough text here",
                doc_type="podcast",
            )
        with pytest.raises(DomainNotFoundError):
            await upload_document(
                contexts=harness.contexts,
                storage=harness.storage,
                extractor=extractor,
                course_id="crs_missing",
                filename="a.txt",
                payload=b"long enough text here",
            )
        assert harness.storage.writes == []

    asyncio.run(_run())


@pytest.mark.unit
def test_create_rubric_requires_known_course() -> None:
    harness = build_harness()
    with pytest.raises(DomainNotFoundError):
        asyncio.run(
            create_rubric(
                contexts=harness.contexts,
                course_id="crs_missing",
                name="Rubric",
                criteria=[{"name": "Content"}],
            )
        )
