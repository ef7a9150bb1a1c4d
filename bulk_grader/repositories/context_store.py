from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging

from bulk_grader.domain.contracts import RecordStore
from bulk_grader.domain.dto import WriteSet
from bulk_grader.domain.errors import DomainInvariantError, DomainNotFoundError, DomainValidationError
from bulk_grader.domain.grading_context import build_grading_context
from bulk_grader.domain.ids import (
    new_assignment_id,
    new_bundle_id,
    new_bundle_version_id,
    new_course_id,
    new_document_id,
    new_rubric_id,
)
from bulk_grader.domain.models import GradingContext
from bulk_grader.lib.records import from_document, to_document
from bulk_grader.lib.records.types import (
    AssignmentRecord,
    BundleRecord,
    BundleSnapshot,
    BundleVersionRecord,
    CourseRecord,
    DocumentRecord,
    GradingScale,
    RubricCriterion,
    RubricRecord,
)
from bulk_grader.repositories.batch_store import now_ms
from bulk_grader.repositories.keys import (
    ALL_COURSES_KEY,
    ASSIGNMENT_BUNDLE_PREFIX,
    ASSIGNMENT_DOCUMENTS_PREFIX,
    ASSIGNMENT_PREFIX,
    BUNDLE_PREFIX,
    BUNDLE_VERSION_PREFIX,
    BUNDLE_VERSIONS_PREFIX,
    COURSE_ASSIGNMENTS_PREFIX,
    COURSE_DOCUMENTS_PREFIX,
    COURSE_PREFIX,
    COURSE_RUBRICS_PREFIX,
    DOCUMENT_PREFIX,
    RUBRIC_PREFIX,
)

logger = logging.getLogger("runtime")


@dataclass
class ContextStore:
    """Course context records and the append-only bundle version store."""

    store: RecordStore
    clock: Callable[[], int] = field(default=now_ms)

    async def create_course(
        self,
        *,
        name: str,
        course_code: str = "",
        term: str = "",
        description: str | None = None,
        summary: str | None = None,
        key_themes: list[str] | None = None,
    ) -> CourseRecord:
        created_at = self.clock()
        course = CourseRecord(
            id=new_course_id(),
            name=name,
            course_code=course_code,
            term=term,
            description=description,
            summary=summary,
            key_themes=key_themes or [],
            created_at=created_at,
            updated_at=created_at,
        )
        await self.store.write_many(
            WriteSet(
                values={f"{COURSE_PREFIX}{course.id}": to_document(course)},
                set_adds={ALL_COURSES_KEY: (course.id,)},
            )
        )
        return course

    async def get_course(self, course_id: str) -> CourseRecord | None:
        return await self._load(CourseRecord, f"{COURSE_PREFIX}{course_id}")

    async def list_courses(self) -> list[CourseRecord]:
        courses = await self._load_many(CourseRecord, COURSE_PREFIX, await self.store.smembers(ALL_COURSES_KEY))
        return sorted(courses, key=lambda item: item.created_at, reverse=True)

    async def create_assignment(
        self,
        *,
        course_id: str,
        name: str,
        instructions: str = "",
        rubric_id: str | None = None,
        due_date: str | None = None,
        subject_area: str | None = None,
        academic_level: str | None = None,
    ) -> AssignmentRecord:
        if await self.get_course(course_id) is None:
            raise DomainNotFoundError(f"course not found: {course_id}")
        created_at = self.clock()
        assignment = AssignmentRecord(
            id=new_assignment_id(),
            course_id=course_id,
            name=name,
            instructions=instructions,
            rubric_id=rubric_id,
            due_date=due_date,
            subject_area=subject_area,
            academic_level=academic_level,
            created_at=created_at,
            updated_at=created_at,
        )
        await self.store.write_many(
            WriteSet(
                values={f"{ASSIGNMENT_PREFIX}{assignment.id}": to_document(assignment)},
                set_adds={f"{COURSE_ASSIGNMENTS_PREFIX}{course_id}": (assignment.id,)},
            )
        )
        return assignment

    async def get_assignment(self, assignment_id: str) -> AssignmentRecord | None:
        return await self._load(AssignmentRecord, f"{ASSIGNMENT_PREFIX}{assignment_id}")

    async def set_assignment_rubric(self, *, assignment_id: str, rubric_id: str) -> AssignmentRecord:
        updated: AssignmentRecord | None = None

        def _apply(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal updated
            if document is None:
                return None
            current = from_document(AssignmentRecord, document)
            updated = current.model_copy(update={"rubric_id": rubric_id, "updated_at": self.clock()})
            return to_document(updated)

        await self.store.modify(f"{ASSIGNMENT_PREFIX}{assignment_id}", _apply)
        if updated is None:
            raise DomainNotFoundError(f"assignment not found: {assignment_id}")
        return updated

    async def list_course_assignments(self, course_id: str) -> list[AssignmentRecord]:
        member_ids = await self.store.smembers(f"{COURSE_ASSIGNMENTS_PREFIX}{course_id}")
        assignments = await self._load_many(AssignmentRecord, ASSIGNMENT_PREFIX, member_ids)
        return sorted(assignments, key=lambda item: item.created_at)

    async def create_rubric(
        self,
        *,
        course_id: str,
        name: str,
        criteria: list[RubricCriterion],
        assignment_id: str | None = None,
        grading_scale: GradingScale | None = None,
        raw_text: str | None = None,
    ) -> RubricRecord:
        if not criteria:
            raise DomainValidationError("rubric must contain at least one criterion")
        created_at = self.clock()
        rubric = RubricRecord(
            id=new_rubric_id(),
            course_id=course_id,
            assignment_id=assignment_id,
            name=name,
            criteria=criteria,
            grading_scale=grading_scale,
            raw_text=raw_text,
            created_at=created_at,
            updated_at=created_at,
        )
        await self.store.write_many(
            WriteSet(
                values={f"{RUBRIC_PREFIX}{rubric.id}": to_document(rubric)},
                set_adds={f"{COURSE_RUBRICS_PREFIX}{course_id}": (rubric.id,)},
            )
        )
        if assignment_id is not None:
            await self.set_assignment_rubric(assignment_id=assignment_id, rubric_id=rubric.id)
        return rubric

    async def get_rubric(self, rubric_id: str) -> RubricRecord | None:
        return await self._load(RubricRecord, f"{RUBRIC_PREFIX}{rubric_id}")

    async def update_rubric(
        self,
        *,
        rubric_id: str,
        name: str | None = None,
        criteria: list[RubricCriterion] | None = None,
        grading_scale: GradingScale | None = None,
    ) -> RubricRecord:
        """Edit the live rubric. Existing bundle versions keep their own snapshot."""
        updated: RubricRecord | None = None

        def _apply(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal updated
            if document is None:
                return None
            current = from_document(RubricRecord, document)
            changes: dict[str, object] = {"version": current.version + 1, "updated_at": self.clock()}
            if name is not None:
                changes["name"] = name
            if criteria is not None:
                changes["criteria"] = criteria
            if grading_scale is not None:
                changes["grading_scale"] = grading_scale
            updated = current.model_copy(update=changes)
            return to_document(updated)

        await self.store.modify(f"{RUBRIC_PREFIX}{rubric_id}", _apply)
        if updated is None:
            raise DomainNotFoundError(f"rubric not found: {rubric_id}")
        return updated

    async def create_document(
        self,
        *,
        course_id: str,
        name: str,
        raw_text: str,
        word_count: int,
        doc_type: str = "other",
        assignment_id: str | None = None,
        file_key: str | None = None,
    ) -> DocumentRecord:
        document = DocumentRecord(
            id=new_document_id(),
            course_id=course_id,
            assignment_id=assignment_id,
            name=name,
            type=doc_type,
            file_key=file_key,
            raw_text=raw_text,
            word_count=word_count,
            created_at=self.clock(),
        )
        set_adds: dict[str, tuple[str, ...]] = {f"{COURSE_DOCUMENTS_PREFIX}{course_id}": (document.id,)}
        if assignment_id is not None:
            # Assignment-scoped documents are not course-wide context.
            set_adds = {f"{ASSIGNMENT_DOCUMENTS_PREFIX}{assignment_id}": (document.id,)}
        await self.store.write_many(
            WriteSet(
                values={f"{DOCUMENT_PREFIX}{document.id}": to_document(document)},
                set_adds=set_adds,
            )
        )
        return document

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        return await self._load(DocumentRecord, f"{DOCUMENT_PREFIX}{document_id}")

    async def list_course_documents(self, course_id: str) -> list[DocumentRecord]:
        member_ids = await self.store.smembers(f"{COURSE_DOCUMENTS_PREFIX}{course_id}")
        documents = await self._load_many(DocumentRecord, DOCUMENT_PREFIX, member_ids)
        return sorted(documents, key=lambda item: (item.created_at, item.id))

    async def list_assignment_documents(self, assignment_id: str) -> list[DocumentRecord]:
        member_ids = await self.store.smembers(f"{ASSIGNMENT_DOCUMENTS_PREFIX}{assignment_id}")
        documents = await self._load_many(DocumentRecord, DOCUMENT_PREFIX, member_ids)
        return sorted(documents, key=lambda item: (item.created_at, item.id))

    async def get_bundle(self, bundle_id: str) -> BundleRecord | None:
        return await self._load(BundleRecord, f"{BUNDLE_PREFIX}{bundle_id}")

    async def get_or_create_assignment_bundle(self, assignment_id: str) -> BundleRecord:
        pointer_key = f"{ASSIGNMENT_BUNDLE_PREFIX}{assignment_id}"
        pointer = await self.store.get(pointer_key)
        if pointer is not None:
            existing = await self.get_bundle(str(pointer["bundle_id"]))
            if existing is not None:
                return existing

        assignment = await self.get_assignment(assignment_id)
        if assignment is None:
            raise DomainNotFoundError(f"assignment not found: {assignment_id}")
        if assignment.rubric_id is None:
            raise DomainValidationError("assignment has no rubric; attach a rubric before creating a bundle")

        course_documents = await self.list_course_documents(assignment.course_id)
        assignment_documents = await self.list_assignment_documents(assignment_id)
        created_at = self.clock()
        candidate = BundleRecord(
            id=new_bundle_id(),
            course_id=assignment.course_id,
            assignment_id=assignment_id,
            name=f"{assignment.name} Context",
            rubric_id=assignment.rubric_id,
            document_ids=[item.id for item in [*course_documents, *assignment_documents]],
            created_at=created_at,
            updated_at=created_at,
        )
        await self.store.set(f"{BUNDLE_PREFIX}{candidate.id}", to_document(candidate))

        def _claim_pointer(document: dict[str, object] | None) -> dict[str, object] | None:
            if document is not None:
                return None
            return {"bundle_id": candidate.id}

        claimed = await self.store.modify(pointer_key, _claim_pointer)
        if claimed is not None:
            return candidate

        # Another caller created the bundle first; drop ours and use theirs.
        await self.store.delete(f"{BUNDLE_PREFIX}{candidate.id}")
        winner = await self.store.get(pointer_key)
        if winner is None:
            raise DomainInvariantError("assignment bundle pointer vanished during creation")
        bundle = await self.get_bundle(str(winner["bundle_id"]))
        if bundle is None:
            raise DomainInvariantError("assignment bundle pointer references a missing bundle")
        return bundle

    async def update_bundle(
        self,
        *,
        bundle_id: str,
        rubric_id: str | None = None,
        document_ids: list[str] | None = None,
        evaluation_guidance: str | None = None,
    ) -> BundleRecord:
        updated: BundleRecord | None = None

        def _apply(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal updated
            if document is None:
                return None
            current = from_document(BundleRecord, document)
            changes: dict[str, object] = {"updated_at": self.clock()}
            if rubric_id is not None:
                changes["rubric_id"] = rubric_id
            if document_ids is not None:
                changes["document_ids"] = list(document_ids)
            if evaluation_guidance is not None:
                changes["evaluation_guidance"] = evaluation_guidance
            updated = current.model_copy(update=changes)
            return to_document(updated)

        await self.store.modify(f"{BUNDLE_PREFIX}{bundle_id}", _apply)
        if updated is None:
            raise DomainNotFoundError(f"bundle not found: {bundle_id}")
        return updated

    async def create_bundle_version(self, bundle_id: str, *, created_by: str | None = None) -> BundleVersionRecord:
        """Append an immutable snapshot of the bundle's current rubric, assignment and documents."""
        bundle = await self.get_bundle(bundle_id)
        if bundle is None:
            raise DomainNotFoundError(f"bundle not found: {bundle_id}")
        rubric = await self.get_rubric(bundle.rubric_id)
        if rubric is None:
            raise DomainNotFoundError(f"rubric not found: {bundle.rubric_id}")
        assignment = await self.get_assignment(bundle.assignment_id)
        if assignment is None:
            raise DomainNotFoundError(f"assignment not found: {bundle.assignment_id}")
        documents = [
            item for item in [await self.get_document(doc_id) for doc_id in bundle.document_ids] if item is not None
        ]

        version_id = new_bundle_version_id()
        reserved = 0

        def _reserve(document: dict[str, object] | None) -> dict[str, object] | None:
            nonlocal reserved
            if document is None:
                return None
            current = from_document(BundleRecord, document)
            reserved = current.latest_version + 1
            return to_document(
                current.model_copy(
                    update={"latest_version": reserved, "latest_version_id": version_id, "updated_at": self.clock()}
                )
            )

        # Version numbers come from the bundle's counter, so concurrent callers
        # get distinct consecutive numbers.
        await self.store.modify(f"{BUNDLE_PREFIX}{bundle_id}", _reserve)
        if reserved == 0:
            raise DomainNotFoundError(f"bundle not found: {bundle_id}")

        version = BundleVersionRecord(
            id=version_id,
            bundle_id=bundle_id,
            version=reserved,
            snapshot=BundleSnapshot(
                rubric=rubric,
                assignment=assignment,
                documents=documents,
                evaluation_guidance=bundle.evaluation_guidance,
            ),
            created_at=self.clock(),
            created_by=created_by,
        )
        await self.store.write_many(
            WriteSet(
                values={f"{BUNDLE_VERSION_PREFIX}{version.id}": to_document(version)},
                set_adds={f"{BUNDLE_VERSIONS_PREFIX}{bundle_id}": (version.id,)},
            )
        )
        logger.info(
            "bundle version created",
            extra={"bundle_id": bundle_id, "bundle_version_id": version.id},
        )
        return version

    async def get_bundle_version(self, version_id: str) -> BundleVersionRecord | None:
        return await self._load(BundleVersionRecord, f"{BUNDLE_VERSION_PREFIX}{version_id}")

    async def list_bundle_versions(self, bundle_id: str) -> list[BundleVersionRecord]:
        member_ids = await self.store.smembers(f"{BUNDLE_VERSIONS_PREFIX}{bundle_id}")
        versions = await self._load_many(BundleVersionRecord, BUNDLE_VERSION_PREFIX, member_ids)
        return sorted(versions, key=lambda item: item.version, reverse=True)

    async def get_latest_bundle_version(self, bundle_id: str) -> BundleVersionRecord | None:
        versions = await self.list_bundle_versions(bundle_id)
        return versions[0] if versions else None

    async def get_grading_context(self, bundle_version_id: str) -> GradingContext | None:
        version = await self.get_bundle_version(bundle_version_id)
        if version is None:
            return None
        course = await self.get_course(version.snapshot.assignment.course_id)
        return build_grading_context(version=version, course=course)

    async def _load(self, model: type, key: str):
        document = await self.store.get(key)
        if document is None:
            return None
        return from_document(model, document)

    async def _load_many(self, model: type, prefix: str, ids: set[str]) -> list:
        loaded = []
        for item_id in sorted(ids):
            record = await self._load(model, f"{prefix}{item_id}")
            if record is not None:
                loaded.append(record)
        return loaded
