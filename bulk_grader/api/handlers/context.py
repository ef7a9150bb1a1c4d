from __future__ import annotations

from dataclasses import asdict

from bulk_grader.api.handlers.deps import ApiDeps
from bulk_grader.api.schemas import (
    AssignmentResponse,
    BundleResponse,
    CourseResponse,
    CreateAssignmentRequest,
    CreateCourseRequest,
    CreateRubricRequest,
    DocumentResponse,
    GradingContextResponse,
    RubricResponse,
    SnapshotRequest,
    SnapshotResponse,
    UpdateRubricRequest,
)
from bulk_grader.domain.use_cases import bundles as bundle_use_cases
from bulk_grader.domain.use_cases import context as context_use_cases

COMPONENT_ID = "api.context"
DOCUMENT_PREVIEW_CHARS = 280


async def create_course_handler(*, request: CreateCourseRequest, api_deps: ApiDeps) -> CourseResponse:
    course = await context_use_cases.create_course(
        contexts=api_deps.contexts,
        name=request.name,
        course_code=request.course_code,
        term=request.term,
        description=request.description,
    )
    return CourseResponse(course=course)


async def create_assignment_handler(*, request: CreateAssignmentRequest, api_deps: ApiDeps) -> AssignmentResponse:
    assignment = await context_use_cases.create_assignment(
        contexts=api_deps.contexts,
        course_id=request.course_id,
        name=request.name,
        instructions=request.instructions,
        rubric_id=request.rubric_id,
        due_date=request.due_date,
    )
    return AssignmentResponse(assignment=assignment)


async def create_rubric_handler(*, request: CreateRubricRequest, api_deps: ApiDeps) -> RubricResponse:
    rubric = await context_use_cases.create_rubric(
        contexts=api_deps.contexts,
        course_id=request.course_id,
        name=request.name,
        criteria=request.criteria,
        assignment_id=request.assignment_id,
        grading_scale=request.grading_scale,
        raw_text=request.raw_text,
    )
    return RubricResponse(rubric=rubric)


async def update_rubric_handler(*, request: UpdateRubricRequest, api_deps: ApiDeps) -> RubricResponse:
    rubric = await context_use_cases.update_rubric(
        contexts=api_deps.contexts,
        rubric_id=request.rubric_id,
        name=request.name,
        criteria=request.criteria,
        grading_scale=request.grading_scale,
    )
    return RubricResponse(rubric=rubric)


async def upload_document_handler(
    *,
    filename: str,
    payload: bytes,
    course_id: str,
    doc_type: str,
    assignment_id: str | None,
    api_deps: ApiDeps,
) -> DocumentResponse:
    document = await context_use_cases.upload_document(
        contexts=api_deps.contexts,
        storage=api_deps.storage,
        extractor=api_deps.extractor,
        course_id=course_id,
        filename=filename,
        payload=payload,
        doc_type=doc_type,
        assignment_id=assignment_id,
    )
    return DocumentResponse(
        id=document.id,
        course_id=document.course_id,
        assignment_id=document.assignment_id,
        name=document.name,
        type=document.type,
        file_key=document.file_key,
        word_count=document.word_count,
        preview=document.raw_text[:DOCUMENT_PREVIEW_CHARS],
        created_at=document.created_at,
    )


async def get_bundle_handler(
    *,
    bundle_id: str | None,
    assignment_id: str | None,
    include_versions: bool,
    api_deps: ApiDeps,
) -> BundleResponse:
    view = await bundle_use_cases.get_bundle_view(
        contexts=api_deps.contexts,
        bundle_id=bundle_id,
        assignment_id=assignment_id,
        include_versions=include_versions,
    )
    return BundleResponse(bundle=view.bundle, latest_version=view.latest_version, versions=view.versions)


async def get_grading_context_handler(*, version_id: str, api_deps: ApiDeps) -> GradingContextResponse:
    context = await bundle_use_cases.get_version_context(contexts=api_deps.contexts, version_id=version_id)
    return GradingContextResponse.model_validate(asdict(context))


async def snapshot_bundle_handler(*, request: SnapshotRequest, api_deps: ApiDeps) -> SnapshotResponse:
    version = await bundle_use_cases.snapshot_bundle(
        contexts=api_deps.contexts,
        bundle_id=request.bundle_id,
        assignment_id=request.assignment_id,
        created_by=request.created_by,
    )
    return SnapshotResponse(
        id=version.id,
        bundle_id=version.bundle_id,
        version=version.version,
        created_at=version.created_at,
    )
