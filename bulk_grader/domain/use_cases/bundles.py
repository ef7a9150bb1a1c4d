from __future__ import annotations

from dataclasses import dataclass
import logging

from bulk_grader.domain.errors import DomainNotFoundError, DomainValidationError
from bulk_grader.domain.models import GradingContext
from bulk_grader.lib.records.types import BundleRecord, BundleVersionRecord
from bulk_grader.repositories.context_store import ContextStore

COMPONENT_ID = "domain.bundle"

logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class BundleView:
    bundle: BundleRecord
    latest_version: BundleVersionRecord | None = None
    versions: list[BundleVersionRecord] | None = None


@dataclass(frozen=True)
class VersionSummary:
    id: str
    version: int
    created_at: int
    rubric_name: str
    criteria_count: int


async def snapshot_bundle(
    *,
    contexts: ContextStore,
    bundle_id: str | None = None,
    assignment_id: str | None = None,
    created_by: str | None = None,
) -> BundleVersionRecord:
    """Freeze the bundle's current rubric, assignment and documents as a new version.

    With only ``assignment_id`` the assignment's bundle is created first if it
    does not exist yet.
    """
    target = bundle_id
    if not target and assignment_id:
        target = (await contexts.get_or_create_assignment_bundle(assignment_id)).id
    if not target:
        raise DomainValidationError("bundle_id or assignment_id is required")
    version = await contexts.create_bundle_version(target, created_by=created_by)
    logger.info(
        "bundle snapshot created",
        extra={"component": COMPONENT_ID, "bundle_id": target, "version": version.version},
    )
    return version


async def get_bundle_view(
    *,
    contexts: ContextStore,
    bundle_id: str | None = None,
    assignment_id: str | None = None,
    include_versions: bool = False,
) -> BundleView:
    if bundle_id:
        bundle = await contexts.get_bundle(bundle_id)
        if bundle is None:
            raise DomainNotFoundError(f"bundle not found: {bundle_id}")
    elif assignment_id:
        bundle = await contexts.get_or_create_assignment_bundle(assignment_id)
    else:
        raise DomainValidationError("assignment_id, bundle_id or version_id is required")

    if include_versions:
        return BundleView(bundle=bundle, versions=await contexts.list_bundle_versions(bundle.id))
    return BundleView(bundle=bundle, latest_version=await contexts.get_latest_bundle_version(bundle.id))


async def get_version_context(*, contexts: ContextStore, version_id: str) -> GradingContext:
    context = await contexts.get_grading_context(version_id)
    if context is None:
        raise DomainNotFoundError(f"bundle version not found: {version_id}")
    return context


async def list_version_summaries(*, contexts: ContextStore, bundle_id: str) -> list[VersionSummary]:
    if not bundle_id:
        raise DomainValidationError("bundle_id is required")
    if await contexts.get_bundle(bundle_id) is None:
        raise DomainNotFoundError(f"bundle not found: {bundle_id}")
    return [
        VersionSummary(
            id=item.id,
            version=item.version,
            created_at=item.created_at,
            rubric_name=item.snapshot.rubric.name,
            criteria_count=len(item.snapshot.rubric.criteria),
        )
        for item in await contexts.list_bundle_versions(bundle_id)
    ]
