from __future__ import annotations

BATCH_PREFIX = "batch:"
SUBMISSION_PREFIX = "submission:"
BATCH_SUBMISSIONS_PREFIX = "batch_submissions:"
QUEUE_KEY = "submission_queue"
ALL_BATCHES_KEY = "all_batches"

COURSE_PREFIX = "course:"
ASSIGNMENT_PREFIX = "assignment:"
RUBRIC_PREFIX = "rubric:"
DOCUMENT_PREFIX = "document:"
BUNDLE_PREFIX = "bundle:"
BUNDLE_VERSION_PREFIX = "bundle_version:"
BUNDLE_VERSIONS_PREFIX = "bundle_versions:"
ASSIGNMENT_BUNDLE_PREFIX = "assignment_bundle:"
COURSE_ASSIGNMENTS_PREFIX = "course_assignments:"
COURSE_DOCUMENTS_PREFIX = "course_documents:"
COURSE_RUBRICS_PREFIX = "course_rubrics:"
ASSIGNMENT_DOCUMENTS_PREFIX = "assignment_documents:"
ALL_COURSES_KEY = "all_courses"


def batch_key(batch_id: str) -> str:
    return f"{BATCH_PREFIX}{batch_id}"


def submission_key(submission_id: str) -> str:
    return f"{SUBMISSION_PREFIX}{submission_id}"


def batch_submissions_key(batch_id: str) -> str:
    return f"{BATCH_SUBMISSIONS_PREFIX}{batch_id}"


def submission_id_from_key(key: str) -> str:
    return key.removeprefix(SUBMISSION_PREFIX)
