from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{ulid_module.new().str}"


def new_submission_id() -> str:
    return _new_id("sub")


def new_batch_id() -> str:
    return _new_id("bat")


def new_course_id() -> str:
    return _new_id("crs")


def new_assignment_id() -> str:
    return _new_id("asg")


def new_rubric_id() -> str:
    return _new_id("rub")


def new_document_id() -> str:
    return _new_id("doc")


def new_bundle_id() -> str:
    return _new_id("bdl")


def new_bundle_version_id() -> str:
    return _new_id("bv")


def new_claim_token() -> str:
    return _new_id("clm")
