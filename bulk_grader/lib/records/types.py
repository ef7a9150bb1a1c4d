from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# v1 record models persisted in the record store.
# Field names are the stored JSON keys; readers must tolerate absent optional
# fields because records written by older workers may not carry them.


class TranscriptSegment(BaseModel):
    id: str
    text: str
    timestamp: float = 0.0
    speaker: str | None = None


class KeyClaim(BaseModel):
    id: str
    claim: str
    evidence: list[str] = Field(default_factory=list)


class LogicalGap(BaseModel):
    id: str
    description: str
    severity: str = "minor"


class MissingEvidence(BaseModel):
    id: str
    description: str


class Analysis(BaseModel):
    key_claims: list[KeyClaim] = Field(default_factory=list)
    logical_gaps: list[LogicalGap] = Field(default_factory=list)
    missing_evidence: list[MissingEvidence] = Field(default_factory=list)
    overall_strength: float = 0.0


class CriterionScore(BaseModel):
    criterion_id: str | None = None
    criterion: str
    score: float
    max_score: float | None = None
    feedback: str = ""


class RubricEvaluation(BaseModel):
    # Optional on purpose: a ready submission without a score is a detectable
    # inconsistency surfaced by the status reconciler, not a parse failure.
    overall_score: float | None = None
    grading_scale_used: Literal["points", "percentage", "letter", "bands", "none"] | None = None
    max_possible_score: float | None = None
    letter_grade: str | None = None
    band_label: str | None = None
    criteria_breakdown: list[CriterionScore] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    overall_feedback: str = ""


class Question(BaseModel):
    id: str
    question: str
    category: str = "general"


class VerificationFinding(BaseModel):
    id: str
    statement: str
    status: str
    explanation: str = ""


class ContextCitation(BaseModel):
    document_name: str
    snippet: str
    relevance_score: float | None = None


class SubmissionRecord(BaseModel):
    id: str
    batch_id: str
    course_id: str | None = None
    assignment_id: str | None = None
    original_filename: str
    file_key: str
    file_size: int = 0
    mime_type: str = "application/octet-stream"
    student_name: str
    student_id: str | None = None
    bundle_version_id: str | None = None
    status: str = "queued"
    error_code: str | None = None
    error_message: str | None = None
    transcript: str | None = None
    transcript_segments: list[TranscriptSegment] | None = None
    duration_ms: int | None = None
    analysis: Analysis | None = None
    rubric_evaluation: RubricEvaluation | None = None
    questions: list[Question] | None = None
    verification_findings: list[VerificationFinding] | None = None
    context_citations: list[ContextCitation] | None = None
    # Ownership of the current processing attempt. Cleared by regrade.
    claimed_by: str | None = None
    claim_token: str | None = None
    lease_expires_at: int | None = None
    created_at: int
    started_at: int | None = None
    completed_at: int | None = None

    def overall_score(self) -> float | None:
        if self.rubric_evaluation is None:
            return None
        return self.rubric_evaluation.overall_score


class BatchRecord(BaseModel):
    id: str
    name: str
    course_name: str | None = None
    assignment_name: str | None = None
    course_id: str | None = None
    assignment_id: str | None = None
    bundle_version_id: str | None = None
    # Free-text rubric for batches created without a context bundle.
    rubric_criteria: str | None = None
    # Cached counters; the status reconciler recomputes and rewrites them.
    total_submissions: int = 0
    processed_count: int = 0
    failed_count: int = 0
    status: Literal["active", "processing", "completed"] = "active"
    expected_upload_count: int | None = None
    created_at: int
    updated_at: int


class CourseRecord(BaseModel):
    id: str
    name: str
    course_code: str = ""
    term: str = ""
    description: str | None = None
    summary: str | None = None
    key_themes: list[str] = Field(default_factory=list)
    created_at: int
    updated_at: int


class RubricLevel(BaseModel):
    score: float
    label: str
    description: str = ""


class RubricCriterion(BaseModel):
    id: str
    name: str
    description: str = ""
    weight: float = 1.0
    levels: list[RubricLevel] = Field(default_factory=list)
    required_evidence_types: list[str] = Field(default_factory=list)


class GradeRange(BaseModel):
    label: str
    min_score: float
    max_score: float


class GradingScale(BaseModel):
    type: Literal["points", "percentage", "letter", "bands", "none"] = "none"
    max_score: float | None = None
    letter_grades: list[GradeRange] = Field(default_factory=list)
    bands: list[GradeRange] = Field(default_factory=list)


class RubricRecord(BaseModel):
    id: str
    course_id: str
    assignment_id: str | None = None
    name: str
    criteria: list[RubricCriterion] = Field(default_factory=list)
    raw_text: str | None = None
    grading_scale: GradingScale | None = None
    version: int = 1
    created_at: int
    updated_at: int


class AssignmentRecord(BaseModel):
    id: str
    course_id: str
    name: str
    instructions: str = ""
    due_date: str | None = None
    rubric_id: str | None = None
    subject_area: str | None = None
    academic_level: str | None = None
    created_at: int
    updated_at: int


class DocumentRecord(BaseModel):
    id: str
    course_id: str
    assignment_id: str | None = None
    name: str
    type: Literal["lecture_notes", "reading", "slides", "policy", "example", "other"] = "other"
    file_key: str | None = None
    raw_text: str
    word_count: int = 0
    created_at: int


class BundleRecord(BaseModel):
    # Mutable pointer: current grading context for one assignment.
    id: str
    course_id: str
    assignment_id: str
    name: str
    description: str | None = None
    rubric_id: str
    document_ids: list[str] = Field(default_factory=list)
    evaluation_guidance: str | None = None
    latest_version: int = 0
    latest_version_id: str | None = None
    created_at: int
    updated_at: int


class BundleSnapshot(BaseModel):
    rubric: RubricRecord
    assignment: AssignmentRecord
    documents: list[DocumentRecord] = Field(default_factory=list)
    evaluation_guidance: str | None = None


class BundleVersionRecord(BaseModel):
    # Immutable once written; never updated or deleted.
    id: str
    bundle_id: str
    version: int = Field(ge=1)
    snapshot: BundleSnapshot
    created_at: int
    created_by: str | None = None


class ExportRowRecord(BaseModel):
    # Stable tabular row contract for CSV export. Column order is the field order.
    student_name: str = Field(serialization_alias="Student Name")
    file_name: str = Field(serialization_alias="File Name")
    status: str = Field(serialization_alias="Status")
    overall_score: str = Field(serialization_alias="Overall Score")
    strengths: str = Field(serialization_alias="Strengths")
    improvements: str = Field(serialization_alias="Improvements")
    key_claims: str = Field(serialization_alias="Key Claims")
    logical_gaps: str = Field(serialization_alias="Logical Gaps")
    missing_evidence: str = Field(serialization_alias="Missing Evidence")
    questions: str = Field(serialization_alias="Questions")
    completed_at: str = Field(serialization_alias="Completed At")
