from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from bulk_grader.domain.models import GradingContext
from bulk_grader.lib.records.types import Analysis, TranscriptSegment


@dataclass(frozen=True)
class WriteSet:
    """Writes applied by RecordStore.write_many as one atomic unit."""

    values: Mapping[str, dict[str, object]] = field(default_factory=dict)
    set_adds: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    list_pushes: Mapping[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    segments: list[TranscriptSegment]
    duration_ms: int


@dataclass(frozen=True)
class GradingRequest:
    submission_id: str
    student_name: str
    transcript: str
    segments: list[TranscriptSegment]
    context: GradingContext


@dataclass(frozen=True)
class QuestionRequest:
    transcript: str
    analysis: Analysis
    context: GradingContext
    max_questions: int = 8


@dataclass(frozen=True)
class LLMClientRequest:
    system_prompt: str
    user_prompt: str
    model: str
    temperature: float
    seed: int | None
    response_language: str
    task: str = "evaluate"


@dataclass(frozen=True)
class LLMClientResult:
    raw_text: str
    raw_json: dict[str, object] | None
    tokens_input: int
    tokens_output: int
    latency_ms: int


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    word_count: int


@dataclass(frozen=True)
class PresignedUpload:
    submission_id: str
    file_key: str
    upload_url: str
    content_type: str
    expires_in: int
