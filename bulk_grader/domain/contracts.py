from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from bulk_grader.domain.dto import (
    ExtractionResult,
    GradingRequest,
    LLMClientRequest,
    LLMClientResult,
    QuestionRequest,
    TranscriptionResult,
    WriteSet,
)
from bulk_grader.lib.records.types import Analysis, Question, RubricEvaluation, VerificationFinding

# Receives the current stored value (None when absent) and returns the value
# to store, or None to leave the key untouched.
Mutator = Callable[[dict[str, object] | None], dict[str, object] | None]

STORAGE_PREFIXES = (
    "batches/",
    "documents/",
    "exports/",
)


@runtime_checkable
class RecordStore(Protocol):
    """Durable key/value + set + list storage.

    lpop must hand a given list element to exactly one concurrent caller and
    modify must serialize concurrent read-modify-write cycles on one key.
    Everything else may be last-writer-wins.
    """

    async def get(self, key: str) -> dict[str, object] | None: ...

    async def set(self, key: str, value: dict[str, object]) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def modify(self, key: str, mutate: Mutator) -> dict[str, object] | None: ...

    async def write_many(self, writes: WriteSet) -> None: ...

    async def sadd(self, key: str, *members: str) -> None: ...

    async def srem(self, key: str, *members: str) -> None: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def rpush(self, key: str, *values: str) -> int: ...

    async def lpop(self, key: str) -> str | None: ...

    async def llen(self, key: str) -> int: ...

    async def lrange(self, key: str) -> list[str]: ...

    # Paged keyspace scan. Returns the next cursor (None when exhausted) and
    # the keys starting with prefix in this page.
    async def scan(self, *, prefix: str, cursor: str | None, count: int) -> tuple[str | None, list[str]]: ...


@runtime_checkable
class StorageClient(Protocol):
    """Object storage contract using single-bucket, prefix-scoped keys."""

    def put_bytes(self, *, key: str, payload: bytes) -> str: ...

    def get_bytes(self, *, key: str) -> bytes: ...

    def presign_upload(self, *, key: str, content_type: str, expires_in: int = 3600) -> str: ...

    def presign_download(self, *, key: str, expires_in: int = 3600) -> str: ...


@runtime_checkable
class TranscriptionClient(Protocol):
    async def transcribe(self, *, audio: bytes, mime_type: str) -> TranscriptionResult: ...


@runtime_checkable
class GradingClient(Protocol):
    """Analysis, rubric scoring, question generation and claim verification."""

    async def analyze(self, request: GradingRequest) -> Analysis: ...

    async def evaluate(self, request: GradingRequest, *, analysis: Analysis) -> RubricEvaluation: ...

    async def generate_questions(self, request: QuestionRequest) -> list[Question]: ...

    async def verify(self, request: GradingRequest, *, analysis: Analysis) -> list[VerificationFinding]: ...


@runtime_checkable
class LLMClient(Protocol):
    async def complete(self, request: LLMClientRequest) -> LLMClientResult: ...


@runtime_checkable
class TextExtractor(Protocol):
    def extract(self, *, file_bytes: bytes, filename: str) -> ExtractionResult: ...


@runtime_checkable
class Dispatcher(Protocol):
    """One dispatch call pops and fully processes at most one submission."""

    async def dispatch_one(self) -> int: ...
