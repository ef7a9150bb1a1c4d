from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from urllib.parse import quote

from bulk_grader.domain.contracts import STORAGE_PREFIXES
from bulk_grader.domain.dto import LLMClientRequest, LLMClientResult, TranscriptionResult
from bulk_grader.lib.records.types import TranscriptSegment

STUB_STORAGE_BASE_URL = "https://storage.invalid"
DEFAULT_STUB_TRANSCRIPT = (
    "Today I will argue that carbon pricing is the most efficient climate policy. "
    "First, a price signal lets firms find the cheapest abatement. "
    "Second, revenue can be returned to households as a dividend. "
    "Finally, border adjustments address leakage concerns."
)


@dataclass
class StubStorageClient:
    writes: list[str] = field(default_factory=list)
    objects: dict[str, bytes] = field(default_factory=dict)

    def put_bytes(self, *, key: str, payload: bytes) -> str:
        _ensure_prefix(key)
        self.writes.append(key)
        self.objects[key] = payload
        return f"s3://{key}"

    def get_bytes(self, *, key: str) -> bytes:
        payload = self.objects.get(key)
        if payload is None:
            raise KeyError(f"storage key not found: {key}")
        return payload

    def presign_upload(self, *, key: str, content_type: str, expires_in: int = 3600) -> str:
        _ensure_prefix(key)
        return (
            f"{STUB_STORAGE_BASE_URL}/{quote(key)}"
            f"?method=PUT&content-type={quote(content_type, safe='')}&expires={expires_in}"
        )

    def presign_download(self, *, key: str, expires_in: int = 3600) -> str:
        _ensure_prefix(key)
        return f"{STUB_STORAGE_BASE_URL}/{quote(key)}?method=GET&expires={expires_in}"


@dataclass
class StubTranscriptionClient:
    text: str = DEFAULT_STUB_TRANSCRIPT
    calls: int = 0
    delay_seconds: float = 0.0
    error: Exception | None = None

    async def transcribe(self, *, audio: bytes, mime_type: str) -> TranscriptionResult:
        del mime_type
        self.calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        sentences = [item.strip() for item in self.text.split(". ") if item.strip()]
        segments = [
            TranscriptSegment(id=f"seg-{idx}", text=sentence, timestamp=float(idx * 5))
            for idx, sentence in enumerate(sentences)
        ]
        return TranscriptionResult(text=self.text, segments=segments, duration_ms=max(len(audio), 1) * 10)


@dataclass
class StubLLMClient:
    calls: list[LLMClientRequest] = field(default_factory=list)
    overrides: dict[str, dict[str, object]] = field(default_factory=dict)

    async def complete(self, request: LLMClientRequest) -> LLMClientResult:
        self.calls.append(request)
        payload = self.overrides.get(request.task) or _DEFAULT_RESPONSES.get(request.task)
        if payload is None:
            raise ValueError(f"stub llm has no response for task '{request.task}'")
        return LLMClientResult(
            raw_text="stub llm output",
            raw_json=dict(payload),
            tokens_input=128,
            tokens_output=256,
            latency_ms=120,
        )


def _ensure_prefix(key: str) -> None:
    if not any(key.startswith(prefix) for prefix in STORAGE_PREFIXES):
        raise ValueError("storage key must start with an allowed prefix")


_DEFAULT_RESPONSES: dict[str, dict[str, object]] = {
    "analyze": {
        "key_claims": [
            {"claim": "Carbon pricing is the most efficient climate policy", "evidence": ["cheapest abatement"]},
            {"claim": "Revenue can be returned as a dividend", "evidence": []},
        ],
        "logical_gaps": [{"description": "Efficiency is asserted, not compared", "severity": "moderate"}],
        "missing_evidence": [{"description": "No empirical estimate of abatement cost"}],
        "overall_strength": 72,
    },
    "evaluate": {
        "criteria": [
            {"criterion_id": "content", "criterion": "Content Quality", "score": 8, "max_score": 10,
             "feedback": "Clear thesis with structured support"},
            {"criterion_id": "delivery", "criterion": "Delivery", "score": 7, "max_score": 10,
             "feedback": "Steady pace"},
            {"criterion_id": "evidence", "criterion": "Evidence Strength", "score": 6, "max_score": 10,
             "feedback": "Claims need data"},
        ],
        "strengths": ["Clear thesis", "Logical ordering"],
        "improvements": ["Quantify abatement costs"],
        "overall_feedback": "Solid argument that needs more evidence.",
    },
    "questions": {
        "questions": [
            {"question": "How would you set the initial carbon price?", "category": "clarification"},
            {"question": "What evidence shows pricing beats regulation?", "category": "evidence"},
        ],
    },
    "verify": {
        "findings": [
            {"statement": "Border adjustments address leakage", "status": "accurate",
             "explanation": "Consistent with standard policy literature"},
        ],
    },
}
