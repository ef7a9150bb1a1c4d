from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import json
from pathlib import Path
import re

import yaml

GRADING_TASKS: tuple[str, ...] = ("analyze", "evaluate", "questions", "verify")
DEFAULT_CHAIN_SPEC_PATH = Path(__file__).resolve().parents[1] / "eval" / "chains" / "grading.v1.yaml"


@dataclass(frozen=True)
class RuntimeConfig:
    temperature: float
    seed: int | None
    response_language: str
    max_questions: int


@dataclass(frozen=True)
class TaskPrompt:
    user_template: str
    response: dict[str, object]


@dataclass(frozen=True)
class GradingChainSpec:
    spec_version: str
    chain_version: str
    model: str
    runtime: RuntimeConfig
    system_prompt: str
    tasks: dict[str, TaskPrompt]

    def task(self, name: str) -> TaskPrompt:
        try:
            return self.tasks[name]
        except KeyError as exc:
            raise ValueError(f"chain spec has no task '{name}'") from exc


ISO_LANGUAGE_RE = re.compile(r"^[a-z]{2}(?:-[A-Z]{2})?$")
PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_.-]+)\s*\}\}")


def load_chain_spec(*, file_path: str | Path = DEFAULT_CHAIN_SPEC_PATH) -> GradingChainSpec:
    data = yaml.safe_load(Path(file_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("chain spec must be a YAML object")
    return parse_chain_spec(data)


def parse_chain_spec(data: dict[str, object]) -> GradingChainSpec:
    runtime_raw = _obj(data, "runtime")
    runtime = RuntimeConfig(
        temperature=_number(runtime_raw, "temperature"),
        seed=_optional_int(runtime_raw, "seed"),
        response_language=_text(runtime_raw, "response_language"),
        max_questions=int(runtime_raw.get("max_questions", 8)),
    )
    if not ISO_LANGUAGE_RE.match(runtime.response_language):
        raise ValueError("runtime.response_language must be ISO code, e.g. 'en' or 'en-US'")
    if runtime.max_questions < 1:
        raise ValueError("runtime.max_questions must be >= 1")

    tasks_raw = _obj(data, "tasks")
    tasks: dict[str, TaskPrompt] = {}
    for name in GRADING_TASKS:
        task_raw = _obj(tasks_raw, name)
        response = dict(_obj(task_raw, "response"))
        if response.get("type") != "object":
            raise ValueError(f"tasks.{name}.response.type must be 'object'")
        tasks[name] = TaskPrompt(user_template=_text(task_raw, "user_template"), response=response)

    return GradingChainSpec(
        spec_version=_text(data, "spec_version"),
        chain_version=_text(data, "chain_version"),
        model=_text(data, "model"),
        runtime=runtime,
        system_prompt=_text(data, "system_prompt"),
        tasks=tasks,
    )


def render_prompt(*, template: str, inputs: dict[str, object]) -> str:
    """Fill ``{{dot.path}}`` placeholders from inputs; every placeholder must resolve."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value: object = inputs
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                raise ValueError(f"missing placeholder value: {key}")
            value = value[part]
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=False, sort_keys=True)
        return str(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def validate_response(*, payload: object, schema: dict[str, object], path: str = "$") -> None:
    """Check an LLM JSON payload against the small schema dialect used in chain specs."""
    schema_type = schema.get("type")
    checker = _TYPE_CHECKERS.get(str(schema_type))
    if checker is None:
        raise ValueError(f"{path}: unsupported schema type '{schema_type}'")
    if not checker(payload):
        raise ValueError(f"{path}: expected {schema_type}")

    if schema_type == "object" and isinstance(payload, dict):
        for field in schema.get("required", []):
            if field not in payload:
                raise ValueError(f"{path}.{field}: required field is missing")
        properties = schema.get("properties", {})
        if not isinstance(properties, dict):
            raise ValueError(f"{path}: properties must be an object")
        for key, field_schema in properties.items():
            if key in payload:
                validate_response(payload=payload[key], schema=field_schema, path=f"{path}.{key}")
    elif schema_type == "array" and isinstance(payload, list):
        items = schema.get("items")
        if not isinstance(items, dict):
            raise ValueError(f"{path}: array schema must define items")
        for idx, item in enumerate(payload):
            validate_response(payload=item, schema=items, path=f"{path}[{idx}]")
    elif schema_type == "number" and isinstance(payload, (int, float)):
        minimum = schema.get("minimum")
        if isinstance(minimum, (int, float)) and payload < minimum:
            raise ValueError(f"{path}: number is below minimum")


_TYPE_CHECKERS: dict[str, Callable[[object], bool]] = {
    "object": lambda value: isinstance(value, dict),
    "array": lambda value: isinstance(value, list),
    "string": lambda value: isinstance(value, str),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "boolean": lambda value: isinstance(value, bool),
}


def _text(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} is required and must be non-empty string")
    return value


def _number(data: dict[str, object], key: str) -> float:
    value = data.get(key)
    if not isinstance(value, (int, float)):
        raise ValueError(f"{key} is required and must be number")
    return float(value)


def _optional_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, int):
        raise ValueError(f"{key} must be integer or null")
    return value


def _obj(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"{key} is required and must be object")
    return value
