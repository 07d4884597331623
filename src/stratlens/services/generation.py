"""
Generate-validate-repair loop.

One generation call, validation against a pydantic model, and on failure exactly
one repair call carrying the raw text, the schema shape and the errors. A second
failure is final.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from stratlens.errors import AnalysisError, ErrorCode
from stratlens.services.llm_client import GenerationRequest, GenerationResponse, LLMClient, Message, TokenUsage
from stratlens.services.prompts import build_repair_messages

T = TypeVar("T", bound=BaseModel)

FIRST_TEMPERATURE = 0.2
REPAIR_TEMPERATURE = 0.1
MAX_REPORTED_ERRORS = 20

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class UsageTracker:
    """Token usage summed over every generation call of a run."""

    calls: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: Optional[str] = None
    model: Optional[str] = None

    def record(self, response: GenerationResponse) -> None:
        self.calls += 1
        if response.usage is not None:
            self.usage = self.usage + response.usage
        self.provider = response.provider
        self.model = response.model

    def to_dict(self) -> dict:
        return {
            "calls": self.calls,
            "input_tokens": self.usage.input_tokens,
            "output_tokens": self.usage.output_tokens,
            "total_tokens": self.usage.total_tokens,
            "provider": self.provider,
            "model": self.model,
        }


@dataclass(frozen=True)
class GenerationTarget(Generic[T]):
    schema_name: str
    model: Type[T]
    shape: Any
    failure_code: ErrorCode
    max_tokens: int
    failure_message: str = "The generated output could not be validated. Try running the analysis again."


def parse_json_text(text: str) -> Any:
    """Parse generator text as JSON, tolerating code fences and surrounding prose."""
    candidate = (text or "").strip()
    fenced = _FENCE_RE.match(candidate)
    if fenced:
        candidate = fenced.group(1)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(candidate[start : end + 1])


def describe_errors(exc: ValueError) -> list[str]:
    if isinstance(exc, ValidationError):
        out = []
        for err in exc.errors()[:MAX_REPORTED_ERRORS]:
            loc = ".".join(str(p) for p in err.get("loc", ())) or "(root)"
            out.append(f"{loc}: {err.get('msg')}")
        return out
    return [f"invalid JSON: {exc}"]


class GenerationLoop:
    def __init__(
        self,
        client: LLMClient,
        usage: UsageTracker,
        before_call: Optional[Callable[[], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.usage = usage
        self.before_call = before_call
        self.log = logger or logging.getLogger(__name__)

    def _call(self, messages: Sequence[Message], temperature: float, max_tokens: int) -> GenerationResponse:
        if self.before_call is not None:
            self.before_call()
        response = self.client.generate(
            GenerationRequest(
                messages=tuple(messages),
                json_mode=True,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        )
        self.usage.record(response)
        return response

    @staticmethod
    def _validate(text: str, target: GenerationTarget[T]) -> T:
        return target.model.model_validate(parse_json_text(text))

    def run(self, messages: Sequence[Message], target: GenerationTarget[T]) -> T:
        first = self._call(messages, FIRST_TEMPERATURE, target.max_tokens)
        try:
            return self._validate(first.text, target)
        except ValueError as exc:
            errors = describe_errors(exc)

        self.log.warning("%s failed validation (%d errors); attempting repair", target.schema_name, len(errors))
        repair = self._call(
            build_repair_messages(first.text, target.schema_name, target.shape, errors),
            REPAIR_TEMPERATURE,
            target.max_tokens,
        )
        try:
            return self._validate(repair.text, target)
        except ValueError as exc:
            repair_errors = describe_errors(exc)

        self.log.error("%s still invalid after repair: %s", target.schema_name, "; ".join(repair_errors[:3]))
        raise AnalysisError(
            target.failure_code,
            target.failure_message,
            detail={"schema": target.schema_name, "errors": errors, "repair_errors": repair_errors},
        )
