"""Text-generation client abstractions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence, Union

import httpx
from openai import OpenAI

from stratlens.config.settings import settings


@dataclass(frozen=True)
class Message:
    role: str
    content: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class GenerationRequest:
    messages: tuple[Message, ...]
    json_mode: bool = True
    temperature: float = 0.2
    max_tokens: int = 1600


@dataclass(frozen=True)
class GenerationResponse:
    text: str
    provider: str
    model: str
    usage: Optional[TokenUsage] = None


class LLMClient(Protocol):
    """Minimal interface for text generation. Output may be non-JSON even in json mode."""

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        raise NotImplementedError


Responder = Callable[[GenerationRequest], str]


@dataclass
class StubLLMClient:
    """
    Deterministic stub for tests.

    Replays `responses` in order (the last one repeats), or asks `responder`
    for each request. Every request is kept in `requests`.
    """

    responses: Sequence[str] = ("{}",)
    responder: Optional[Responder] = None
    requests: list[GenerationRequest] = field(default_factory=list)

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if self.responder is not None:
            text = self.responder(request)
        else:
            text = self.responses[min(len(self.requests), len(self.responses)) - 1]
        prompt_chars = sum(len(m.content) for m in request.messages)
        usage = TokenUsage(
            input_tokens=prompt_chars // 4,
            output_tokens=len(text) // 4,
            total_tokens=prompt_chars // 4 + len(text) // 4,
        )
        return GenerationResponse(text=text, provider="stub", model="stub", usage=usage)


class OpenAIChatClient:
    """
    Chat-completions client. Transient failures (429, 5xx, timeouts) are retried
    by the openai SDK itself with exponential backoff, up to `max_retries`.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        model_name: str,
        timeout_s: float = 60.0,
        max_retries: int = 2,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.model_name = model_name
        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_s,
            max_retries=max_retries,
            http_client=http_client,
        )

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        resp = self._client.chat.completions.create(**kwargs)
        text = (resp.choices[0].message.content or "") if resp.choices else ""
        usage = None
        if resp.usage is not None:
            usage = TokenUsage(
                input_tokens=resp.usage.prompt_tokens or 0,
                output_tokens=resp.usage.completion_tokens or 0,
                total_tokens=resp.usage.total_tokens or 0,
            )
        return GenerationResponse(text=text, provider=self.provider, model=resp.model or self.model_name, usage=usage)


def get_llm_client() -> Union[StubLLMClient, OpenAIChatClient]:
    """Factory for LLM clients based on settings."""
    provider = settings.llm_provider.lower()
    if provider == "stub":
        return StubLLMClient()
    if provider == "openai":
        if not settings.openai_api_key:
            raise RuntimeError("STRATLENS_OPENAI_API_KEY is required for the openai provider.")
        return OpenAIChatClient(
            api_key=settings.openai_api_key,
            model_name=settings.llm_model_name or "gpt-4o-mini",
            timeout_s=settings.llm_timeout_s,
            max_retries=settings.llm_max_retries,
        )
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
