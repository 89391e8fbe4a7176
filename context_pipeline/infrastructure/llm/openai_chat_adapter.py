from collections.abc import Sequence
from dataclasses import dataclass
from importlib import import_module
from typing import Any, cast

from context_pipeline.application.ports.llm_port import ChatMessage, LLMPort, LLMResponse
from context_pipeline.domain.errors import LLMError


@dataclass
class OpenAIChatAdapter(LLMPort):
    """Async chat against any OpenAI-compatible endpoint (OpenAI, vLLM, ...)."""

    base_url: str | None = None  # None = api.openai.com
    api_key: str = "EMPTY"
    model: str = "gpt-4o-mini"
    timeout_s: float = 30.0

    def __post_init__(self) -> None:
        # Defer import of OpenAI to chat() to avoid hard dependency in tests
        self._client: Any | None = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            module = import_module("openai")
            self._client = module.AsyncOpenAI(
                base_url=self.base_url, api_key=self.api_key, timeout=self.timeout_s
            )
        return self._client

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.1,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> LLMResponse:
        try:
            client = self._ensure_client()
            payload: Any = [{"role": m.role, "content": m.content} for m in messages]
            extra: dict[str, Any] = {}
            if json_mode:
                extra["response_format"] = {"type": "json_object"}
            resp: Any = await client.chat.completions.create(
                model=self.model,
                messages=cast(Any, payload),
                temperature=temperature,
                max_tokens=max_tokens,
                **extra,
            )
            choice = resp.choices[0]
            usage = getattr(resp, "usage", None)
            return LLMResponse(
                text=choice.message.content or "",
                finish_reason=choice.finish_reason or "stop",
                usage_tokens=getattr(usage, "total_tokens", None),
            )
        except Exception as ex:  # noqa: BLE001
            # Translate external errors to domain-specific errors
            raise LLMError(f"LLM communication failed: {ex}") from ex
