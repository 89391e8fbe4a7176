from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str


@dataclass(frozen=True)
class LLMResponse:
    text: str
    finish_reason: str = "stop"
    usage_tokens: int | None = None


class LLMPort(Protocol):
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.1,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> LLMResponse: ...

    async def generate(
        self, prompt: str, system: str | None = None, temperature: float = 0.1, max_tokens: int = 256
    ) -> str:
        """Convenience method for single-shot text generation.

        Note:
            Default implementation uses chat with an optional system message
            followed by one user message.
        """
        msgs = [ChatMessage(role="system", content=system)] if system else []
        msgs.append(ChatMessage(role="user", content=prompt))
        response = await self.chat(msgs, temperature=temperature, max_tokens=max_tokens)
        return response.text
