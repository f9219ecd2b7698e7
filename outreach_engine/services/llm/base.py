"""Chat-completion provider interface shared by every LLM-backed service."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

ChatMessage = dict  # {"role": "system" | "user" | "assistant", "content": str}


@dataclass
class LLMResponse:
    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: dict = field(default_factory=dict)

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class LLMProvider(ABC):
    name = "base"

    @abstractmethod
    def generate(
        self,
        messages: list[ChatMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Return one completion. Raises on transport or provider errors."""
