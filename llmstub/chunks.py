"""Framing-agnostic stream chunks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    tool_name: str
    result: Any = None


@dataclass(frozen=True)
class Finish:
    """Terminal chunk. Exactly one per stream, always last."""

    reason: str = "stop"
    usage: Usage = field(default_factory=Usage)


Chunk = Union[TextDelta, ToolCallStart, ToolResult, Finish]
