"""Parsing of provider-native (OpenAI-style) replies.

Streaming bodies are server-sent events: ``data: {json}`` lines separated
by blank lines, ending with ``data: [DONE]``. Tool call arguments arrive as
string fragments keyed by ``index`` and must be concatenated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from llmstub.chunks import Usage
from llmstub.exceptions import UpstreamError

log = logging.getLogger(__name__)

DONE = "[DONE]"


def parse_sse(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Yield the JSON payload of each ``data:`` line, stopping at [DONE]."""
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if data == DONE:
            return
        try:
            yield json.loads(data)
        except (json.JSONDecodeError, ValueError):
            log.debug("Skipping undecodable SSE line: %r", line)


@dataclass
class PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""

    def parsed_arguments(self) -> dict[str, Any]:
        if not self.arguments:
            return {}
        try:
            args = json.loads(self.arguments)
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamError(f"tool call {self.name!r} has invalid arguments") from exc
        if not isinstance(args, dict):
            raise UpstreamError(f"tool call {self.name!r} arguments are not an object")
        return args


@dataclass
class StreamAccumulator:
    """Folds ``chat.completion.chunk`` events into one reply."""

    parts: list[str] = field(default_factory=list)
    tool_calls: dict[int, PendingToolCall] = field(default_factory=dict)
    finish_reason: str | None = None
    usage: Usage | None = None

    def feed(self, event: dict[str, Any]) -> None:
        usage = event.get("usage")
        if isinstance(usage, dict):
            self.usage = Usage(
                usage.get("prompt_tokens") or 0, usage.get("completion_tokens") or 0
            )
        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                self.parts.append(content)
            for call in delta.get("tool_calls") or []:
                pending = self.tool_calls.setdefault(call.get("index", 0), PendingToolCall())
                pending.id = call.get("id") or pending.id
                function = call.get("function") or {}
                pending.name = function.get("name") or pending.name
                pending.arguments += function.get("arguments") or ""
            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]

    @property
    def content(self) -> str:
        return "".join(self.parts)

    def calls(self) -> list[PendingToolCall]:
        return [self.tool_calls[i] for i in sorted(self.tool_calls)]


def extract_object(completion: dict[str, Any]) -> dict[str, Any]:
    """Pull a JSON object out of a non-streaming ``chat.completion``.

    The object is read from the arguments of a ``json`` tool call when one
    is present, otherwise from the message content.
    """
    try:
        message = completion["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamError("completion has no message") from exc

    raw: str | None = None
    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        if function.get("name") == "json":
            raw = function.get("arguments")
            break
    if raw is None:
        raw = message.get("content")
    if not raw:
        raise UpstreamError("completion carries no object")

    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        raise UpstreamError("completion object is not valid JSON") from exc
    if not isinstance(obj, dict):
        raise UpstreamError("completion object is not a JSON object")
    return obj
