"""Wire framings for chunk streams.

Two framings are supported:

- ``openai``: provider-native server-sent events, one
  ``chat.completion.chunk`` object per ``data:`` line, closed by
  ``data: [DONE]``.
- ``data-stream``: the AI SDK data stream protocol, one ``<tag>:<json>``
  line per part. Tags: ``0`` text, ``9`` tool call, ``a`` tool result,
  ``e`` finish step, ``d`` done.

A framer instance belongs to one response; it may keep state between
frames (the data-stream ``d`` line repeats the finish reason).
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Protocol

from llmstub.chunks import Chunk, Finish, TextDelta, ToolCallStart, ToolResult

CONTENT_TYPE = "text/plain; charset=utf-8"


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class Framer(Protocol):
    name: str

    def headers(self) -> dict[str, str]: ...

    def frame(self, chunk: Chunk) -> bytes: ...

    def sentinel(self) -> bytes: ...


class OpenAIFramer:
    name = "openai"

    def __init__(self, model: str = "gpt-4o") -> None:
        self._model = model
        self._id = f"chatcmpl-{uuid.uuid4().hex[:24]}"
        self._created = int(time.time())

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": CONTENT_TYPE,
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }

    def _event(self, delta: dict[str, Any], finish_reason: str | None = None, **extra: Any) -> bytes:
        body = {
            "id": self._id,
            "object": "chat.completion.chunk",
            "created": self._created,
            "model": self._model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            **extra,
        }
        return f"data: {_dumps(body)}\n\n".encode()

    def frame(self, chunk: Chunk) -> bytes:
        if isinstance(chunk, TextDelta):
            return self._event({"content": chunk.text})
        if isinstance(chunk, ToolCallStart):
            call = {
                "index": 0,
                "id": chunk.tool_call_id,
                "type": "function",
                "function": {"name": chunk.tool_name, "arguments": _dumps(chunk.args)},
            }
            return self._event({"role": "assistant", "content": None, "tool_calls": [call]})
        if isinstance(chunk, ToolResult):
            # Tool results are the client's business in this protocol.
            return b""
        if isinstance(chunk, Finish):
            usage = {
                "prompt_tokens": chunk.usage.prompt_tokens,
                "completion_tokens": chunk.usage.completion_tokens,
                "total_tokens": chunk.usage.total_tokens,
            }
            return self._event({}, chunk.reason, usage=usage)
        raise TypeError(f"unknown chunk: {chunk!r}")

    def sentinel(self) -> bytes:
        return b"data: [DONE]\n\n"


class DataStreamFramer:
    name = "data-stream"

    def __init__(self, model: str = "gpt-4o") -> None:
        self._model = model
        self._finish: Finish | None = None

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": CONTENT_TYPE,
            "Cache-Control": "no-cache",
            "X-Vercel-AI-Data-Stream": "v1",
        }

    @staticmethod
    def _part(tag: str, value: Any) -> bytes:
        return f"{tag}:{_dumps(value)}\n".encode()

    @staticmethod
    def _finish_body(finish: Finish) -> dict[str, Any]:
        return {
            "finishReason": finish.reason,
            "usage": {
                "promptTokens": finish.usage.prompt_tokens,
                "completionTokens": finish.usage.completion_tokens,
            },
        }

    def frame(self, chunk: Chunk) -> bytes:
        if isinstance(chunk, TextDelta):
            return self._part("0", chunk.text)
        if isinstance(chunk, ToolCallStart):
            return self._part(
                "9",
                {"toolCallId": chunk.tool_call_id, "toolName": chunk.tool_name, "args": chunk.args},
            )
        if isinstance(chunk, ToolResult):
            return self._part("a", {"toolCallId": chunk.tool_call_id, "result": chunk.result})
        if isinstance(chunk, Finish):
            self._finish = chunk
            return self._part("e", {**self._finish_body(chunk), "isContinued": False})
        raise TypeError(f"unknown chunk: {chunk!r}")

    def sentinel(self) -> bytes:
        return self._part("d", self._finish_body(self._finish or Finish()))


_FRAMERS: dict[str, type] = {
    OpenAIFramer.name: OpenAIFramer,
    DataStreamFramer.name: DataStreamFramer,
}


def make_framer(name: str, model: str = "gpt-4o") -> Framer:
    """Build a fresh framer for one response. Raises ValueError on unknown names."""
    try:
        cls = _FRAMERS[name]
    except KeyError:
        raise ValueError(f"unknown framing {name!r}, expected one of {sorted(_FRAMERS)}") from None
    return cls(model=model)
