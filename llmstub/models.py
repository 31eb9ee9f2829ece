"""Chat model backends.

Route handlers only see ``ChatModel.respond``. The app is handed its
models at construction time, so tests swap in a ``PatternModel`` (or any
other double) without touching the network.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import aiohttp

from llmstub.descriptors import (
    PatternMap,
    ResponseDescriptor,
    Structured,
    Text,
    ToolCall,
    load_pattern_map,
)
from llmstub.exceptions import UpstreamError
from llmstub.matcher import match
from llmstub.providers import StreamAccumulator, extract_object, parse_sse
from llmstub.tools import Tool, call_tool, openai_tool_specs

log = logging.getLogger(__name__)

OBJECT_SYSTEM_PROMPT = "Reply with a single JSON object and nothing else."


class ChatModel:
    """Capability interface: prompt in, response descriptor out."""

    async def respond(self, prompt: str) -> ResponseDescriptor:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class PatternModel(ChatModel):
    """Answers from a pattern map, falling back to a default reply."""

    def __init__(self, patterns: PatternMap, default: ResponseDescriptor) -> None:
        self.patterns = patterns
        self.default = default

    async def respond(self, prompt: str) -> ResponseDescriptor:
        descriptor = match(prompt, self.patterns, self.default)
        if descriptor is self.default:
            log.debug("No pattern matched prompt, using default reply")
        return descriptor


class OpenAIModel(ChatModel):
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint.

    ``mode="chat"`` streams and yields Text or ToolCall descriptors;
    ``mode="object"`` asks for a JSON object and yields Structured.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "gpt-4o",
        *,
        mode: str = "chat",
        tools: Mapping[str, Tool] | None = None,
        max_steps: int = 5,
        timeout: float = 60,
    ) -> None:
        if mode not in ("chat", "object"):
            raise ValueError(f"unknown mode {mode!r}")
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._api_key = api_key
        self._model = model
        self._mode = mode
        self._tools = dict(tools or {})
        self._max_steps = max(1, max_steps)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._session = aiohttp.ClientSession(headers=headers, timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def respond(self, prompt: str) -> ResponseDescriptor:
        if self._mode == "object":
            return await self._generate_object(prompt)
        return await self._chat(prompt)

    async def _generate_object(self, prompt: str) -> Structured:
        payload = {
            "model": self._model,
            "stream": False,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": OBJECT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        async with self._get_session().post(self._url, json=payload) as resp:
            await _raise_for_status(resp)
            try:
                completion = await resp.json(content_type=None)
            except (json.JSONDecodeError, ValueError) as exc:
                raise UpstreamError("upstream returned invalid JSON", resp.status) from exc
        return Structured(extract_object(completion))

    async def _chat(self, prompt: str) -> ResponseDescriptor:
        messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        first_call = None
        tool_result = None

        for step in range(self._max_steps):
            reply = await self._stream_step(messages)
            calls = reply.calls()
            if not calls:
                break
            call = calls[0]
            args = call.parsed_arguments()
            if first_call is None:
                first_call = (call, args)
            if reply.content or call.name not in self._tools:
                break

            log.debug("Step %d: model requested tool %s", step + 1, call.name)
            tool_result = await call_tool(self._tools, call.name, args)
            messages.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                    ],
                }
            )
            messages.append(
                {"role": "tool", "tool_call_id": call.id, "content": json.dumps(tool_result)}
            )
        else:
            log.warning("Tool loop stopped after %d steps", self._max_steps)

        if first_call is None:
            return Text(reply.content)
        call, args = first_call
        return ToolCall(
            tool_name=call.name,
            tool_args=args,
            final_response=reply.content,
            tool_call_id=call.id or None,
            tool_result=tool_result,
        )

    async def _stream_step(self, messages: list[dict[str, Any]]) -> StreamAccumulator:
        payload: dict[str, Any] = {"model": self._model, "stream": True, "messages": messages}
        if self._tools:
            payload["tools"] = openai_tool_specs(self._tools)

        acc = StreamAccumulator()
        async with self._get_session().post(self._url, json=payload) as resp:
            await _raise_for_status(resp)
            lines = []
            async for raw in resp.content:
                lines.append(raw.decode("utf-8", errors="replace"))
        for event in parse_sse(lines):
            acc.feed(event)
        return acc


async def _raise_for_status(resp: aiohttp.ClientResponse) -> None:
    if resp.status >= 400:
        body = await resp.text()
        raise UpstreamError(f"upstream returned {resp.status}: {body[:200]}", resp.status)


def build_models(
    config: dict[str, Any], tools: Mapping[str, Tool] | None = None
) -> tuple[ChatModel, ChatModel]:
    """Return (chat_model, object_model) for the configured backend."""
    backend = config.get("backend", "mock")
    if backend == "mock":
        mock = config["mock"]
        model = PatternModel(
            load_pattern_map(Path(mock["patterns_path"])),
            Text(mock["default_response"]),
        )
        return model, model

    if backend == "openai":
        upstream = config["upstream"]
        common = dict(
            base_url=upstream["base_url"],
            api_key=upstream["api_key"],
            model=upstream["model"],
            timeout=upstream["timeout_seconds"],
        )
        chat = OpenAIModel(**common, mode="chat", tools=tools, max_steps=upstream["max_steps"])
        obj = OpenAIModel(**common, mode="object")
        return chat, obj

    raise ValueError(f"unknown backend {backend!r}, expected 'mock' or 'openai'")
