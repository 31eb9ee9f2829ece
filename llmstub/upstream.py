"""Mock OpenAI-style ``/v1/chat/completions`` endpoint.

Answers from a pattern map so the real ``OpenAIModel`` client (or any
OpenAI SDK) can be exercised without network access. Streamed replies use
the provider-native framing; non-streamed replies carry a structured
object as the arguments of a ``json`` tool call.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from llmstub.descriptors import PatternMap, ResponseDescriptor, Structured, Text
from llmstub.emitter import DelayPolicy, emit
from llmstub.exceptions import SinkClosed
from llmstub.framing import OpenAIFramer
from llmstub.matcher import match
from llmstub.sinks import ResponseSink

log = logging.getLogger(__name__)

DEFAULT_REPLY = "Sorry, I cannot help with that."
NO_MOCK_ERROR = {"error": "No mock configured for this prompt"}


def extract_prompt(body: dict[str, Any]) -> str:
    """Prompt text from a flat ``prompt`` or the last user-role message."""
    if isinstance(body.get("prompt"), str):
        return body["prompt"]
    for message in reversed(body.get("messages") or []):
        if not isinstance(message, dict) or message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, list):
            return " ".join(
                part.get("text") or ""
                for part in content
                if isinstance(part, dict) and part.get("type", "text") == "text"
            )
        return content if isinstance(content, str) else ""
    return ""


def _completion(model: str, fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": f"chatcmpl-{uuid.uuid4().hex[:24]}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": f"call_{uuid.uuid4().hex[:24]}",
                            "type": "function",
                            "function": {"name": "json", "arguments": json.dumps(fields)},
                        }
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }


@dataclass
class MockState:
    """Mutable per-server state, swapped between test scenarios."""

    patterns: PatternMap = field(default_factory=PatternMap)
    default: ResponseDescriptor = field(default_factory=lambda: Text(DEFAULT_REPLY))
    timing: DelayPolicy = field(default_factory=DelayPolicy)
    requests: list[dict[str, Any]] = field(default_factory=list)


async def chat_completions(request: web.Request) -> web.StreamResponse:
    state: MockState = request.app["state"]
    try:
        body = await request.json()
    except ValueError:
        return web.json_response({"error": {"message": "invalid JSON body"}}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": {"message": "body must be an object"}}, status=400)

    state.requests.append(body)
    prompt = extract_prompt(body)
    descriptor = match(prompt, state.patterns, state.default)
    model = body.get("model") or request.app["model"]

    if not body.get("stream"):
        fields = dict(descriptor.fields) if isinstance(descriptor, Structured) else NO_MOCK_ERROR
        return web.json_response(_completion(model, fields))

    if isinstance(descriptor, Structured):
        log.debug("Structured mock requested as a stream, falling back to default")
        descriptor = state.default

    framer = OpenAIFramer(model=model)
    response = web.StreamResponse(status=200, headers=framer.headers())
    await response.prepare(request)
    sink = ResponseSink(request, response, framer)
    try:
        await emit(descriptor, sink, state.timing, prompt_tokens=len(prompt.split()))
    except SinkClosed as exc:
        log.info("Client went away mid-stream: %s", exc)
        return response
    await response.write_eof()
    return response


async def healthz(request: web.Request) -> web.Response:
    return web.Response(text="ok")


def create_upstream_app(
    patterns: PatternMap | None = None,
    default: ResponseDescriptor | None = None,
    timing: DelayPolicy | None = None,
    model: str = "gpt-4o",
) -> web.Application:
    app = web.Application()
    app["state"] = MockState(
        patterns=patterns or PatternMap(),
        default=default or Text(DEFAULT_REPLY),
        timing=timing or DelayPolicy(),
    )
    app["model"] = model

    app.router.add_post("/v1/chat/completions", chat_completions)
    app.router.add_get("/healthz", healthz)
    return app
