"""Test doubles for llmstub.

``MockUpstream`` is a self-contained stand-in for an OpenAI-compatible
provider: each instance owns its pattern map and its server, so test
scenarios never share state::

    async with MockUpstream() as upstream:
        upstream.use({"weather": {"type": "text", "content": "Sunny"}})
        model = OpenAIModel(upstream.base_url)
        ...

``FakeChatModel`` skips HTTP entirely and is injected straight into
``create_app``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from aiohttp.test_utils import TestServer

from llmstub.descriptors import PatternMap, ResponseDescriptor, Text
from llmstub.emitter import NO_DELAY, DelayPolicy
from llmstub.models import ChatModel
from llmstub.upstream import DEFAULT_REPLY, MockState, create_upstream_app


class MockUpstream:
    def __init__(
        self,
        patterns: PatternMap | Mapping[str, Any] | None = None,
        *,
        default: ResponseDescriptor | None = None,
        timing: DelayPolicy = NO_DELAY,
        model: str = "gpt-4o",
    ) -> None:
        self._app = create_upstream_app(
            _as_pattern_map(patterns), default or Text(DEFAULT_REPLY), timing, model
        )
        self._server: TestServer | None = None

    @property
    def state(self) -> MockState:
        return self._app["state"]

    @property
    def requests(self) -> list[dict[str, Any]]:
        """Request bodies received since the last reset."""
        return self.state.requests

    @property
    def base_url(self) -> str:
        if self._server is None:
            raise RuntimeError("MockUpstream is not started")
        return str(self._server.make_url("/v1"))

    def use(self, patterns: PatternMap | Mapping[str, Any]) -> None:
        """Replace the active pattern map."""
        self.state.patterns = _as_pattern_map(patterns)

    def reset(self) -> None:
        self.state.patterns = PatternMap()
        self.state.requests.clear()

    async def start(self) -> None:
        self._server = TestServer(self._app)
        await self._server.start_server()

    async def close(self) -> None:
        if self._server is not None:
            await self._server.close()
            self._server = None

    async def __aenter__(self) -> MockUpstream:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _as_pattern_map(patterns: PatternMap | Mapping[str, Any] | None) -> PatternMap:
    if patterns is None:
        return PatternMap()
    if isinstance(patterns, PatternMap):
        return patterns
    return PatternMap.from_mapping(patterns)


class FakeChatModel(ChatModel):
    """Returns a fixed descriptor (or raises ``error``) and records prompts."""

    def __init__(self, descriptor: ResponseDescriptor | None = None, error: Exception | None = None) -> None:
        self.descriptor = descriptor or Text("")
        self.error = error
        self.prompts: list[str] = []
        self.closed = False

    async def respond(self, prompt: str) -> ResponseDescriptor:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.descriptor

    async def close(self) -> None:
        self.closed = True


def parse_data_stream(body: str) -> list[tuple[str, Any]]:
    """Split a data-stream body into (tag, value) parts."""
    parts = []
    for line in body.split("\n"):
        if not line:
            continue
        tag, _, payload = line.partition(":")
        parts.append((tag, json.loads(payload)))
    return parts
