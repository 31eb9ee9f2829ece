"""Destinations for emitted chunks."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

from aiohttp import web

from llmstub.chunks import Chunk, TextDelta
from llmstub.exceptions import SinkClosed

if TYPE_CHECKING:
    from llmstub.framing import Framer

log = logging.getLogger(__name__)


class ChunkSink(Protocol):
    @property
    def closed(self) -> bool: ...

    async def write(self, chunk: Chunk) -> None: ...

    async def write_object(self, fields: Mapping[str, Any]) -> None: ...

    async def end(self) -> None: ...


class ListSink:
    """In-memory sink. ``close_after`` simulates a client that goes away."""

    def __init__(self, close_after: int | None = None) -> None:
        self.items: list[Any] = []
        self.ended = False
        self._closed = False
        self._close_after = close_after

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def write(self, chunk: Chunk) -> None:
        if self._closed:
            raise SinkClosed(len(self.items))
        self.items.append(chunk)
        if self._close_after is not None and len(self.items) >= self._close_after:
            self._closed = True

    async def write_object(self, fields: Mapping[str, Any]) -> None:
        if self._closed:
            raise SinkClosed(len(self.items))
        self.items.append(dict(fields))

    async def end(self) -> None:
        self.ended = True

    def text(self) -> str:
        return "".join(c.text for c in self.items if isinstance(c, TextDelta))


class ResponseSink:
    """Frames chunks onto a prepared aiohttp StreamResponse.

    ``chunks_written`` counts chunks accepted, not wire frames, so it agrees
    with the count ``emit`` reports.
    """

    def __init__(self, request: web.Request, response: web.StreamResponse, framer: Framer) -> None:
        self._request = request
        self._response = response
        self._framer = framer
        self.chunks_written = 0

    @property
    def closed(self) -> bool:
        transport = self._request.transport
        return transport is None or transport.is_closing()

    async def write(self, chunk: Chunk) -> None:
        await self._send(self._framer.frame(chunk))
        self.chunks_written += 1

    async def write_object(self, fields: Mapping[str, Any]) -> None:
        await self._send(json.dumps(dict(fields), ensure_ascii=False).encode())
        self.chunks_written += 1

    async def end(self) -> None:
        await self._send(self._framer.sentinel())

    async def _send(self, data: bytes) -> None:
        if not data:
            return
        try:
            await self._response.write(data)
        except ConnectionResetError as exc:
            log.debug("Client connection reset after %d chunk(s)", self.chunks_written)
            raise SinkClosed(self.chunks_written) from exc
