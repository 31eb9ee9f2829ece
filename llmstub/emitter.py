"""Turn a response descriptor into a timed sequence of chunks.

``produce`` is the pull-based half: it yields the chunk sequence for one
descriptor and knows nothing about timing or wire bytes. ``emit`` drives a
sink with that sequence, sleeping between chunks the way a real provider
trickles tokens out, and stops as soon as the sink reports it is closed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from llmstub.chunks import Chunk, Finish, TextDelta, ToolCallStart, ToolResult, Usage
from llmstub.descriptors import ResponseDescriptor, Structured, ToolCall
from llmstub.exceptions import SinkClosed
from llmstub.sinks import ChunkSink

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DelayPolicy:
    inter_chunk_delay_ms: int = 100
    tool_call_delay_ms: int = 200

    @classmethod
    def from_config(cls, stream: Mapping[str, Any]) -> DelayPolicy:
        return cls(
            inter_chunk_delay_ms=int(stream.get("inter_chunk_delay_ms", 100)),
            tool_call_delay_ms=int(stream.get("tool_call_delay_ms", 200)),
        )

    def delay_after(self, chunk: Chunk) -> float:
        """Seconds to wait after writing ``chunk``."""
        if isinstance(chunk, TextDelta):
            return self.inter_chunk_delay_ms / 1000
        if isinstance(chunk, ToolCallStart):
            return self.tool_call_delay_ms / 1000
        return 0.0


NO_DELAY = DelayPolicy(inter_chunk_delay_ms=0, tool_call_delay_ms=0)


def split_words(content: str, trailing_space: bool = True) -> list[str]:
    """Split on whitespace and re-attach one space per word.

    With ``trailing_space`` the last word keeps its space too, which is how
    the stream has always looked on the wire.
    """
    words = content.split()
    fragments = [word + " " for word in words]
    if fragments and not trailing_space:
        fragments[-1] = words[-1]
    return fragments


def produce(
    descriptor: ResponseDescriptor,
    *,
    prompt_tokens: int = 0,
    trailing_space: bool = True,
) -> Iterator[Chunk]:
    """Yield the chunk sequence for a streamed descriptor."""
    if isinstance(descriptor, Structured):
        raise TypeError("structured descriptors are not streamed")

    if isinstance(descriptor, ToolCall):
        call_id = descriptor.tool_call_id or f"call_{uuid.uuid4().hex[:24]}"
        yield ToolCallStart(call_id, descriptor.tool_name, dict(descriptor.tool_args))
        if descriptor.tool_result is not None:
            yield ToolResult(call_id, descriptor.tool_name, descriptor.tool_result)
        content = descriptor.final_response
    else:
        content = descriptor.content

    fragments = split_words(content or "", trailing_space)
    for fragment in fragments:
        yield TextDelta(fragment)

    yield Finish("stop", Usage(prompt_tokens, len(fragments)))


async def emit(
    descriptor: ResponseDescriptor,
    sink: ChunkSink,
    timing: DelayPolicy = DelayPolicy(),
    *,
    prompt_tokens: int = 0,
    trailing_space: bool = True,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Write ``descriptor`` to ``sink``; return the number of chunks written.

    Raises SinkClosed if the sink closes before the sequence is complete.
    Nothing already written is retried or rolled back.
    """
    if isinstance(descriptor, Structured):
        if sink.closed:
            raise SinkClosed(0)
        await sink.write_object(descriptor.fields)
        return 1

    written = 0
    chunks = produce(descriptor, prompt_tokens=prompt_tokens, trailing_space=trailing_space)
    for chunk in chunks:
        if sink.closed:
            log.debug("Sink closed before chunk %d, aborting", written)
            raise SinkClosed(written)
        await sink.write(chunk)
        written += 1

        delay = timing.delay_after(chunk)
        if delay:
            await sleep(delay)

    if sink.closed:
        raise SinkClosed(written)
    await sink.end()
    return written
