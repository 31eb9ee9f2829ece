"""Exception types raised by the stub core and the upstream client."""

from __future__ import annotations


class LLMStubError(Exception):
    """Base class for llmstub errors."""


class MalformedDescriptor(LLMStubError, ValueError):
    """A response descriptor is missing a required field."""


class SinkClosed(LLMStubError):
    """The sink stopped accepting writes before emission finished."""

    def __init__(self, chunks_written: int) -> None:
        super().__init__(f"sink closed after {chunks_written} chunk(s)")
        self.chunks_written = chunks_written


class UpstreamError(LLMStubError):
    """The upstream provider returned an error or an unusable reply."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
