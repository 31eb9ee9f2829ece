"""Response descriptors and the ordered pattern map.

A descriptor says what a simulated reply contains, not how it is sent.
Pattern files use the same shape as hand-written test mocks:

    weather:
      type: tool_call
      tool_name: getWeather
      tool_args: {location: "San Francisco, CA"}
      final_response: The weather in San Francisco is currently 72F and sunny
    creative artist:
      name: Luna Martinez
      age: 28

An entry without a ``type`` key is a structured (non-streamed) reply.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Union

import yaml

from llmstub.exceptions import MalformedDescriptor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Text:
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.content, str):
            raise MalformedDescriptor("text descriptor requires string 'content'")


@dataclass(frozen=True)
class ToolCall:
    tool_name: str
    tool_args: Mapping[str, Any] = field(default_factory=dict)
    final_response: str = ""
    tool_call_id: str | None = None
    tool_result: Any = None

    def __post_init__(self) -> None:
        if not self.tool_name or not isinstance(self.tool_name, str):
            raise MalformedDescriptor("tool_call descriptor requires 'tool_name'")
        object.__setattr__(self, "tool_args", MappingProxyType(dict(self.tool_args)))


@dataclass(frozen=True)
class Structured:
    fields: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


ResponseDescriptor = Union[Text, ToolCall, Structured]


def descriptor_from_mapping(data: Mapping[str, Any]) -> ResponseDescriptor:
    """Build a descriptor from a mock-file entry. Raises MalformedDescriptor."""
    if not isinstance(data, Mapping):
        raise MalformedDescriptor(f"descriptor must be a mapping, got {type(data).__name__}")

    kind = data.get("type")
    if kind is None:
        return Structured(data)

    if kind == "text":
        return Text(data.get("content"))

    if kind == "tool_call":
        return ToolCall(
            tool_name=data.get("tool_name"),
            tool_args=data.get("tool_args") or {},
            final_response=data.get("final_response") or "",
            tool_call_id=data.get("tool_call_id"),
        )

    if kind == "structured":
        return Structured(data.get("fields") or {})

    raise MalformedDescriptor(f"unknown descriptor type: {kind!r}")


class PatternMap:
    """Ordered (pattern, descriptor) pairs. Earlier pairs win on match."""

    def __init__(self, pairs: Iterable[tuple[str, ResponseDescriptor]] = ()) -> None:
        seen: set[str] = set()
        kept: list[tuple[str, ResponseDescriptor]] = []
        for pattern, descriptor in pairs:
            if pattern in seen:
                log.debug("Duplicate pattern ignored: %r", pattern)
                continue
            seen.add(pattern)
            kept.append((pattern, descriptor))
        self._pairs = tuple(kept)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> PatternMap:
        """Accept descriptors or raw mock-file entries as values."""
        return cls((str(k), _coerce(v)) for k, v in mapping.items())

    def __iter__(self) -> Iterator[tuple[str, ResponseDescriptor]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __repr__(self) -> str:
        return f"PatternMap({[p for p, _ in self._pairs]!r})"


def _coerce(value: Any) -> ResponseDescriptor:
    if isinstance(value, (Text, ToolCall, Structured)):
        return value
    return descriptor_from_mapping(value)


def load_pattern_map(path: Path) -> PatternMap:
    """Load a YAML pattern file.

    The top level is either a mapping of pattern -> entry, or a list of
    entries each carrying a ``pattern`` key. Missing files give an empty map.
    """
    if not path.exists():
        log.warning("Pattern file not found, using empty map: %s", path)
        return PatternMap()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if isinstance(data, Mapping):
        patterns = PatternMap.from_mapping(data)
    elif isinstance(data, list):
        pairs = []
        for entry in data:
            entry = dict(entry)
            pattern = entry.pop("pattern", None)
            if not pattern:
                raise MalformedDescriptor(f"pattern entry without 'pattern' in {path}")
            pairs.append((str(pattern), descriptor_from_mapping(entry)))
        patterns = PatternMap(pairs)
    else:
        raise ValueError(f"Pattern file must hold a mapping or a list: {path}")

    log.info("Loaded %d pattern(s) from %s", len(patterns), path)
    return patterns
