"""Prompt -> descriptor lookup over an ordered pattern map."""

from __future__ import annotations

from collections.abc import Iterable

from llmstub.descriptors import ResponseDescriptor


def match(
    prompt: str,
    patterns: Iterable[tuple[str, ResponseDescriptor]],
    default: ResponseDescriptor,
) -> ResponseDescriptor:
    """Return the first descriptor whose pattern occurs in the prompt.

    Matching is a case-insensitive substring test, scanned in insertion
    order. Falls back to ``default`` when nothing matches.
    """
    haystack = (prompt or "").lower()
    for pattern, descriptor in patterns:
        if pattern.lower() in haystack:
            return descriptor
    return default
