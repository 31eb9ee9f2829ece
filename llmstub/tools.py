"""Server-side tools offered to the chat model."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from llmstub.descriptors import ResponseDescriptor, ToolCall

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    execute: Callable[..., Awaitable[Any]]
    parameters: dict[str, Any] = field(default_factory=dict)

    def spec(self) -> dict[str, Any]:
        """OpenAI ``tools`` entry for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


async def get_weather(location: str) -> dict[str, str]:
    # Canned data
    return {
        "location": location,
        "temperature": "72°F",
        "condition": "sunny",
        "humidity": "65%",
    }


WEATHER_TOOL = Tool(
    name="getWeather",
    description="Get current weather for a location",
    execute=get_weather,
    parameters={
        "type": "object",
        "properties": {
            "location": {
                "type": "string",
                "description": "The city and state, e.g. San Francisco, CA",
            },
        },
        "required": ["location"],
    },
)

DEFAULT_TOOLS: dict[str, Tool] = {WEATHER_TOOL.name: WEATHER_TOOL}


def openai_tool_specs(tools: Mapping[str, Tool]) -> list[dict[str, Any]]:
    return [tool.spec() for tool in tools.values()]


async def call_tool(tools: Mapping[str, Tool], name: str, args: Mapping[str, Any]) -> Any:
    """Run a registered tool. Raises KeyError for unknown names."""
    tool = tools[name]
    log.info("Executing tool %s", name)
    return await tool.execute(**args)


async def run_tool(tools: Mapping[str, Tool], descriptor: ResponseDescriptor) -> ResponseDescriptor:
    """Attach the tool's result to a ToolCall descriptor that lacks one."""
    if not isinstance(descriptor, ToolCall) or descriptor.tool_result is not None:
        return descriptor
    if descriptor.tool_name not in tools:
        log.warning("No tool registered for %r, streaming call without result", descriptor.tool_name)
        return descriptor
    result = await call_tool(tools, descriptor.tool_name, descriptor.tool_args)
    return dataclasses.replace(descriptor, tool_result=result)
