"""Tests for llmstub.tools — tool specs and execution."""

import pytest

from llmstub.descriptors import Text, ToolCall
from llmstub.tools import DEFAULT_TOOLS, WEATHER_TOOL, call_tool, openai_tool_specs, run_tool


class TestToolSpecs:
    def test_weather_spec(self) -> None:
        (spec,) = openai_tool_specs(DEFAULT_TOOLS)
        assert spec["type"] == "function"
        assert spec["function"]["name"] == "getWeather"
        assert spec["function"]["parameters"]["required"] == ["location"]


class TestCallTool:
    async def test_weather(self) -> None:
        result = await call_tool(DEFAULT_TOOLS, "getWeather", {"location": "San Francisco, CA"})
        assert result == {
            "location": "San Francisco, CA",
            "temperature": "72°F",
            "condition": "sunny",
            "humidity": "65%",
        }

    async def test_unknown_tool(self) -> None:
        with pytest.raises(KeyError):
            await call_tool(DEFAULT_TOOLS, "getStock", {})


class TestRunTool:
    async def test_attaches_result(self) -> None:
        descriptor = ToolCall("getWeather", {"location": "Paris"}, "Warm")
        updated = await run_tool(DEFAULT_TOOLS, descriptor)
        assert updated.tool_result["location"] == "Paris"
        assert updated.final_response == "Warm"
        assert descriptor.tool_result is None

    async def test_keeps_existing_result(self) -> None:
        descriptor = ToolCall("getWeather", {"location": "Paris"}, "Warm", tool_result={"cached": True})
        assert await run_tool(DEFAULT_TOOLS, descriptor) is descriptor

    async def test_unregistered_tool_passes_through(self) -> None:
        descriptor = ToolCall("getStock", {"symbol": "X"}, "Up")
        assert await run_tool({WEATHER_TOOL.name: WEATHER_TOOL}, descriptor) is descriptor

    async def test_text_passes_through(self) -> None:
        descriptor = Text("hello")
        assert await run_tool(DEFAULT_TOOLS, descriptor) is descriptor
