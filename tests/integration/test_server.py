"""Integration tests — the chat app with injected models.

Covers:
1. Health and echo endpoints
2. Streaming chat in both framings
3. Tool calling with server-side tool execution
4. Structured profile generation and validation
5. Error status mapping
"""

from pathlib import Path

import pytest
from aiohttp import web

from llmstub.descriptors import PatternMap, Structured, Text, ToolCall
from llmstub.exceptions import UpstreamError
from llmstub.models import PatternModel
from llmstub.providers import parse_sse
from llmstub.server import create_app
from llmstub.testing import FakeChatModel, parse_data_stream

DEFAULT = Text("Sorry, I cannot help with that.")

LUNA = {
    "name": "Luna Martinez",
    "age": 28,
    "occupation": "Digital Artist",
    "personality": ["imaginative", "passionate", "detail-oriented"],
    "backstory": "Luna discovered her artistic passion while studying computer science.",
}


@pytest.fixture
def patterns() -> PatternMap:
    return PatternMap.from_mapping(
        {
            "creative story": {
                "type": "text",
                "content": "Once upon a time in a magical kingdom there lived a brave knight",
            },
            "poem": {
                "type": "text",
                "content": "Roses are red violets are blue testing is fun and so are you",
            },
            "recipe": {
                "type": "text",
                "content": "First gather ingredients then mix them carefully and bake for 30 minutes",
            },
            "weather": {
                "type": "tool_call",
                "tool_name": "getWeather",
                "tool_args": {"location": "San Francisco, CA"},
                "final_response": "The weather in San Francisco is currently 72°F and sunny",
            },
            "creative artist": LUNA,
        }
    )


@pytest.fixture
def app(config, patterns) -> web.Application:
    model = PatternModel(patterns, DEFAULT)
    return create_app(config, chat_model=model, object_model=model)


class TestHealth:
    async def test_index(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.get("/")
        assert resp.status == 200
        assert (await resp.json())["message"] == "LLM stub server is running!"

    async def test_healthz(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.text() == "ok"

    async def test_unknown_route(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.get("/unknown-route")
        assert resp.status == 404


class TestEcho:
    async def test_echo(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/echo", json={"message": "Hello World"})
        assert resp.status == 200
        data = await resp.json()
        assert data["message"] == "Echo: Hello World"
        assert data["timestamp"]

    async def test_echo_requires_message(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/echo", json={})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Message is required"


class TestChatStreaming:
    async def test_creative_story(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/chat", json={"message": "Tell me a creative story"})
        assert resp.status == 200
        assert "text/plain" in resp.headers["Content-Type"]

        body = await resp.text()
        assert '0:"Once "' in body
        assert '0:"upon "' in body
        assert "magical" in body

        parts = parse_data_stream(body)
        text = "".join(value for tag, value in parts if tag == "0")
        assert text == "Once upon a time in a magical kingdom there lived a brave knight "
        assert [tag for tag, _ in parts][-2:] == ["e", "d"]
        assert parts[-2][1]["finishReason"] == "stop"
        assert parts[-2][1]["usage"] == {"promptTokens": 5, "completionTokens": 13}

    async def test_fallback_message(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/chat", json={"message": "This will trigger fallback response"})
        assert resp.status == 200
        parts = parse_data_stream(await resp.text())
        text = "".join(value for tag, value in parts if tag == "0")
        assert "Sorry, I cannot help with that" in text

    async def test_multiple_scenarios(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        poem = await client.post("/chat", json={"message": "Write me a poem"})
        recipe = await client.post("/chat", json={"message": "Give me a recipe"})
        assert poem.status == 200
        assert recipe.status == 200

        poem_text = await poem.text()
        recipe_text = await recipe.text()
        assert '0:"Roses ' in poem_text
        assert "violets" in poem_text
        assert '0:"First ' in recipe_text
        assert "Roses" not in recipe_text

    async def test_chat_does_not_run_tools(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/chat", json={"message": "How is the weather?"})
        tags = [tag for tag, _ in parse_data_stream(await resp.text())]
        assert tags[0] == "9"
        assert "a" not in tags

    async def test_openai_framing(self, aiohttp_client, config, patterns) -> None:
        config["stream"]["framing"] = "openai"
        model = PatternModel(patterns, DEFAULT)
        client = await aiohttp_client(create_app(config, chat_model=model, object_model=model))

        resp = await client.post("/chat", json={"message": "Write me a poem"})
        assert resp.status == 200
        body = await resp.text()
        assert body.endswith("data: [DONE]\n\n")
        events = list(parse_sse(body.splitlines()))
        text = "".join(e["choices"][0]["delta"].get("content") or "" for e in events)
        assert text.startswith("Roses are red")
        assert events[-1]["choices"][0]["finish_reason"] == "stop"

    async def test_trimmed_final_space(self, aiohttp_client, config, patterns) -> None:
        config["stream"]["trailing_space"] = False
        model = PatternModel(patterns, DEFAULT)
        client = await aiohttp_client(create_app(config, chat_model=model, object_model=model))
        resp = await client.post("/chat", json={"message": "a poem"})
        parts = parse_data_stream(await resp.text())
        text = "".join(value for tag, value in parts if tag == "0")
        assert text == "Roses are red violets are blue testing is fun and so are you"

    async def test_structured_reply_sent_whole(self, aiohttp_client, config) -> None:
        model = FakeChatModel(Structured({"name": "Luna"}))
        client = await aiohttp_client(create_app(config, chat_model=model, object_model=model))
        resp = await client.post("/chat", json={"message": "anything"})
        assert resp.status == 200
        assert await resp.text() == '{"name": "Luna"}'


class TestChatWithTools:
    async def test_weather_tool_call(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post(
            "/chat-with-tools", json={"message": "What is the weather like today?"}
        )
        assert resp.status == 200
        body = await resp.text()
        assert '9:{"toolCallId"' in body
        assert 'toolName":"getWeather"' in body
        assert "San Francisco" in body
        assert "72°F" in body

        parts = parse_data_stream(body)
        tags = [tag for tag, _ in parts]
        assert tags[0] == "9"
        assert tags[1] == "a"
        assert parts[0][1]["args"] == {"location": "San Francisco, CA"}
        assert parts[1][1]["toolCallId"] == parts[0][1]["toolCallId"]
        assert parts[1][1]["result"]["condition"] == "sunny"
        assert tags.count("0") == 10
        assert tags[-2:] == ["e", "d"]

    async def test_custom_tool_registry(self, aiohttp_client, config) -> None:
        async def lookup(symbol: str) -> dict:
            return {"symbol": symbol, "price": 42}

        from llmstub.tools import Tool

        tools = {"getStock": Tool("getStock", "Stock price", lookup)}
        model = FakeChatModel(ToolCall("getStock", {"symbol": "ACME"}, "Up today"))
        client = await aiohttp_client(
            create_app(config, chat_model=model, object_model=model, tools=tools)
        )
        resp = await client.post("/chat-with-tools", json={"message": "stock?"})
        parts = parse_data_stream(await resp.text())
        assert parts[1] == ("a", {"toolCallId": parts[0][1]["toolCallId"], "result": {"symbol": "ACME", "price": 42}})

    async def test_tool_failure_is_500(self, aiohttp_client, config) -> None:
        async def broken(**kwargs) -> dict:
            raise RuntimeError("tool exploded")

        from llmstub.tools import Tool

        tools = {"getWeather": Tool("getWeather", "Broken", broken)}
        model = FakeChatModel(ToolCall("getWeather", {"location": "Paris"}, "Warm"))
        client = await aiohttp_client(
            create_app(config, chat_model=model, object_model=model, tools=tools)
        )
        resp = await client.post("/chat-with-tools", json={"message": "weather"})
        assert resp.status == 500
        assert (await resp.json())["error"] == "AI service unavailable"


class TestGenerateProfile:
    async def test_structured_profile(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post(
            "/generate-profile", json={"prompt": "Generate a creative artist profile"}
        )
        assert resp.status == 200
        profile = await resp.json()
        assert profile["name"] == "Luna Martinez"
        assert profile["age"] == 28
        assert profile["occupation"] == "Digital Artist"
        assert "imaginative" in profile["personality"]

    async def test_unmatched_prompt_is_500(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/generate-profile", json={"prompt": "a plumber"})
        assert resp.status == 500
        assert (await resp.json())["error"] == "AI service unavailable"

    async def test_invalid_profile_is_500(self, aiohttp_client, config) -> None:
        model = FakeChatModel(Structured({"name": "Luna"}))
        client = await aiohttp_client(create_app(config, chat_model=model, object_model=model))
        resp = await client.post("/generate-profile", json={"prompt": "artist"})
        assert resp.status == 500

    async def test_missing_prompt(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/generate-profile", json={})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Prompt is required"


class TestErrors:
    async def test_malformed_json(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post(
            "/chat", data="invalid json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 500
        assert (await resp.json())["error"] == "AI service unavailable"

    async def test_missing_message(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/chat", json={})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Message is required"

    async def test_missing_message_with_tools(self, aiohttp_client, app) -> None:
        client = await aiohttp_client(app)
        resp = await client.post("/chat-with-tools", json={"text": "hi"})
        assert resp.status == 400

    async def test_model_failure_is_500(self, aiohttp_client, config) -> None:
        model = FakeChatModel(error=UpstreamError("boom", 502))
        client = await aiohttp_client(create_app(config, chat_model=model, object_model=model))
        resp = await client.post("/chat", json={"message": "hello"})
        assert resp.status == 500
        assert (await resp.json())["error"] == "AI service unavailable"
        assert model.prompts == ["hello"]


class TestAppConstruction:
    def test_unknown_framing_rejected(self, config) -> None:
        config["stream"]["framing"] = "xml"
        with pytest.raises(ValueError):
            create_app(config, chat_model=FakeChatModel(), object_model=FakeChatModel())

    def test_framing_recorded_on_app(self, config) -> None:
        config["stream"]["framing"] = "openai"
        app = create_app(config, chat_model=FakeChatModel(), object_model=FakeChatModel())
        assert app["framing"] == "openai"

    async def test_mock_backend_from_pattern_file(self, aiohttp_client, config) -> None:
        Path(config["mock"]["patterns_path"]).write_text(
            "hello:\n  type: text\n  content: Hi from the file\n"
        )
        client = await aiohttp_client(create_app(config))
        resp = await client.post("/chat", json={"message": "hello there"})
        parts = parse_data_stream(await resp.text())
        assert "".join(v for t, v in parts if t == "0") == "Hi from the file "

    def test_unknown_backend_rejected(self, config) -> None:
        config["backend"] = "llama"
        with pytest.raises(ValueError):
            create_app(config)
