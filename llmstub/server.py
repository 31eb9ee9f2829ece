"""aiohttp application: /, /healthz, /echo, /chat, /chat-with-tools, /generate-profile."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from llmstub.descriptors import Structured
from llmstub.emitter import DelayPolicy, emit
from llmstub.exceptions import SinkClosed
from llmstub.framing import make_framer
from llmstub.models import ChatModel, build_models
from llmstub.schemas import UserProfile
from llmstub.sinks import ResponseSink
from llmstub.tools import DEFAULT_TOOLS, Tool, run_tool

log = logging.getLogger(__name__)

SERVICE_UNAVAILABLE = "AI service unavailable"


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_field(request: web.Request, name: str) -> Any:
    """Return the named field of the JSON body. Raises ValueError on bad JSON."""
    payload = await request.json()
    if not isinstance(payload, dict):
        return None
    return payload.get(name)


async def index(request: web.Request) -> web.Response:
    return web.json_response({"message": "LLM stub server is running!"})


async def healthz(request: web.Request) -> web.Response:
    return web.Response(text="ok")


async def echo(request: web.Request) -> web.Response:
    try:
        message = await _read_field(request, "message")
    except ValueError:
        return _error("Invalid JSON body", 400)
    if not message:
        return _error("Message is required", 400)
    return web.json_response(
        {
            "message": f"Echo: {message}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


async def _stream_reply(
    request: web.Request, message: str, tools: Mapping[str, Tool] | None
) -> web.StreamResponse:
    app = request.app
    model: ChatModel = app["chat_model"]
    stream_config = app["config"]["stream"]

    try:
        descriptor = await model.respond(message)
        if tools:
            descriptor = await run_tool(tools, descriptor)
    except Exception:
        log.exception("AI Error")
        return _error(SERVICE_UNAVAILABLE, 500)

    framer = make_framer(app["framing"], model=app["config"]["upstream"]["model"])
    response = web.StreamResponse(status=200, headers=framer.headers())
    await response.prepare(request)

    sink = ResponseSink(request, response, framer)
    try:
        written = await emit(
            descriptor,
            sink,
            app["timing"],
            prompt_tokens=len(message.split()),
            trailing_space=stream_config["trailing_space"],
        )
    except SinkClosed as exc:
        log.info("Client disconnected mid-stream: %s", exc)
        return response
    log.debug("Streamed %d chunk(s) as %s", written, framer.name)
    await response.write_eof()
    return response


async def chat(request: web.Request) -> web.StreamResponse:
    try:
        message = await _read_field(request, "message")
    except ValueError:
        log.warning("Rejected malformed JSON body on %s", request.path)
        return _error(SERVICE_UNAVAILABLE, 500)
    if not message:
        return _error("Message is required", 400)
    return await _stream_reply(request, str(message), tools=None)


async def chat_with_tools(request: web.Request) -> web.StreamResponse:
    try:
        message = await _read_field(request, "message")
    except ValueError:
        log.warning("Rejected malformed JSON body on %s", request.path)
        return _error(SERVICE_UNAVAILABLE, 500)
    if not message:
        return _error("Message is required", 400)
    return await _stream_reply(request, str(message), tools=request.app["tools"])


async def generate_profile(request: web.Request) -> web.Response:
    try:
        prompt = await _read_field(request, "prompt")
    except ValueError:
        log.warning("Rejected malformed JSON body on %s", request.path)
        return _error(SERVICE_UNAVAILABLE, 500)
    if not prompt:
        return _error("Prompt is required", 400)

    model: ChatModel = request.app["object_model"]
    try:
        descriptor = await model.respond(str(prompt))
        if not isinstance(descriptor, Structured):
            log.error("Profile model returned %s, expected a structured reply", type(descriptor).__name__)
            return _error(SERVICE_UNAVAILABLE, 500)
        profile = UserProfile.model_validate(dict(descriptor.fields))
    except ValidationError as exc:
        log.error("Profile failed validation: %s", exc)
        return _error(SERVICE_UNAVAILABLE, 500)
    except Exception:
        log.exception("AI Error")
        return _error(SERVICE_UNAVAILABLE, 500)
    return web.json_response(profile.model_dump())


def create_app(
    config: dict[str, Any],
    *,
    chat_model: ChatModel | None = None,
    object_model: ChatModel | None = None,
    tools: Mapping[str, Tool] | None = None,
) -> web.Application:
    """Build the app. Models not passed in are built from ``config``."""
    app = web.Application()
    app["config"] = config
    app["tools"] = dict(DEFAULT_TOOLS if tools is None else tools)
    app["timing"] = DelayPolicy.from_config(config["stream"])
    app["framing"] = make_framer(config["stream"]["framing"]).name

    if chat_model is None or object_model is None:
        default_chat, default_object = build_models(config, app["tools"])
        chat_model = chat_model or default_chat
        object_model = object_model or default_object
    app["chat_model"] = chat_model
    app["object_model"] = object_model

    async def on_cleanup(app: web.Application) -> None:
        log.info("Shutting down: closing model clients")
        await app["chat_model"].close()
        if app["object_model"] is not app["chat_model"]:
            await app["object_model"].close()

    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/", index)
    app.router.add_get("/healthz", healthz)
    app.router.add_post("/echo", echo)
    app.router.add_post("/chat", chat)
    app.router.add_post("/chat-with-tools", chat_with_tools)
    app.router.add_post("/generate-profile", generate_profile)
    return app
