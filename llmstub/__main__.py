"""llmstub entry point: start the app server or the mock upstream."""

import argparse
import logging
import sys
from pathlib import Path

from llmstub.config import load_config
from llmstub.descriptors import Text, load_pattern_map
from llmstub.emitter import DelayPolicy


def main() -> None:
    from aiohttp import web

    parser = argparse.ArgumentParser(prog="llmstub", description="LLM stub server")
    parser.add_argument("--config", type=Path, default=None, help="Path to YAML config")
    parser.add_argument(
        "--mock-upstream",
        action="store_true",
        help="Serve the mock OpenAI-style /v1/chat/completions endpoint instead",
    )
    args = parser.parse_args()

    config = load_config(args.config)

    logging.basicConfig(
        level=getattr(logging, config["logging"]["level"].upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.mock_upstream:
        from llmstub.upstream import create_upstream_app

        mock = config["mock"]
        app = create_upstream_app(
            load_pattern_map(Path(mock["patterns_path"])),
            Text(mock["default_response"]),
            DelayPolicy.from_config(config["stream"]),
            model=config["upstream"]["model"],
        )
        web.run_app(app, port=mock["port"])
        return

    from llmstub.server import create_app

    app = create_app(config)
    web.run_app(app, port=config["server"]["port"])


if __name__ == "__main__":
    main()
