"""
llmstub demo: stream one reply from the mock upstream using the OpenAI SDK.

Start the mock first:
    python -m llmstub --mock-upstream

Usage:
    python demo.py --prompt "Tell me a creative story"

Exit codes:
    0  success
    1  request failed
"""

import argparse
import sys

import httpx
import openai


MOCK_BASE_URL = "http://localhost:8082/v1"
MODEL = "gpt-4o"
PROMPT = "Tell me a creative story"


def main() -> None:
    parser = argparse.ArgumentParser(description="llmstub demo (OpenAI SDK)")
    parser.add_argument("--prompt", default=PROMPT, help="Prompt to send")
    parser.add_argument("--base-url", default=MOCK_BASE_URL, help="Mock upstream base URL")
    args = parser.parse_args()

    # The mock ignores the key, the SDK insists on one
    client = openai.OpenAI(api_key="sk-mock", base_url=args.base_url)

    try:
        stream = client.chat.completions.create(
            model=MODEL,
            messages=[{"role": "user", "content": args.prompt}],
            stream=True,
        )
        for chunk in stream:
            delta = chunk.choices[0].delta
            for call in delta.tool_calls or []:
                print(f"[tool call] {call.function.name}({call.function.arguments})")
            if delta.content:
                print(delta.content, end="", flush=True)
        print()
    except openai.APIConnectionError as exc:
        print(f"Could not reach the mock upstream at {args.base_url}: {exc}", file=sys.stderr)
        sys.exit(1)
    except openai.APIStatusError as exc:
        print(f"HTTP error {exc.status_code}: {exc.response.text}", file=sys.stderr)
        sys.exit(1)
    except httpx.HTTPError as exc:
        print(f"Transport error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
