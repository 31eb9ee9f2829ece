from pathlib import Path
from typing import Any

import pytest

from llmstub.config import load_config
from llmstub.testing import MockUpstream


@pytest.fixture
def config(tmp_path: Path) -> dict[str, Any]:
    """Default config with zero delays and no pattern file."""
    config = load_config(tmp_path / "nonexistent.yaml")
    config["stream"]["inter_chunk_delay_ms"] = 0
    config["stream"]["tool_call_delay_ms"] = 0
    config["mock"]["patterns_path"] = str(tmp_path / "patterns.yaml")
    return config


@pytest.fixture
async def mock_upstream():
    """A fresh mock provider per test, torn down afterwards."""
    async with MockUpstream() as upstream:
        yield upstream

