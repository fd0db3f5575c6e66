"""Test configuration and fixtures for stagehand-nodes tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from stagehand_nodes.constants import AI_LANGUAGE_MODEL_CONNECTION
from stagehand_nodes.host import NodeExecutionContext
from stagehand_nodes.log_lines import Usage
from stagehand_nodes.models import ModelConfig
from stagehand_nodes.nodes import stagehand as stagehand_node

__all__ = ["FakeSession", "agent_model_config", "fake_session", "make_context", "model_config"]

TEST_API_KEY = "sk-test-key"


class FakeSession:
    """Stands in for StagehandSession and records what the node asks of it."""

    def __init__(self) -> None:
        self.config: Any = None
        self.opened = 0
        self.closed = 0
        self.enter_error: Exception | None = None
        self.url = "https://example.com/"
        self.goto = AsyncMock()
        self.act = AsyncMock(return_value={"success": True, "message": "clicked"})
        self.extract = AsyncMock(return_value={"title": "Example Domain"})
        self.observe = AsyncMock(return_value=[{"selector": "xpath=/html/body/a", "description": "More info"}])
        self.run_agent = AsyncMock(
            return_value={"success": True, "message": "done", "completed": True, "actions": []},
        )
        self.screenshot = AsyncMock(return_value=b"\x89PNG fake")
        self.tokens = Usage()

    def log(
        self,
        message: str,
        *,
        category: str | None = None,
        level: int = 1,
        auxiliary: dict[str, Any] | None = None,
    ) -> None:
        """Emit a log record shaped like the library's through the node's logger callback."""
        record: dict[str, Any] = {
            "message": {"message": message, "level": level},
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if category:
            record["category"] = category
        if auxiliary:
            record["auxiliary"] = auxiliary
        self.config.logger(record)

    def spend(self, prompt: int, completion: int) -> None:
        """Count tokens the way the library's metrics do after a model call."""
        self.tokens += Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    def usage(self) -> Usage:
        return self.tokens

    def current_url(self) -> str:
        return self.url

    async def __aenter__(self) -> FakeSession:
        self.opened += 1
        if self.enter_error is not None:
            raise self.enter_error
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed += 1


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch) -> FakeSession:
    """Replace the automation session used by the Stagehand node."""
    session = FakeSession()

    def open_session(config: Any) -> FakeSession:
        session.config = config
        return session

    monkeypatch.setattr(stagehand_node, "open_session", open_session)
    return session


@pytest.fixture
def model_config() -> ModelConfig:
    """A chat model connection with an explicit API key."""
    return ModelConfig(provider="openai", id="gpt-4o", api_key=TEST_API_KEY)


@pytest.fixture
def agent_model_config() -> ModelConfig:
    """A computer-use model connection the agent operation accepts."""
    return ModelConfig(provider="anthropic", id="claude-sonnet-4-20250514", api_key=TEST_API_KEY)


def make_context(
    parameters: dict[str, Any],
    *,
    items: list[dict[str, Any]] | None = None,
    model: Any = None,
    item_parameters: list[dict[str, Any]] | None = None,
) -> NodeExecutionContext:
    """Build an execution context with the model attached when given."""
    connections = {AI_LANGUAGE_MODEL_CONNECTION: [model]} if model is not None else None
    return NodeExecutionContext(
        items=items if items is not None else [{}],
        parameters=parameters,
        item_parameters=item_parameters,
        connections=connections,
        node_name="Stagehand",
    )
