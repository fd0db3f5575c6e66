"""Tests for the Stagehand node with the automation session mocked out."""

from __future__ import annotations

from pathlib import Path

import pytest

from stagehand_nodes import screenshots
from stagehand_nodes.errors import ApplicationError, NodeOperationError, NodeParameterError, SchemaError
from stagehand_nodes.models import ModelConfig
from stagehand_nodes.nodes.stagehand import StagehandNode
from tests.conftest import TEST_API_KEY, FakeSession, make_context

NO_USAGE = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def _params(operation: str, **extra: object) -> dict:
    return {"operation": operation, "cdpUrl": "ws://localhost:9222/devtools/browser/abc", **extra}


class TestModelConnection:
    """The connected chat model is checked before any item runs."""

    @pytest.mark.asyncio
    async def test_missing_model_aborts_run(self, fake_session: FakeSession) -> None:
        """Without a connected model the node raises and opens no session."""
        context = make_context(_params("act", instructions="Click"))

        with pytest.raises(NodeOperationError, match="A Chat Model is required"):
            await StagehandNode().execute(context)

        assert fake_session.config is None

    @pytest.mark.asyncio
    async def test_model_is_passed_to_session(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """The session config carries the provider/model name and options."""
        context = make_context(
            _params("act", instructions="Click", options={"selfHeal": True, "verbose": "2"}),
            model=ModelConfig(provider="google_genai", id="gemini-2.0-flash", api_key=TEST_API_KEY),
        )

        await StagehandNode().execute(context)

        config = fake_session.config
        assert config.model.model_name == "google/gemini-2.0-flash"
        assert config.model.api_key == TEST_API_KEY
        assert config.cdp_url == "ws://localhost:9222/devtools/browser/abc"
        assert config.self_heal is True
        assert config.verbose == 2
        assert config.dom_settle_timeout_ms == 10_000

    @pytest.mark.asyncio
    async def test_log_messages_raise_library_verbosity(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
    ) -> None:
        """Collecting messages asks the library for info lines, not errors alone."""
        context = make_context(_params("act", instructions="Click", options={"logMessages": True}), model=model_config)

        await StagehandNode().execute(context)

        assert fake_session.config.verbose == 1


class TestParameters:
    """Parameter problems surface as NodeParameterError."""

    @pytest.mark.asyncio
    async def test_missing_cdp_url(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """An empty CDP URL is rejected."""
        context = make_context({"operation": "act", "instructions": "Click"}, model=model_config)

        with pytest.raises(NodeParameterError, match="CDP URL is required"):
            await StagehandNode().execute(context)

    @pytest.mark.asyncio
    async def test_invalid_options(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """Out-of-range advanced options are rejected."""
        context = make_context(_params("act", instructions="Click", options={"verbose": 7}), model=model_config)

        with pytest.raises(NodeParameterError, match="Invalid advanced options"):
            await StagehandNode().execute(context)

    @pytest.mark.asyncio
    async def test_agent_rejects_chat_only_model(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """The agent operation names the usable models and opens no session for others."""
        context = make_context(_params("agent", instructions="Find"), model=model_config)

        with pytest.raises(NodeParameterError, match="Model 'gpt-4o' cannot run the agent operation") as exc_info:
            await StagehandNode().execute(context)

        assert "claude-sonnet-4-20250514" in str(exc_info.value)
        assert "computer-use-preview-2025-03-11" in str(exc_info.value)
        assert fake_session.config is None
        fake_session.run_agent.assert_not_awaited()


class TestAct:
    """The act operation."""

    @pytest.mark.asyncio
    async def test_runs_each_instruction_line(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """Non-empty lines run in order and the session is closed afterwards."""
        context = make_context(
            _params("act", instructions="Click A\n\n   Click B  \n", pageUrl="https://example.com"),
            model=model_config,
        )

        [result] = await StagehandNode().execute(context)

        fake_session.goto.assert_awaited_once_with("https://example.com")
        assert [call.args[0] for call in fake_session.act.await_args_list] == ["Click A", "Click B"]
        assert result.error is None
        assert result.json == {
            "operation": "act",
            "results": [
                {"instruction": "Click A", "result": {"success": True, "message": "clicked"}},
                {"instruction": "Click B", "result": {"success": True, "message": "clicked"}},
            ],
            "usage": NO_USAGE,
            "currentUrl": "https://example.com/",
        }
        assert fake_session.closed == 1

    @pytest.mark.asyncio
    async def test_usage_counts_only_this_run(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """Usage is the growth of the library's token counters across the instructions."""
        fake_session.spend(7, 3)

        def act(instruction: str) -> dict:
            fake_session.spend(100, 20)
            return {"success": True}

        fake_session.act.side_effect = act
        context = make_context(_params("act", instructions="One\nTwo"), model=model_config)

        [result] = await StagehandNode().execute(context)

        assert result.json["usage"] == {"prompt_tokens": 200, "completion_tokens": 40, "total_tokens": 240}

    @pytest.mark.asyncio
    async def test_messages_are_sanitized(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """With logMessages, screenshot lines are dropped and lines are trimmed."""

        def act(instruction: str) -> dict:
            fake_session.log("Starting action for: Click", category="act", level=1, auxiliary={"x": {"value": "1"}})
            fake_session.log("took screenshot", category="act", level=1)
            return {"success": True}

        fake_session.act.side_effect = act
        context = make_context(_params("act", instructions="Click", options={"logMessages": True}), model=model_config)

        [result] = await StagehandNode().execute(context)

        assert result.json["messages"] == [{"category": "act", "message": "Starting action for: Click", "level": 1}]

    @pytest.mark.asyncio
    async def test_screenshots_after_each_action(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Each instruction writes a PNG under the nodes home directory."""
        monkeypatch.setattr(screenshots, "NODES_HOME", tmp_path)
        context = make_context(
            _params("act", instructions="One\nTwo", options={"takeScreenshots": True, "screenshotsFolder": "shots"}),
            model=model_config,
        )

        [result] = await StagehandNode().execute(context)

        paths = [Path(path) for path in result.json["screenshots"]]
        assert len(paths) == 2
        for path in paths:
            assert path.parent == tmp_path / "shots"
            assert path.read_bytes() == b"\x89PNG fake"
        assert paths[0].name.startswith("act-1-")
        assert paths[1].name.startswith("act-2-")


class TestExtractAndObserve:
    """The extract and observe operations."""

    @pytest.mark.asyncio
    async def test_extract_with_field_list(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """Only the first instruction line is used and the schema follows the fields."""
        context = make_context(
            _params(
                "extract",
                instructions="Get the title\nignored",
                schemaSource="fieldList",
                fields={
                    "field": [
                        {"fieldName": "title", "fieldType": "string"},
                        {"fieldName": "price", "fieldType": "number", "optional": True},
                    ],
                },
            ),
            model=model_config,
        )

        [result] = await StagehandNode().execute(context)

        instruction, schema = fake_session.extract.await_args.args
        assert instruction == "Get the title"
        assert set(schema.model_fields) == {"title", "price"}
        assert schema.model_validate({"title": "Book"}).price is None
        assert result.json == {"operation": "extract", "result": {"title": "Example Domain"}}

    @pytest.mark.asyncio
    async def test_extract_with_example_json(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """An example document is turned into the extraction schema."""
        context = make_context(
            _params("extract", instructions="Get it", schemaSource="example", exampleJson='{"title": "x", "n": 1}'),
            model=model_config,
        )

        await StagehandNode().execute(context)

        _, schema = fake_session.extract.await_args.args
        assert schema.model_fields["n"].annotation is float

    @pytest.mark.asyncio
    async def test_invalid_schema_becomes_error_item(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
    ) -> None:
        """A broken JSON schema fails the item, not the run, and the session still closes."""
        context = make_context(
            _params("extract", instructions="Get it", schemaSource="jsonSchema", jsonSchema="{not json"),
            model=model_config,
        )

        [result] = await StagehandNode().execute(context)

        assert result.json == {"operation": "extract"}
        assert isinstance(result.error, NodeOperationError)
        assert isinstance(result.error.cause, SchemaError)
        assert result.error.message.startswith("Error executing Stagehand operation: Invalid JSON schema")
        assert result.to_dict()["error"]["category"] == "configuration"
        assert fake_session.closed == 1

    @pytest.mark.asyncio
    async def test_observe(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """Observe returns the proposed actions and logs when asked."""
        fake_session.observe.side_effect = lambda instruction: (
            fake_session.log("Found 1 element", category="observe", level=1)
            or [{"selector": "xpath=/html/body/a", "description": "More info"}]
        )
        context = make_context(
            _params("observe", instructions="find the link", options={"logMessages": True}),
            model=model_config,
        )

        [result] = await StagehandNode().execute(context)

        fake_session.observe.assert_awaited_once_with("find the link")
        assert result.json == {
            "operation": "observe",
            "result": [{"selector": "xpath=/html/body/a", "description": "More info"}],
            "messages": [{"category": "observe", "message": "Found 1 element", "level": 1}],
        }


class TestAgent:
    """The agent operation."""

    @pytest.mark.asyncio
    async def test_agent_receives_context_and_limits(
        self,
        fake_session: FakeSession,
        agent_model_config: ModelConfig,
    ) -> None:
        """Context becomes the system prompt; actions are simplified in the output."""
        fake_session.run_agent.return_value = {
            "success": True,
            "message": "Found it",
            "completed": True,
            "actions": [
                {"type": "click", "reasoning": "open", "parameters": None, "taskCompleted": False, "x": 10},
                {"type": "function", "reasoning": "done", "parameters": None, "taskCompleted": True},
            ],
        }
        context = make_context(
            _params("agent", instructions="  Find the birth date  ", maxSteps=5, agentContext="Be brief"),
            model=agent_model_config,
        )

        [result] = await StagehandNode().execute(context)

        fake_session.run_agent.assert_awaited_once_with("Find the birth date", max_steps=5, system_prompt="Be brief")
        assert result.json["success"] is True
        assert result.json["actions"][0] == {
            "type": "click",
            "reasoning": "open",
            "parameters": None,
            "taskCompleted": False,
        }
        assert result.json["actionCount"] == 2
        assert "extractResult" not in result.json
        assert result.json["usage"] == NO_USAGE
        assert result.json["currentUrl"] == "https://example.com/"
        fake_session.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_extract_after_agent(self, fake_session: FakeSession, agent_model_config: ModelConfig) -> None:
        """The extraction runs on the final page and reports its own usage."""

        def extract(instruction: str, schema: object) -> dict:
            fake_session.spend(50, 5)
            return {"date": "1990-01-01"}

        fake_session.run_agent.return_value = {
            "success": False,
            "message": "step limit",
            "completed": False,
            "actions": [],
            "usage": {"input_tokens": 300, "output_tokens": 30, "inference_time_ms": 900},
        }
        fake_session.extract.side_effect = extract
        context = make_context(
            _params(
                "agent",
                instructions="Find",
                extractAfterAgent=True,
                extractInstruction="Get the date",
                extractSchemaSource="fieldList",
                extractFields={"field": [{"fieldName": "date", "fieldType": "string"}]},
            ),
            model=agent_model_config,
        )

        [result] = await StagehandNode().execute(context)

        instruction, schema = fake_session.extract.await_args.args
        assert instruction == "Get the date"
        assert set(schema.model_fields) == {"date"}
        assert result.json["extractResult"] == {"date": "1990-01-01"}
        assert result.json["extractUsage"] == {"prompt_tokens": 50, "completion_tokens": 5, "total_tokens": 55}
        assert result.json["usage"] == {"prompt_tokens": 300, "completion_tokens": 30, "total_tokens": 330}
        assert result.json["success"] is True
        assert result.json["completed"] is True

    @pytest.mark.asyncio
    async def test_empty_extraction_falls_back_to_agent_message(
        self,
        fake_session: FakeSession,
        agent_model_config: ModelConfig,
    ) -> None:
        """An empty extraction is replaced by the agent's final message; the task is the instruction."""
        fake_session.run_agent.return_value = {
            "success": True,
            "message": "Born on 1 Jan 1990",
            "completed": True,
            "actions": [],
        }
        fake_session.extract.return_value = {}
        context = make_context(_params("agent", instructions="Find", extractAfterAgent=True), model=agent_model_config)

        [result] = await StagehandNode().execute(context)

        assert fake_session.extract.await_args.args[0] == "Find"
        assert result.json["extractResult"] == {"data": "Born on 1 Jan 1990"}
        assert result.json["extractUsage"] == NO_USAGE

    @pytest.mark.asyncio
    async def test_broken_extract_schema_fails_before_agent_runs(
        self,
        fake_session: FakeSession,
        agent_model_config: ModelConfig,
    ) -> None:
        """A schema that cannot be built fails the item without spending agent steps."""
        context = make_context(
            _params(
                "agent",
                instructions="Find",
                extractAfterAgent=True,
                extractSchemaSource="jsonSchema",
                extractJsonSchema="{not json",
            ),
            model=agent_model_config,
        )

        [result] = await StagehandNode().execute(context)

        assert isinstance(result.error.cause, SchemaError)
        fake_session.run_agent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_usage_adds_counted_calls_to_agent_report(
        self,
        fake_session: FakeSession,
        agent_model_config: ModelConfig,
    ) -> None:
        """Model calls counted by the library during the run add to the agent's own usage."""

        def run_agent(instruction: str, **kwargs: object) -> dict:
            fake_session.spend(10, 2)
            return {
                "success": True,
                "message": "done",
                "completed": True,
                "actions": [],
                "usage": {"input_tokens": 30, "output_tokens": 12},
            }

        fake_session.run_agent.side_effect = run_agent
        context = make_context(_params("agent", instructions="Find"), model=agent_model_config)

        [result] = await StagehandNode().execute(context)

        assert result.json["usage"] == {"prompt_tokens": 40, "completion_tokens": 14, "total_tokens": 54}

    @pytest.mark.asyncio
    async def test_final_screenshot(
        self,
        fake_session: FakeSession,
        agent_model_config: ModelConfig,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """One screenshot is taken when the agent finishes."""
        monkeypatch.setattr(screenshots, "NODES_HOME", tmp_path)
        context = make_context(
            _params("agent", instructions="Find", options={"takeScreenshots": True}),
            model=agent_model_config,
        )

        [result] = await StagehandNode().execute(context)

        [path] = result.json["screenshots"]
        assert Path(path).parent == tmp_path / "screenshots"
        assert Path(path).name.startswith("agent-final-")


class TestFailures:
    """Per-item failures become error items."""

    @pytest.mark.asyncio
    async def test_unknown_operation(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """An unsupported operation is reported without opening a session."""
        context = make_context(_params("scroll", options={"logMessages": True}), model=model_config)

        [result] = await StagehandNode().execute(context)

        assert isinstance(result.error.cause, ApplicationError)
        assert result.error.message == "Error executing Stagehand operation: Unsupported operation: scroll"
        assert result.json == {"operation": "scroll", "messages": []}
        assert fake_session.config is None

    @pytest.mark.asyncio
    async def test_library_error_keeps_processing_items(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
    ) -> None:
        """One failing item does not stop the next one."""
        fake_session.act.side_effect = [RuntimeError("Timeout 30000ms exceeded"), {"success": True}]
        context = make_context(_params("act", instructions="Click"), items=[{}, {}], model=model_config)

        first, second = await StagehandNode().execute(context)

        assert first.error is not None
        assert first.error.category.value == "timeout"
        assert first.to_dict()["pairedItem"] == {"item": 0}
        assert second.error is None
        assert second.json["results"] == [{"instruction": "Click", "result": {"success": True}}]
        assert fake_session.closed == 2

    @pytest.mark.asyncio
    async def test_connection_failure(self, fake_session: FakeSession, model_config: ModelConfig) -> None:
        """A session that cannot start fails the item."""
        fake_session.enter_error = ConnectionError("connect ECONNREFUSED 127.0.0.1:9222")
        context = make_context(_params("observe", instructions="x"), model=model_config)

        [result] = await StagehandNode().execute(context)

        assert result.error.category.value == "network"
        fake_session.observe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_item_parameters_override_node_parameters(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
    ) -> None:
        """Per-item values win over the node's configured values."""
        context = make_context(
            _params("act", instructions="Default"),
            items=[{"q": 1}, {"q": 2}],
            item_parameters=[{"instructions": "First"}, {}],
            model=model_config,
        )

        await StagehandNode().execute(context)

        assert [call.args[0] for call in fake_session.act.await_args_list] == ["First", "Default"]

    @pytest.mark.asyncio
    async def test_failure_keeps_library_error_lines(
        self,
        fake_session: FakeSession,
        model_config: ModelConfig,
    ) -> None:
        """Messages logged before a failure are still reported on the error item."""

        def act(instruction: str) -> dict:
            fake_session.log("Error performing act: element not found", category="act", level=0)
            msg = "Target closed"
            raise RuntimeError(msg)

        fake_session.act.side_effect = act
        context = make_context(_params("act", instructions="Click", options={"logMessages": True}), model=model_config)

        [result] = await StagehandNode().execute(context)

        assert result.json == {
            "operation": "act",
            "messages": [{"category": "act", "message": "Error performing act: element not found", "level": 0}],
        }
        assert result.error.category.value == "browser"


def test_description_lists_all_operations() -> None:
    """The operation options match the handlers."""
    operation = StagehandNode.description.get_property("operation")
    assert operation is not None
    assert [option.value for option in operation.options] == list(StagehandNode._handlers)
    assert StagehandNode.description.to_dict()["usableAsTool"] is True
