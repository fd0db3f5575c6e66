"""Stagehand node: browser automation primitives against a remote browser."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from stagehand_nodes.automation import SUPPORTED_AGENT_MODELS, SessionConfig, StagehandSession, open_session
from stagehand_nodes.config import AdvancedOptions
from stagehand_nodes.constants import (
    AI_LANGUAGE_MODEL_CONNECTION,
    DEFAULT_AGENT_MAX_STEPS,
    DEFAULT_DOM_SETTLE_TIMEOUT_MS,
    DEFAULT_SCREENSHOTS_FOLDER,
    MAIN_CONNECTION,
)
from stagehand_nodes.errors import ApplicationError, NodeOperationError, NodeParameterError
from stagehand_nodes.host import Node, NodeExecutionContext, NodeExecutionData
from stagehand_nodes.log_lines import MessageLog, Usage, sanitize_messages
from stagehand_nodes.logging_config import get_logger
from stagehand_nodes.models import ResolvedModel, resolve_model
from stagehand_nodes.node_metadata import (
    DisplayOptions,
    NodeDescription,
    NodeGroup,
    NodeProperty,
    PropertyOption,
    PropertyType,
    register_node_with_metadata,
)
from stagehand_nodes.schemas import SchemaSource, build_schema
from stagehand_nodes.screenshots import take_screenshot, timestamped_name

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)

DEFAULT_EXAMPLE_JSON = '{\n  "title": "My Title",\n  "description": "My Description"\n}'
DEFAULT_JSON_SCHEMA = (
    '{\n  "$schema": "http://json-schema.org/draft-07/schema#",\n  "type": "object",\n'
    '  "properties": {\n    "title": { "type": "string", "description": "The page title" },\n'
    '    "description": { "type": "string", "description": "The page description" }\n  },\n'
    '  "required": ["title", "description"]\n}'
)
DEFAULT_AGENT_EXTRACT_SCHEMA = (
    '{\n  "type": "object",\n  "properties": {\n'
    '    "data": { "type": "string", "description": "The extracted data" }\n  },\n'
    '  "required": ["data"]\n}'
)


def _show(**conditions: list[Any]) -> DisplayOptions:
    return DisplayOptions(show=dict(conditions))


def _field_list_entry(with_descriptions: bool) -> PropertyOption:
    return PropertyOption(
        name="field",
        display_name="Field",
        values=[
            NodeProperty(
                name="fieldName",
                display_name="Name",
                type=PropertyType.STRING,
                default="",
                required=True,
                description="Property name in the extracted object" if with_descriptions else None,
            ),
            NodeProperty(
                name="fieldType",
                display_name="Type",
                type=PropertyType.OPTIONS,
                default="string",
                required=True,
                options=[
                    PropertyOption(name="Array", value="array"),
                    PropertyOption(name="Boolean", value="boolean"),
                    PropertyOption(name="Number", value="number"),
                    PropertyOption(name="Object", value="object"),
                    PropertyOption(name="String", value="string"),
                ],
            ),
            NodeProperty(name="optional", display_name="Optional", type=PropertyType.BOOLEAN, default=False),
        ],
    )


_FIELD_LIST_TYPE_OPTIONS = {
    "multipleValues": True,
    "multipleValueButtonText": "Add Field",
    "minRequiredFields": 1,
}

STAGEHAND_DESCRIPTION = NodeDescription(
    name="stagehand",
    display_name="Stagehand",
    icon="file:stagehand.svg",
    group=[NodeGroup.TRANSFORM],
    subtitle='={{$parameter["operation"]}}',
    description="Control browser using Stagehand with CDP URL",
    defaults={"name": "Stagehand"},
    inputs=[MAIN_CONNECTION, AI_LANGUAGE_MODEL_CONNECTION],
    input_names=["", "Model"],
    outputs=[MAIN_CONNECTION],
    usable_as_tool=True,
    properties=[
        NodeProperty(
            name="operation",
            display_name="Operation",
            type=PropertyType.OPTIONS,
            default="act",
            no_data_expression=True,
            options=[
                PropertyOption(
                    name="Act",
                    value="act",
                    description="Execute an action on the page using natural language",
                    action="Execute an action on the page",
                ),
                PropertyOption(
                    name="Extract",
                    value="extract",
                    description="Extract structured data from the page",
                    action="Extract data from the page",
                ),
                PropertyOption(
                    name="Observe",
                    value="observe",
                    description="Observe the page and plan an action",
                    action="Observe the page",
                ),
                PropertyOption(
                    name="Agent",
                    value="agent",
                    description="Execute a complex multi-step task autonomously with a computer-use model",
                    action="Run autonomous agent",
                ),
            ],
        ),
        NodeProperty(
            name="cdpUrl",
            display_name="CDP URL",
            type=PropertyType.STRING,
            default="",
            required=True,
            placeholder="ws://localhost:9222/devtools/browser/...",
            description="Chrome DevTools Protocol URL to connect to the browser",
        ),
        NodeProperty(
            name="pageUrl",
            display_name="Page URL",
            type=PropertyType.STRING,
            default="",
            placeholder="https://google.com",
            description="URL to navigate to before performing the action (required for act/extract)",
        ),
        NodeProperty(
            name="instructions",
            display_name="Instructions",
            type=PropertyType.STRING,
            default="",
            required=True,
            type_options={"rows": 4},
            placeholder='Click "Accept cookies"\nType "hello" in the search box\nClick the search button',
            description="Instructions for Stagehand (one per line, executed in sequence)",
        ),
        NodeProperty(
            name="maxSteps",
            display_name="Max Steps",
            type=PropertyType.NUMBER,
            default=DEFAULT_AGENT_MAX_STEPS,
            description="Maximum number of steps the agent can take to complete the task",
            display_options=_show(operation=["agent"]),
        ),
        NodeProperty(
            name="agentContext",
            display_name="Context",
            type=PropertyType.STRING,
            default="",
            type_options={"rows": 3},
            placeholder="Additional context for the agent...",
            description="Additional context to help the agent understand the task",
            display_options=_show(operation=["agent"]),
        ),
        NodeProperty(
            name="extractAfterAgent",
            display_name="Extract After Agent",
            type=PropertyType.BOOLEAN,
            default=False,
            description="Run an extract operation on the page after the agent completes",
            display_options=_show(operation=["agent"]),
        ),
        NodeProperty(
            name="extractInstruction",
            display_name="Extract Instruction",
            type=PropertyType.STRING,
            default="",
            type_options={"rows": 2},
            placeholder="Extract the birth date from the page",
            description="What data to extract from the page after agent completes",
            display_options=_show(operation=["agent"], extractAfterAgent=[True]),
        ),
        NodeProperty(
            name="extractSchemaSource",
            display_name="Extract Schema Source",
            type=PropertyType.OPTIONS,
            default=SchemaSource.JSON_SCHEMA.value,
            options=[
                PropertyOption(name="Field List", value=SchemaSource.FIELD_LIST.value),
                PropertyOption(name="JSON Schema", value=SchemaSource.JSON_SCHEMA.value),
            ],
            display_options=_show(operation=["agent"], extractAfterAgent=[True]),
        ),
        NodeProperty(
            name="extractFields",
            display_name="Extract Fields",
            type=PropertyType.FIXED_COLLECTION,
            default=[],
            type_options=_FIELD_LIST_TYPE_OPTIONS,
            description="Fields to extract",
            options=[_field_list_entry(with_descriptions=False)],
            display_options=_show(
                operation=["agent"],
                extractAfterAgent=[True],
                extractSchemaSource=[SchemaSource.FIELD_LIST.value],
            ),
        ),
        NodeProperty(
            name="extractJsonSchema",
            display_name="Extract JSON Schema",
            type=PropertyType.JSON,
            default=DEFAULT_AGENT_EXTRACT_SCHEMA,
            type_options={"rows": 6},
            display_options=_show(
                operation=["agent"],
                extractAfterAgent=[True],
                extractSchemaSource=[SchemaSource.JSON_SCHEMA.value],
            ),
        ),
        NodeProperty(
            name="schemaSource",
            display_name="Schema Source",
            type=PropertyType.OPTIONS,
            default=SchemaSource.FIELD_LIST.value,
            required=True,
            options=[
                PropertyOption(name="Field List", value=SchemaSource.FIELD_LIST.value),
                PropertyOption(name="Example JSON", value=SchemaSource.EXAMPLE.value),
                PropertyOption(name="JSON Schema", value=SchemaSource.JSON_SCHEMA.value),
            ],
            display_options=_show(operation=["extract"]),
        ),
        NodeProperty(
            name="fields",
            display_name="Fields",
            type=PropertyType.FIXED_COLLECTION,
            default=[],
            type_options=_FIELD_LIST_TYPE_OPTIONS,
            description="List of output fields and their types",
            options=[_field_list_entry(with_descriptions=True)],
            display_options=_show(operation=["extract"], schemaSource=[SchemaSource.FIELD_LIST.value]),
        ),
        NodeProperty(
            name="exampleJson",
            display_name="Example JSON",
            type=PropertyType.JSON,
            default=DEFAULT_EXAMPLE_JSON,
            required=True,
            type_options={"rows": 4},
            display_options=_show(operation=["extract"], schemaSource=[SchemaSource.EXAMPLE.value]),
        ),
        NodeProperty(
            name="jsonSchema",
            display_name="JSON Schema",
            type=PropertyType.JSON,
            default=DEFAULT_JSON_SCHEMA,
            required=True,
            type_options={"rows": 6},
            display_options=_show(operation=["extract"], schemaSource=[SchemaSource.JSON_SCHEMA.value]),
        ),
        NodeProperty(
            name="options",
            display_name="Advanced Options",
            type=PropertyType.COLLECTION,
            default={},
            placeholder="Add Option",
            description="Advanced options for Stagehand",
            options=[
                NodeProperty(
                    name="selfHeal",
                    display_name="Self Heal",
                    type=PropertyType.BOOLEAN,
                    default=False,
                    description="Retry a failed observed action with a fresh act call",
                ),
                NodeProperty(
                    name="domSettleTimeoutMs",
                    display_name="DOM Settle Timeout (ms)",
                    type=PropertyType.NUMBER,
                    default=DEFAULT_DOM_SETTLE_TIMEOUT_MS,
                    description=(
                        "How long to wait for the DOM to stabilize before taking actions. "
                        "Increase for slow/dynamic pages."
                    ),
                ),
                NodeProperty(
                    name="logMessages",
                    display_name="Log Messages",
                    type=PropertyType.BOOLEAN,
                    default=False,
                    description="Whether to include Stagehand log messages in the node output",
                ),
                NodeProperty(
                    name="verbose",
                    display_name="Verbose Level",
                    type=PropertyType.OPTIONS,
                    default=0,
                    options=[
                        PropertyOption(name="Errors Only", value=0),
                        PropertyOption(name="Info", value=1),
                        PropertyOption(name="Debug", value=2),
                    ],
                    description=(
                        "Level of Stagehand log lines collected. "
                        "With Log Messages on, at least info lines are collected."
                    ),
                ),
                NodeProperty(
                    name="takeScreenshots",
                    display_name="Take Screenshots",
                    type=PropertyType.BOOLEAN,
                    default=False,
                    description="Take a screenshot after each action and at the end",
                ),
                NodeProperty(
                    name="screenshotsFolder",
                    display_name="Screenshots Folder",
                    type=PropertyType.STRING,
                    default=DEFAULT_SCREENSHOTS_FOLDER,
                    placeholder=DEFAULT_SCREENSHOTS_FOLDER,
                    description="Folder to save screenshots (relative to the nodes home directory)",
                    display_options=_show(takeScreenshots=[True]),
                ),
            ],
        ),
    ],
)


def _instruction_lines(raw: str) -> list[str]:
    return [line.strip() for line in raw.split("\n") if line.strip()]


def _first_instruction(raw: str) -> str:
    return raw.split("\n")[0].strip()


def _usage_dict(usage: Usage | None) -> dict[str, int] | None:
    return usage.model_dump() if usage is not None else None


class _ItemRun:
    """State shared by the steps of one item's operation."""

    def __init__(
        self,
        context: NodeExecutionContext,
        index: int,
        session: StagehandSession,
        messages: MessageLog,
        options: AdvancedOptions,
    ) -> None:
        self.context = context
        self.index = index
        self.session = session
        self.messages = messages
        self.options = options
        self.screenshots: list[str] = []

    def param(self, name: str, default: Any = None) -> Any:  # noqa: ANN401
        return self.context.get_node_parameter(name, self.index, default)

    async def screenshot(self, prefix: str) -> None:
        if self.options.take_screenshots:
            path = await take_screenshot(self.session, self.options.screenshots_folder, timestamped_name(prefix))
            self.screenshots.append(path)

    def finish(self, payload: dict[str, Any], *, with_run_info: bool = False) -> dict[str, Any]:
        """Append the fields every operation may report."""
        if with_run_info:
            payload["currentUrl"] = self.session.current_url()
            if self.screenshots:
                payload["screenshots"] = list(self.screenshots)
        if self.options.log_messages:
            payload["messages"] = sanitize_messages(self.messages)
        return payload


def _check_agent_model(model: ResolvedModel) -> None:
    if model.id not in SUPPORTED_AGENT_MODELS:
        supported = ", ".join(sorted(SUPPORTED_AGENT_MODELS))
        raise NodeParameterError(
            "model",
            f"Model '{model.id}' cannot run the agent operation. Connect one of: {supported}",
        )


@register_node_with_metadata(STAGEHAND_DESCRIPTION)
class StagehandNode(Node):
    """Runs act, extract, observe or agent against a browser reached over CDP."""

    def _read_options(self, context: NodeExecutionContext, index: int) -> AdvancedOptions:
        values: dict[str, Any] = {}
        for name, spec in AdvancedOptions.model_fields.items():
            alias = spec.alias or name
            value = context.get_node_parameter(f"options.{alias}", index, None)
            if value is not None:
                values[alias] = value
        try:
            return AdvancedOptions.model_validate(values)
        except ValidationError as e:
            raise NodeParameterError("options", f"Invalid advanced options: {e}") from e

    async def execute(self, context: NodeExecutionContext) -> list[NodeExecutionData]:
        """Process every input item and return one result per item.

        Raises:
            NodeOperationError: If no usable chat model is connected
            NodeParameterError: If an item's parameters are invalid, or the
                agent operation is asked of a model without an agent client

        """
        connection = context.get_input_connection_data(AI_LANGUAGE_MODEL_CONNECTION, 0)
        try:
            model = resolve_model(connection)
        except ValueError as e:
            raise NodeOperationError(context.node_name, str(e), e) from e

        results: list[NodeExecutionData] = []
        for index, _item in enumerate(context.get_input_data()):
            results.append(await self._execute_item(context, index, model))
        return results

    async def _execute_item(
        self,
        context: NodeExecutionContext,
        index: int,
        model: ResolvedModel,
    ) -> NodeExecutionData:
        operation = context.get_node_parameter("operation", index)
        cdp_url = context.get_node_parameter("cdpUrl", index, "")
        if not cdp_url:
            raise NodeParameterError("cdpUrl", "CDP URL is required")
        if operation == "agent":
            _check_agent_model(model)
        options = self._read_options(context, index)

        messages = MessageLog()
        config = SessionConfig(
            cdp_url=cdp_url,
            model=model,
            verbose=options.library_verbose,
            self_heal=options.self_heal,
            dom_settle_timeout_ms=options.dom_settle_timeout_ms,
            logger=messages.append,
        )

        try:
            handler = self._handlers.get(operation)
            if handler is None:
                msg = f"Unsupported operation: {operation}"
                raise ApplicationError(msg)  # noqa: TRY301

            async with open_session(config) as session:
                page_url = context.get_node_parameter("pageUrl", index, "")
                if page_url:
                    await session.goto(page_url)
                run = _ItemRun(context, index, session, messages, options)
                payload = await handler(self, run)
        except Exception as e:
            logger.warning(
                "Stagehand operation failed",
                operation=operation,
                item=index,
                error=str(e),
                library_errors=[line.message for line in messages.errors()],
            )
            error = NodeOperationError(context.node_name, f"Error executing Stagehand operation: {e}", e)
            failed: dict[str, Any] = {"operation": operation}
            if options.log_messages:
                failed["messages"] = sanitize_messages(messages)
            return NodeExecutionData(json=failed, error=error, paired_item=index)

        return NodeExecutionData(json=payload, paired_item=index)

    async def _act(self, run: _ItemRun) -> dict[str, Any]:
        before = run.session.usage()
        results: list[dict[str, Any]] = []
        for step, instruction in enumerate(_instruction_lines(run.param("instructions", "")), start=1):
            results.append({"instruction": instruction, "result": await run.session.act(instruction)})
            await run.screenshot(f"act-{step}")

        usage = run.session.usage() - before
        payload = {"operation": "act", "results": results, "usage": usage.model_dump()}
        return run.finish(payload, with_run_info=True)

    def _build_schema(self, run: _ItemRun, source: str, prefix: str = "") -> Any:  # noqa: ANN401
        if source == SchemaSource.FIELD_LIST.value:
            fields_name = "extractFields.field" if prefix else "fields.field"
            return build_schema(source, fields=run.param(fields_name, []))
        if source == SchemaSource.JSON_SCHEMA.value:
            default = DEFAULT_AGENT_EXTRACT_SCHEMA if prefix else None
            return build_schema(source, json_schema=run.param("extractJsonSchema" if prefix else "jsonSchema", default))
        return build_schema(source, example=run.param("exampleJson"))

    async def _extract(self, run: _ItemRun) -> dict[str, Any]:
        instruction = _first_instruction(run.param("instructions", ""))
        schema = self._build_schema(run, run.param("schemaSource", SchemaSource.FIELD_LIST.value))
        result = await run.session.extract(instruction, schema)
        return run.finish({"operation": "extract", "result": result})

    async def _observe(self, run: _ItemRun) -> dict[str, Any]:
        instruction = _first_instruction(run.param("instructions", ""))
        result = await run.session.observe(instruction)
        return run.finish({"operation": "observe", "result": result})

    async def _agent(self, run: _ItemRun) -> dict[str, Any]:
        instruction = str(run.param("instructions", "")).strip()
        max_steps = int(run.param("maxSteps", DEFAULT_AGENT_MAX_STEPS))
        agent_context = run.param("agentContext", "")
        extract_after_agent = bool(run.param("extractAfterAgent", False))

        # Schema errors must surface before the agent spends any steps
        extract_schema = None
        if extract_after_agent:
            source = run.param("extractSchemaSource", SchemaSource.JSON_SCHEMA.value)
            extract_schema = self._build_schema(run, source, prefix="extract")

        before = run.session.usage()
        agent_result = await run.session.run_agent(
            instruction,
            max_steps=max_steps,
            system_prompt=agent_context or None,
        )
        await run.screenshot("agent-final")

        usage = run.session.usage() - before
        if isinstance(agent_result.get("usage"), dict) and agent_result["usage"]:
            usage += Usage.from_mapping(agent_result["usage"])
        actions = agent_result["actions"]

        extract_result: Any = None
        extract_usage: Usage | None = None
        if extract_after_agent:
            before_extract = run.session.usage()
            extract_instruction = str(run.param("extractInstruction", "")).strip() or instruction
            extract_result = await run.session.extract(extract_instruction, extract_schema)
            extract_usage = run.session.usage() - before_extract
            if not extract_result:
                logger.info("Extraction after agent returned nothing, using its final message")
                extract_result = {"data": agent_result["message"]}

        success = bool(agent_result["success"] or (extract_after_agent and extract_result is not None))
        payload: dict[str, Any] = {
            "operation": "agent",
            "success": success,
            "message": agent_result["message"],
            "completed": bool(agent_result["completed"] or success),
            "actions": [
                {
                    "type": action.get("type"),
                    "reasoning": action.get("reasoning"),
                    "parameters": action.get("parameters"),
                    "taskCompleted": action.get("taskCompleted"),
                }
                for action in actions
            ],
            "actionCount": len(actions),
        }
        if extract_result:
            payload["extractResult"] = extract_result
            payload["extractUsage"] = _usage_dict(extract_usage)
        payload["usage"] = usage.model_dump()
        return run.finish(payload, with_run_info=True)

    _handlers: dict[str, Callable[[StagehandNode, _ItemRun], Awaitable[dict[str, Any]]]] = {
        "act": _act,
        "extract": _extract,
        "observe": _observe,
        "agent": _agent,
    }
