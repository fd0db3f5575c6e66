"""Adapter onto the ``stagehand`` browser-automation library.

Nodes talk to :class:`StagehandSession` only. It owns one library instance
attached to a remote browser, and returns plain dicts and lists so node
output never carries library objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

from .constants import DEFAULT_DOM_SETTLE_TIMEOUT_MS
from .log_lines import Usage
from .logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from pydantic import BaseModel

    from .models import ResolvedModel

logger = get_logger(__name__)

__all__ = ["SUPPORTED_AGENT_MODELS", "SessionConfig", "StagehandSession", "open_session", "to_plain"]

# Computer-use models the library maps to an agent client when running locally
SUPPORTED_AGENT_MODELS = frozenset(
    {
        "computer-use-preview-2025-03-11",
        "claude-3-5-sonnet-latest",
        "claude-3-7-sonnet-latest",
        "claude-haiku-4-5-20251001",
        "claude-sonnet-4-20250514",
        "claude-sonnet-4-5-20250929",
        "claude-opus-4-5-20251101",
        "gemini-2.5-computer-use-preview-10-2025",
    },
)


@dataclass
class SessionConfig:
    """Everything needed to attach the library to a browser."""

    cdp_url: str
    model: ResolvedModel
    verbose: int = 0
    self_heal: bool = False
    dom_settle_timeout_ms: int = DEFAULT_DOM_SETTLE_TIMEOUT_MS
    logger: Callable[[Any], None] | None = None


def to_plain(value: Any) -> Any:  # noqa: ANN401
    """Convert library result objects into JSON-compatible values."""
    if hasattr(value, "model_dump"):
        return to_plain(value.model_dump())
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def _normalize_action(action: Any) -> dict[str, Any]:  # noqa: ANN401
    plain = to_plain(action)
    if not isinstance(plain, dict):
        return {"type": None, "result": plain}
    if "type" not in plain and "action_type" in plain:
        plain["type"] = plain["action_type"]
    if "taskCompleted" not in plain and "task_completed" in plain:
        plain["taskCompleted"] = plain["task_completed"]
    return plain


class StagehandSession:
    """One library instance attached to a remote browser over CDP."""

    def __init__(self, config: SessionConfig) -> None:
        self.config = config
        self._stagehand: Any = None

    async def __aenter__(self) -> Self:
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def page(self) -> Any:  # noqa: ANN401
        if self._stagehand is None:
            msg = "Stagehand session has not been started"
            raise RuntimeError(msg)
        return self._stagehand.page

    async def start(self) -> None:
        """Create the library instance and attach it to the browser."""
        from stagehand import Stagehand, StagehandConfig  # noqa: PLC0415

        model = self.config.model
        library_config = StagehandConfig(
            env="LOCAL",
            model_name=model.model_name,
            model_api_key=model.api_key,
            verbose=self.config.verbose,
            self_heal=self.config.self_heal,
            dom_settle_timeout_ms=self.config.dom_settle_timeout_ms,
            local_browser_launch_options={"cdp_url": self.config.cdp_url},
            logger=self.config.logger,
            use_rich_logging=False,
            experimental=True,
        )
        self._stagehand = Stagehand(library_config)
        logger.info(
            "Starting Stagehand",
            cdp_url=self.config.cdp_url,
            model_name=model.model_name,
            verbose=self.config.verbose,
        )
        await self._stagehand.init()

    async def goto(self, url: str) -> None:
        """Navigate the active page, waiting for the DOM to load."""
        logger.info("Navigating", url=url)
        await self.page.goto(url, wait_until="domcontentloaded")

    async def act(self, instruction: str) -> Any:  # noqa: ANN401
        """Perform one natural-language action on the page."""
        logger.info("Executing instruction", instruction=instruction)
        return to_plain(await self.page.act(instruction))

    async def extract(self, instruction: str, schema: type[BaseModel] | None = None) -> Any:  # noqa: ANN401
        """Extract data from the page, shaped by ``schema`` when given."""
        logger.info("Extracting", instruction=instruction, schema=schema.__name__ if schema else None)
        if schema is None:
            result = await self.page.extract(instruction)
        else:
            result = await self.page.extract(instruction=instruction, schema=schema)
        return to_plain(result)

    async def observe(self, instruction: str) -> list[Any]:
        """Return the actions the library proposes for ``instruction``."""
        logger.info("Observing", instruction=instruction)
        result = to_plain(await self.page.observe(instruction))
        return result if isinstance(result, list) else [result]

    async def run_agent(
        self,
        instruction: str,
        *,
        max_steps: int,
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        """Run the computer-use agent until it finishes or runs out of steps.

        Args:
            instruction: Task for the agent
            max_steps: Step limit
            system_prompt: Extra context given to the agent as its instructions

        Returns:
            Dict with ``success``, ``message``, ``completed``, ``actions`` and ``usage``

        Raises:
            ValueError: If the model has no computer-use agent client

        """
        if self._stagehand is None:
            msg = "Stagehand session has not been started"
            raise RuntimeError(msg)
        model_id = self.config.model.id
        if model_id not in SUPPORTED_AGENT_MODELS:
            msg = f"Model {model_id!r} has no computer-use agent client"
            raise ValueError(msg)
        logger.info("Running agent", model=model_id, max_steps=max_steps)
        agent_kwargs: dict[str, Any] = {
            "model": model_id,
            "options": {"apiKey": self.config.model.api_key},
        }
        if system_prompt:
            agent_kwargs["instructions"] = system_prompt
        agent = self._stagehand.agent(**agent_kwargs)
        raw = to_plain(await agent.execute(instruction, max_steps=max_steps))
        if not isinstance(raw, dict):
            raw = {"message": str(raw)}

        completed = bool(raw.get("completed", False))
        return {
            "success": bool(raw.get("success", completed)),
            "message": raw.get("message") or "",
            "completed": completed,
            "actions": [_normalize_action(action) for action in raw.get("actions") or []],
            "usage": raw.get("usage"),
        }

    def usage(self) -> Usage:
        """Tokens the library has counted for this session so far.

        Act, extract and observe model calls are counted; the agent reports
        its own usage on its result instead.
        """
        if self._stagehand is None:
            return Usage()
        return Usage.from_metrics(self._stagehand.metrics)

    async def screenshot(self) -> bytes:
        """Capture the visible viewport as PNG."""
        return await self.page.screenshot(type="png", full_page=False)

    def current_url(self) -> str:
        return self.page.url

    async def close(self) -> None:
        """Detach the library; safe to call more than once."""
        if self._stagehand is None:
            return
        stagehand, self._stagehand = self._stagehand, None
        await stagehand.close()
        logger.info("Stagehand closed", cdp_url=self.config.cdp_url)


def open_session(config: SessionConfig) -> StagehandSession:
    """Create an unstarted session; enter it with ``async with``."""
    return StagehandSession(config)
