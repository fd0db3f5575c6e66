"""Log lines emitted by the automation library, and token usage.

The library reports every step through a logger callback, so each node run
owns a :class:`MessageLog` and hands its :meth:`MessageLog.append` method
to the library. Token usage does not travel in those lines; it is read from
the library's metrics counters as a :class:`Usage`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .constants import MAX_LOG_LINE_CHARS
from .logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = get_logger(__name__)

_SANITIZED_MARKERS = ("image", "screenshot")


def _tokens(usage: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        if usage.get(key):
            return int(usage[key])
    return 0


class Usage(BaseModel):
    """Token usage summed over model calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_mapping(cls, usage: Mapping[str, Any]) -> Usage:
        """Read usage reported in snake_case, camelCase or input/output naming."""
        prompt = _tokens(usage, "prompt_tokens", "promptTokens", "input_tokens", "inputTokens")
        completion = _tokens(usage, "completion_tokens", "completionTokens", "output_tokens", "outputTokens")
        total = _tokens(usage, "total_tokens", "totalTokens")
        if "total_tokens" not in usage and "totalTokens" not in usage:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    @classmethod
    def from_metrics(cls, metrics: Any) -> Usage:  # noqa: ANN401
        """Snapshot the running totals of a library metrics object."""
        prompt = int(getattr(metrics, "total_prompt_tokens", 0) or 0)
        completion = int(getattr(metrics, "total_completion_tokens", 0) or 0)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def __sub__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens - other.prompt_tokens,
            completion_tokens=self.completion_tokens - other.completion_tokens,
            total_tokens=self.total_tokens - other.total_tokens,
        )


@dataclass
class LogLine:
    """One log line from the automation library."""

    message: str
    category: str | None = None
    level: int | None = None
    auxiliary: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | LogLine | str) -> LogLine:
        """Build from the record the library passes to its logger callback.

        The library sends ``{"message": {"message": ..., "level": ...},
        "timestamp": ..., "category": ..., "auxiliary": ...}``, with category
        and auxiliary only present when set. A flat record with the message
        text and level at the top is read as well.
        """
        if isinstance(raw, LogLine):
            return raw
        if not isinstance(raw, dict):
            return cls(message=str(raw))
        body = raw.get("message", "")
        level = raw.get("level")
        if isinstance(body, dict):
            level = body.get("level", level)
            body = body.get("message", "")
        return cls(
            message=str(body),
            category=raw.get("category"),
            level=level,
            auxiliary=dict(raw.get("auxiliary") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"category": self.category, "message": self.message, "level": self.level}
        if self.auxiliary:
            payload["auxiliary"] = self.auxiliary
        return payload


class MessageLog:
    """Caller-owned accumulator for library log lines."""

    def __init__(self) -> None:
        self._lines: list[LogLine] = []

    def append(self, raw: Mapping[str, Any] | LogLine | str) -> None:
        """Record one line; this is the callback handed to the library."""
        line = LogLine.from_raw(raw)
        self._lines.append(line)
        logger.debug("Library log", category=line.category, level=line.level, message=line.message)

    def errors(self) -> list[LogLine]:
        """Lines the library logged at error level."""
        return [line for line in self._lines if line.level == 0]

    def __iter__(self) -> Iterator[LogLine]:
        return iter(self._lines)


def sanitize_messages(lines: Iterable[LogLine]) -> list[dict[str, Any]]:
    """Reduce log lines to what is safe to put into node output.

    Lines that mention images or screenshots, or whose serialized form is at
    least ``MAX_LOG_LINE_CHARS`` long, are dropped. The rest keep only
    category, message and level.
    """
    sanitized: list[dict[str, Any]] = []
    for line in lines:
        serialized = json.dumps(line.to_dict(), default=str)
        if any(marker in serialized for marker in _SANITIZED_MARKERS):
            continue
        if len(serialized) >= MAX_LOG_LINE_CHARS:
            continue
        sanitized.append({"category": line.category, "message": line.message, "level": line.level})
    return sanitized
