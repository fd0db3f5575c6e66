"""Error types and categorisation for workflow nodes.

Node failures are reported to the host as records rather than tracebacks, so
every error carries a category that the host can show without parsing text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for appropriate host messaging."""

    API_KEY = "api_key"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    CONFIGURATION = "configuration"
    BROWSER = "browser"
    UNKNOWN = "unknown"


class NodeError(Exception):
    """Base class for errors raised by nodes."""


class ApplicationError(NodeError):
    """A request the node cannot serve, such as an unknown operation."""


class SchemaError(ApplicationError):
    """A structured-output schema could not be built."""


class NodeParameterError(NodeError):
    """A node parameter is missing or has the wrong shape."""

    def __init__(self, name: str, message: str | None = None) -> None:
        self.name = name
        super().__init__(message or f"Could not get parameter: {name}")


class TreeSnapshotError(NodeError):
    """Fetching the accessibility tree from the browser failed."""


class LocatorMapError(NodeError):
    """Resolving locators for accessibility-tree markers failed."""


class NodeOperationError(NodeError):
    """An operation failed while a node was processing an item."""

    def __init__(self, node_name: str, message: str, cause: BaseException | None = None) -> None:
        self.node_name = node_name
        self.message = message
        self.cause = cause
        super().__init__(message)

    @property
    def category(self) -> ErrorCategory:
        """Category of the underlying cause, or of this error without one."""
        return categorize_error(self.cause if isinstance(self.cause, Exception) else self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the host's error output."""
        payload: dict[str, Any] = {
            "node": self.node_name,
            "message": self.message,
            "category": self.category.value,
        }
        if self.cause is not None:
            payload["description"] = str(self.cause)
            payload["type"] = type(self.cause).__name__
        return payload


def categorize_error(error: Exception) -> ErrorCategory:  # noqa: PLR0911
    """Categorize an exception for appropriate host messaging.

    Args:
        error: The exception to categorize

    Returns:
        The error category

    """
    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if isinstance(error, (NodeParameterError, SchemaError)):
        return ErrorCategory.CONFIGURATION

    if isinstance(error, (TreeSnapshotError, LocatorMapError)):
        return ErrorCategory.BROWSER

    if any(
        keyword in error_str
        for keyword in ["api key", "api_key", "unauthorized", "401", "invalid key", "authentication"]
    ):
        return ErrorCategory.API_KEY

    if any(keyword in error_str for keyword in ["rate limit", "429", "too many requests", "quota"]):
        return ErrorCategory.RATE_LIMIT

    # Checked before network: playwright reports slow navigations as "Timeout 30000ms exceeded"
    if "timeout" in error_str or "timeout" in error_type or "timed out" in error_str:
        return ErrorCategory.TIMEOUT

    if any(
        keyword in error_str
        for keyword in ["connection", "network", "unreachable", "econnrefused", "websocket", "dns", "ssl"]
    ):
        return ErrorCategory.NETWORK

    if any(keyword in error_str for keyword in ["permission", "403", "forbidden", "access denied"]):
        return ErrorCategory.PERMISSION

    if any(keyword in error_str for keyword in ["target closed", "page closed", "browser has been closed", "cdp"]):
        return ErrorCategory.BROWSER

    if any(keyword in error_str for keyword in ["config", "configuration", "missing", "required"]):
        return ErrorCategory.CONFIGURATION

    logger.debug("Uncategorized error", error=str(error), error_type=type(error).__name__)
    return ErrorCategory.UNKNOWN
