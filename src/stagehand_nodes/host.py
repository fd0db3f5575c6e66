"""Execution context and result records shared with the workflow host."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from .constants import MAIN_CONNECTION
from .errors import NodeOperationError, NodeParameterError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .node_metadata import NodeDescription


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass
class NodeExecutionData:
    """One output item of a node run."""

    json: dict[str, Any]
    error: NodeOperationError | None = None
    paired_item: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the host."""
        payload: dict[str, Any] = {"json": self.json}
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.paired_item is not None:
            payload["pairedItem"] = {"item": self.paired_item}
        return payload


def _lookup(source: Mapping[str, Any], path: str) -> Any:  # noqa: ANN401
    current: Any = source
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return MISSING
        current = current[key]
    return current


@dataclass
class NodeExecutionContext:
    """What the host hands to a node for one run.

    ``parameters`` holds the node's configured values. ``item_parameters``
    holds per-item overrides, as produced when a parameter is an expression
    evaluated against each input item.
    """

    items: list[dict[str, Any]]
    parameters: dict[str, Any] = field(default_factory=dict)
    item_parameters: list[dict[str, Any]] | None = None
    connections: dict[str, list[Any]] | None = None
    node_name: str = "node"

    def get_input_data(self, connection_type: str = MAIN_CONNECTION) -> list[dict[str, Any]]:
        """Return the input items of the main connection."""
        if connection_type != MAIN_CONNECTION:
            return []
        return list(self.items)

    def get_node_parameter(self, name: str, index: int, default: Any = MISSING) -> Any:  # noqa: ANN401
        """Resolve a parameter for one item.

        Args:
            name: Parameter name; dots walk into collections (``options.verbose``)
            index: Index of the item being processed
            default: Value used when the parameter is not set

        Returns:
            The resolved value

        Raises:
            NodeParameterError: If the parameter is not set and no default is given

        """
        if self.item_parameters is not None and index < len(self.item_parameters):
            value = _lookup(self.item_parameters[index], name)
            if value is not MISSING:
                return value
        value = _lookup(self.parameters, name)
        if value is not MISSING:
            return value
        if default is not MISSING:
            return default
        raise NodeParameterError(name)

    def get_input_connection_data(self, connection_type: str, index: int = 0) -> Any:  # noqa: ANN401
        """Return the sub-node attached to a connection, or None."""
        if not self.connections:
            return None
        attached = self.connections.get(connection_type) or []
        if index >= len(attached):
            return None
        return attached[index]


class Node(ABC):
    """Base class for workflow nodes."""

    description: ClassVar[NodeDescription]

    @abstractmethod
    async def execute(self, context: NodeExecutionContext) -> list[NodeExecutionData]:
        """Process every input item and return one result per item."""
