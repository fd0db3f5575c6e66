"""Node description schema and registration system."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .host import Node


class PropertyType(str, Enum):
    """Parameter widget types understood by the host."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OPTIONS = "options"
    JSON = "json"
    COLLECTION = "collection"
    FIXED_COLLECTION = "fixedCollection"


class NodeGroup(str, Enum):
    """Node groups for organization in the host's node panel."""

    TRANSFORM = "transform"


@dataclass
class PropertyOption:
    """One choice of an ``options`` property, or one entry of a fixedCollection."""

    name: str  # Label for options, key for fixedCollection entries
    value: Any = None  # Stored value (e.g., "act"); None for fixedCollection entries
    display_name: str | None = None  # Label of a fixedCollection entry
    description: str | None = None
    action: str | None = None  # Short verb phrase shown in the actions list
    values: list[NodeProperty] | None = None  # Nested properties of a fixedCollection entry


@dataclass
class DisplayOptions:
    """Conditions under which a property is shown."""

    show: dict[str, list[Any]] = field(default_factory=dict)
    hide: dict[str, list[Any]] = field(default_factory=dict)


@dataclass
class NodeProperty:
    """Definition of a node parameter."""

    name: str  # Parameter name (e.g., "cdpUrl")
    display_name: str  # Display label (e.g., "CDP URL")
    type: PropertyType
    default: Any = None
    required: bool = False
    description: str | None = None
    placeholder: str | None = None
    hint: str | None = None
    # Choices for options, entries for fixedCollection, nested properties for collection
    options: list[PropertyOption | NodeProperty] | None = None
    display_options: DisplayOptions | None = None
    type_options: dict[str, Any] | None = None  # rows, minValue, maxValue, multipleValues, ...
    no_data_expression: bool = False


@dataclass
class NodeDescription:
    """Complete description of a node as shown to the host."""

    name: str  # Internal node name (e.g., "stagehand")
    display_name: str  # Display name (e.g., "Stagehand")
    description: str  # Description for the node panel
    group: list[NodeGroup] = field(default_factory=lambda: [NodeGroup.TRANSFORM])
    version: int = 1
    icon: str | None = None  # Icon reference (e.g., "file:stagehand.svg")
    subtitle: str | None = None  # Expression rendered under the node title
    defaults: dict[str, Any] = field(default_factory=dict)
    inputs: list[str] = field(default_factory=lambda: ["main"])
    outputs: list[str] = field(default_factory=lambda: ["main"])
    input_names: list[str] | None = None
    usable_as_tool: bool = False
    properties: list[NodeProperty] = field(default_factory=list)

    def get_property(self, name: str) -> NodeProperty | None:
        """Get a top-level property by name."""
        return next((prop for prop in self.properties if prop.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        """Export the description as the camelCase JSON the host loads."""
        return _to_camel_dict(self)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_camel_dict(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_to_camel_dict(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_camel_dict(item) for key, item in value.items()}
    if hasattr(value, "__dataclass_fields__"):
        result: dict[str, Any] = {}
        for spec in fields(value):
            item = getattr(value, spec.name)
            # Unset optional keys are omitted; the host treats missing and null differently
            if item is None or (spec.name == "no_data_expression" and not item):
                continue
            if isinstance(item, dict) and not item and spec.name in {"show", "hide"}:
                continue
            result[_camel(spec.name)] = _to_camel_dict(item)
        return result
    return value


def is_property_visible(prop: NodeProperty, parameters: Mapping[str, Any]) -> bool:
    """Evaluate a property's display options against the current parameters.

    Args:
        prop: The property to check
        parameters: Current top-level node parameters

    Returns:
        True if the host would show the property

    """
    if prop.display_options is None:
        return True
    for name, allowed in prop.display_options.show.items():
        if parameters.get(name) not in allowed:
            return False
    return all(parameters.get(name) not in hidden for name, hidden in prop.display_options.hide.items())


# Global registry for node descriptions
NODE_METADATA: dict[str, NodeDescription] = {}

# Global registry for node classes
NODE_REGISTRY: dict[str, type[Node]] = {}


def register_node_with_metadata(
    description: NodeDescription,
) -> Callable[[type[Node]], type[Node]]:
    """Decorator to register a node class with its description.

    Args:
        description: Full node description

    Returns:
        Decorator function

    """

    def decorator(cls: type[Node]) -> type[Node]:
        cls.description = description
        NODE_METADATA[description.name] = description
        NODE_REGISTRY[description.name] = cls
        return cls

    return decorator


def get_node_metadata(name: str) -> NodeDescription | None:
    """Get the description of a node by name."""
    return NODE_METADATA.get(name)


def get_all_node_metadata() -> dict[str, NodeDescription]:
    """Get all node descriptions."""
    return NODE_METADATA.copy()


def get_node_class(name: str) -> type[Node]:
    """Get a registered node class by name.

    Raises:
        KeyError: If no node with that name is registered

    """
    if name not in NODE_REGISTRY:
        available = ", ".join(sorted(NODE_REGISTRY))
        msg = f"Unknown node: {name}. Available nodes: {available}"
        raise KeyError(msg)
    return NODE_REGISTRY[name]
