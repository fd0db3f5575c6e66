"""Structured-output schemas for extraction requests.

Schemas are described by data only: a list of typed fields, a JSON Schema
document, or an example document. Each is compiled into a pydantic model
that the automation library uses as the extraction target.
"""

from __future__ import annotations

import json
import keyword
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from .config import FieldSpec
from .errors import SchemaError
from .logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = get_logger(__name__)

__all__ = [
    "SchemaSource",
    "build_schema",
    "example_to_model",
    "fields_to_model",
    "json_schema_to_model",
]

_FIELD_TYPES: dict[str, Any] = {
    "string": str,
    "number": float,
    "boolean": bool,
    "array": list[Any],
    "object": dict[str, Any],
}

_JSON_SCHEMA_SCALARS: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "null": type(None),
}


class SchemaSource(str, Enum):
    """Ways a node parameter can describe an extraction schema."""

    FIELD_LIST = "fieldList"
    JSON_SCHEMA = "jsonSchema"
    EXAMPLE = "example"


class ExtractionModel(BaseModel):
    """Base of every generated schema model."""

    model_config = ConfigDict(populate_by_name=True)


def _python_name(name: str) -> str:
    """Map a JSON key onto a valid, non-reserved field name."""
    candidate = re.sub(r"\W", "_", name)
    if (
        not candidate
        or candidate[0].isdigit()
        or candidate.startswith(("_", "model_"))
        or keyword.iskeyword(candidate)
        or hasattr(BaseModel, candidate)
    ):
        candidate = f"field_{candidate}"
    return candidate


def _make_model(model_name: str, definitions: dict[str, tuple[Any, dict[str, Any]]]) -> type[BaseModel]:
    """Create a model, aliasing keys that are not usable as field names."""
    fields_: dict[str, Any] = {}
    for key, (annotation, options) in definitions.items():
        python_name = _python_name(key)
        while python_name in fields_:
            python_name = f"{python_name}_"
        if python_name != key:
            options = {**options, "alias": key}
        fields_[python_name] = (annotation, Field(**options))
    return create_model(model_name, __base__=ExtractionModel, **fields_)


def _model_name(name: str) -> str:
    parts = re.split(r"[^0-9a-zA-Z]+", name)
    return "".join(part[:1].upper() + part[1:] for part in parts if part) or "Model"


def fields_to_model(
    fields: Sequence[FieldSpec | Mapping[str, Any]],
    model_name: str = "ExtractSchema",
) -> type[BaseModel]:
    """Build a model from a list of typed fields.

    Args:
        fields: Field specs, or the raw dicts the host stores for them
        model_name: Name of the generated model

    Returns:
        The generated pydantic model

    Raises:
        SchemaError: If a field entry is malformed

    """
    definitions: dict[str, tuple[Any, dict[str, Any]]] = {}
    for raw in fields:
        try:
            spec = raw if isinstance(raw, FieldSpec) else FieldSpec.model_validate(raw)
        except ValidationError as e:
            msg = f"Invalid field definition {raw!r}: {e}"
            raise SchemaError(msg) from e
        annotation = _FIELD_TYPES.get(spec.field_type, Any)
        if spec.optional:
            definitions[spec.field_name] = (Optional[annotation], {"default": None})  # noqa: UP045
        else:
            definitions[spec.field_name] = (annotation, {})
    return _make_model(model_name, definitions)


def _json_schema_type(schema: Mapping[str, Any], name: str) -> Any:  # noqa: ANN401, C901, PLR0911
    if not isinstance(schema, dict):
        return Any

    if "enum" in schema:
        values = tuple(schema["enum"])
        return Literal[values] if values else Any

    if "const" in schema:
        return Literal[(schema["const"],)]

    for combinator in ("anyOf", "oneOf"):
        if combinator in schema:
            options = [
                _json_schema_type(option, f"{name}_{index}") for index, option in enumerate(schema[combinator])
            ]
            return Union[tuple(options)] if options else Any  # noqa: UP007

    declared = schema.get("type")
    if isinstance(declared, list):
        nullable = "null" in declared
        options = [_json_schema_type({**schema, "type": item}, name) for item in declared if item != "null"]
        if not options:
            return type(None)
        resolved = Union[tuple(options)] if len(options) > 1 else options[0]  # noqa: UP007
        return Optional[resolved] if nullable else resolved  # noqa: UP045

    if declared == "object" or (declared is None and "properties" in schema):
        if "properties" not in schema:
            return dict[str, Any]
        return _object_model(schema, name)

    if declared == "array":
        items = schema.get("items")
        if items is None:
            return list[Any]
        return list[_json_schema_type(items, f"{name}_item")]

    if isinstance(declared, str) and declared in _JSON_SCHEMA_SCALARS:
        return _JSON_SCHEMA_SCALARS[declared]

    return Any


def _object_model(schema: Mapping[str, Any], name: str) -> type[BaseModel]:
    required = set(schema.get("required", []))
    definitions: dict[str, tuple[Any, dict[str, Any]]] = {}
    for key, prop in schema.get("properties", {}).items():
        annotation = _json_schema_type(prop, f"{name}_{key}")
        description = prop.get("description") if isinstance(prop, dict) else None
        if key in required:
            definitions[key] = (annotation, {"description": description})
        else:
            definitions[key] = (Optional[annotation], {"default": None, "description": description})  # noqa: UP045
    return _make_model(_model_name(schema.get("title") or name), definitions)


def json_schema_to_model(schema: Mapping[str, Any], model_name: str = "ExtractSchema") -> type[BaseModel]:
    """Build a model from a JSON Schema document.

    Supports nested objects, arrays, enums, ``type`` lists including
    ``null``, ``anyOf``/``oneOf``, ``description`` and ``required``.

    Args:
        schema: JSON Schema whose root describes an object
        model_name: Name of the generated model

    Returns:
        The generated pydantic model

    Raises:
        SchemaError: If the root is not an object schema

    """
    if not isinstance(schema, dict):
        msg = "JSON schema must be an object"
        raise SchemaError(msg)
    declared = schema.get("type", "object" if "properties" in schema else None)
    if declared != "object":
        msg = f"JSON schema root must have type 'object', got {declared!r}"
        raise SchemaError(msg)
    return _object_model({**schema, "title": None}, model_name)


def _example_type(value: Any, name: str) -> Any:  # noqa: ANN401
    # bool before numbers: bool is a subclass of int
    if isinstance(value, bool):
        return bool
    if isinstance(value, (int, float)):
        return float
    if isinstance(value, str):
        return str
    if isinstance(value, list):
        if not value:
            return list[Any]
        return list[_example_type(value[0], f"{name}_item")]
    if isinstance(value, dict):
        return _example_model(value, name)
    return Any


def _example_model(example: Mapping[str, Any], name: str) -> type[BaseModel]:
    definitions = {key: (_example_type(value, f"{name}_{key}"), {}) for key, value in example.items()}
    return _make_model(_model_name(name), definitions)


def example_to_model(example: Mapping[str, Any], model_name: str = "ExtractSchema") -> type[BaseModel]:
    """Infer a model from an example document; every key is required."""
    if not isinstance(example, dict):
        msg = "Example JSON must be an object"
        raise SchemaError(msg)
    return _example_model(example, model_name)


def _parse_json(value: str | Mapping[str, Any], what: str) -> Any:  # noqa: ANN401
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        msg = f"Invalid {what}: {e}"
        raise SchemaError(msg) from e


def build_schema(
    source: SchemaSource | str,
    *,
    fields: Sequence[FieldSpec | Mapping[str, Any]] | None = None,
    json_schema: str | Mapping[str, Any] | None = None,
    example: str | Mapping[str, Any] | None = None,
    model_name: str = "ExtractSchema",
) -> type[BaseModel]:
    """Build an extraction model from the chosen schema source.

    Args:
        source: Which description to use
        fields: Field list, for ``fieldList``
        json_schema: JSON Schema text or document, for ``jsonSchema``
        example: Example JSON text or document, for ``example``
        model_name: Name of the generated model

    Returns:
        The generated pydantic model

    Raises:
        SchemaError: For unsupported sources or invalid descriptions

    """
    try:
        kind = SchemaSource(source)
    except ValueError as e:
        msg = f"Unsupported schema source: {source}"
        raise SchemaError(msg) from e

    logger.debug("Building extraction schema", source=kind.value)
    if kind is SchemaSource.FIELD_LIST:
        return fields_to_model(fields or [], model_name)
    if kind is SchemaSource.JSON_SCHEMA:
        if json_schema is None:
            msg = "A JSON schema is required"
            raise SchemaError(msg)
        return json_schema_to_model(_parse_json(json_schema, "JSON schema"), model_name)
    if example is None:
        msg = "An example JSON document is required"
        raise SchemaError(msg)
    return example_to_model(_parse_json(example, "example JSON"), model_name)
