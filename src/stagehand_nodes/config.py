"""Pydantic models for node parameters."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import DEFAULT_DOM_SETTLE_TIMEOUT_MS, DEFAULT_SCREENSHOTS_FOLDER


class _HostModel(BaseModel):
    """Base for models filled from camelCase host parameters."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FieldSpec(_HostModel):
    """One entry of a field-list schema."""

    field_name: str = Field(min_length=1, description="Name of the output field")
    field_type: str = Field(default="string", description="string, number, boolean, array or object")
    optional: bool = Field(default=False, description="Whether the field may be missing")

    @field_validator("field_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        """Drop surrounding whitespace from field names."""
        stripped = value.strip()
        if not stripped:
            msg = "field name must not be blank"
            raise ValueError(msg)
        return stripped


class AdvancedOptions(_HostModel):
    """The ``options`` collection of the Stagehand node."""

    self_heal: bool = Field(default=False, description="Retry a failed observed action with a fresh act call")
    dom_settle_timeout_ms: int = Field(
        default=DEFAULT_DOM_SETTLE_TIMEOUT_MS,
        ge=0,
        description="How long to wait for the DOM to settle before acting",
    )
    log_messages: bool = Field(default=False, description="Include library log lines in the output")
    verbose: Literal[0, 1, 2] = Field(default=0, description="Library log verbosity: 0 errors, 1 info, 2 debug")
    take_screenshots: bool = Field(default=False, description="Save a screenshot after each step")
    screenshots_folder: str = Field(
        default=DEFAULT_SCREENSHOTS_FOLDER,
        description="Screenshot folder, relative to the nodes home directory",
    )

    @field_validator("verbose", mode="before")
    @classmethod
    def coerce_verbose(cls, value: object) -> object:
        """Accept the verbosity as the string the host's options widget stores."""
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    @property
    def library_verbose(self) -> int:
        """Verbosity handed to the library.

        The library only forwards lines at or below its verbosity to the
        logger callback, and level 0 carries errors alone. Collecting
        messages for the output therefore needs at least info level.
        """
        if self.log_messages:
            return max(self.verbose, 1)
        return self.verbose
