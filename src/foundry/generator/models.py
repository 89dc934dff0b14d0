"""
Artifact definitions.

An ArtifactDefinition is the caller-facing description of a capability:
what tools and hooks it contributes, or which HTTP endpoints a skill wraps.
The generator turns it into source text; the store persists it alongside
that text once the pipeline accepts it.
"""

import keyword
import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from foundry.core.models import ArtifactKind, utc_now

ARTIFACT_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")
TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_TOOL_CODE = 'return {"content": [{"type": "text", "text": "Not implemented"}]}'
DEFAULT_HOOK_CODE = "return None"


class ParameterSpec(BaseModel):
    """One parameter of a tool's input schema."""

    type: str = "string"
    description: str = ""


class ToolSpec(BaseModel):
    """A tool contributed by an artifact."""

    name: str
    label: str | None = None
    description: str = ""
    properties: dict[str, ParameterSpec] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    code: str = DEFAULT_TOOL_CODE

    @field_validator("name")
    @classmethod
    def _name_is_identifier(cls, value: str) -> str:
        if not TOOL_NAME_PATTERN.match(value) or keyword.iskeyword(value):
            raise ValueError(f"tool name must be a Python identifier, got {value!r}")
        return value

    def input_schema(self) -> dict:
        """JSON schema handed to the host as the tool's parameters."""
        return {
            "type": "object",
            "properties": {
                name: param.model_dump() for name, param in self.properties.items()
            },
            "required": list(self.required),
        }


class HookSpec(BaseModel):
    """A lifecycle hook contributed by an artifact."""

    event: str = Field(min_length=1)
    code: str = DEFAULT_HOOK_CODE


class EndpointSpec(BaseModel):
    """An HTTP endpoint wrapped by a skill."""

    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    path: str = Field(min_length=1)
    description: str = ""

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


class ArtifactDefinition(BaseModel):
    """A capability artifact as submitted by the agent and kept by the store."""

    id: str
    kind: ArtifactKind
    name: str = Field(min_length=1)
    description: str = ""
    tools: list[ToolSpec] = Field(default_factory=list)
    hooks: list[HookSpec] = Field(default_factory=list)
    base_url: str | None = None
    endpoints: list[EndpointSpec] = Field(default_factory=list)
    source: str = Field(default="request", description="request, failure or crystallization")
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @field_validator("id")
    @classmethod
    def _id_format(cls, value: str) -> str:
        if not ARTIFACT_ID_PATTERN.match(value):
            raise ValueError(
                "id must be 1-64 lowercase letters, digits, '-' or '_', "
                f"starting with a letter or digit, got {value!r}"
            )
        return value

    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def hook_events(self) -> list[str]:
        return [hook.event for hook in self.hooks]


class RenderedArtifact(BaseModel):
    """Source text produced for one definition."""

    entry_point: str
    files: dict[str, str]

    @property
    def source(self) -> str:
        """Text of the entry point module, the part that gets validated."""
        return self.files[self.entry_point]
