"""Rendering of artifact definitions into source text."""

from foundry.generator.models import (
    ArtifactDefinition,
    EndpointSpec,
    HookSpec,
    ParameterSpec,
    RenderedArtifact,
    ToolSpec,
)
from foundry.generator.renderer import (
    CodeGenerator,
    crystallized_definition,
    to_method_name,
    to_pascal_case,
)

__all__ = [
    "ArtifactDefinition",
    "CodeGenerator",
    "EndpointSpec",
    "HookSpec",
    "ParameterSpec",
    "RenderedArtifact",
    "ToolSpec",
    "crystallized_definition",
    "to_method_name",
    "to_pascal_case",
]
