"""
Capability Forge - render, validate and persist artifacts.

The forge is the only writer of the artifact store. A definition is
rendered, driven through the validation pipeline, and stored only when the
sandbox passes; every other path ends in a rejected outcome and leaves the
store untouched. Incremental edits (add_tool, add_hook) rebuild the whole
extension and run it through the same cycle.
"""

import logging
from pathlib import Path

from foundry.core.config import FoundryConfig
from foundry.core.exceptions import StoreError
from foundry.core.models import ArtifactKind, SubmissionOutcome, SubmissionState
from foundry.generator.models import ArtifactDefinition, EndpointSpec, HookSpec, ToolSpec
from foundry.generator.renderer import CodeGenerator, crystallized_definition
from foundry.learning.models import PatternEntry
from foundry.store.manifest import ArtifactStore
from foundry.validation.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)


class CapabilityForge:
    """Coordinates the generator, the validation pipeline and the store."""

    def __init__(
        self,
        store: ArtifactStore,
        pipeline: ValidationPipeline,
        generator: CodeGenerator | None = None,
        work_dir: Path | None = None,
    ):
        self._store = store
        self._pipeline = pipeline
        self._generator = generator or CodeGenerator()
        self._work_dir = work_dir or Path("var/foundry/sandbox")

    @classmethod
    def from_config(cls, config: FoundryConfig) -> "CapabilityForge":
        return cls(
            store=ArtifactStore.from_config(config),
            pipeline=ValidationPipeline.from_config(config),
            work_dir=config.sandbox_dir,
        )

    @property
    def store(self) -> ArtifactStore:
        return self._store

    async def write(self, definition: ArtifactDefinition) -> SubmissionOutcome:
        """
        Submit a definition for acceptance.

        Returns:
            SubmissionOutcome ending in ACCEPTED (with its store location)
            or REJECTED (with the errors that caused it)
        """
        try:
            rendered = self._generator.render(definition)
        except ValueError as e:
            outcome = SubmissionOutcome(artifact_id=definition.id)
            outcome.reject(f"Render failed: {e}")
            return outcome

        outcome = await self._pipeline.evaluate(
            rendered.source,
            definition.kind,
            self._work_dir,
            artifact_id=definition.id,
        )
        if outcome.state != SubmissionState.SANDBOX_PASSED:
            return outcome

        try:
            location = self._store.upsert(definition, rendered.files)
        except StoreError as e:
            logger.error(f"Accepted '{definition.id}' could not be stored: {e}")
            outcome.reject(f"Store write failed: {e.message}")
            return outcome

        outcome.location = str(location)
        outcome.advance(SubmissionState.ACCEPTED)
        logger.info(f"Accepted {definition.kind.value} '{definition.id}'")
        return outcome

    async def write_extension(
        self,
        artifact_id: str,
        name: str,
        description: str = "",
        tools: list[ToolSpec] | None = None,
        hooks: list[HookSpec] | None = None,
    ) -> SubmissionOutcome:
        """Create or replace an extension with the given tools and hooks."""
        return await self.write(
            ArtifactDefinition(
                id=artifact_id,
                kind=ArtifactKind.EXTENSION,
                name=name,
                description=description,
                tools=list(tools or []),
                hooks=list(hooks or []),
            )
        )

    async def write_tool(
        self, artifact_id: str, tool: ToolSpec, description: str = ""
    ) -> SubmissionOutcome:
        """Create or replace a standalone single-tool artifact."""
        return await self.write(
            ArtifactDefinition(
                id=artifact_id,
                kind=ArtifactKind.TOOL,
                name=tool.label or tool.name,
                description=description or tool.description,
                tools=[tool],
            )
        )

    async def write_hook(
        self, artifact_id: str, hook: HookSpec, name: str | None = None, description: str = ""
    ) -> SubmissionOutcome:
        """Create or replace a standalone single-hook artifact."""
        return await self.write(
            ArtifactDefinition(
                id=artifact_id,
                kind=ArtifactKind.HOOK,
                name=name or f"{hook.event} hook",
                description=description,
                hooks=[hook],
            )
        )

    async def write_skill(
        self,
        artifact_id: str,
        name: str,
        base_url: str,
        endpoints: list[EndpointSpec],
        description: str = "",
    ) -> SubmissionOutcome:
        """Create or replace an API skill exposing one tool per endpoint."""
        return await self.write(
            ArtifactDefinition(
                id=artifact_id,
                kind=ArtifactKind.SKILL,
                name=name,
                description=description,
                base_url=base_url,
                endpoints=list(endpoints),
            )
        )

    async def add_tool(self, extension_id: str, tool: ToolSpec) -> SubmissionOutcome:
        """Append a tool to an existing extension and revalidate the whole of it."""
        existing = self._existing_extension(extension_id)
        if isinstance(existing, SubmissionOutcome):
            return existing
        if tool.name in existing.tool_names():
            return self._rejected(extension_id, f"Tool '{tool.name}' already exists in '{extension_id}'")
        return await self.write(existing.model_copy(update={"tools": [*existing.tools, tool]}))

    async def add_hook(self, extension_id: str, hook: HookSpec) -> SubmissionOutcome:
        """Append a hook to an existing extension and revalidate the whole of it."""
        existing = self._existing_extension(extension_id)
        if isinstance(existing, SubmissionOutcome):
            return existing
        return await self.write(existing.model_copy(update={"hooks": [*existing.hooks, hook]}))

    async def crystallize(self, pattern: PatternEntry) -> SubmissionOutcome:
        """Promote a learned pattern into a permanent extension."""
        definition = crystallized_definition(
            pattern.id, pattern.subject, pattern.error, pattern.resolution
        )
        logger.info(f"Crystallizing pattern {pattern.id} as '{definition.id}'")
        return await self.write(definition)

    def _existing_extension(self, extension_id: str) -> ArtifactDefinition | SubmissionOutcome:
        existing = self._store.get(extension_id)
        if existing is None:
            return self._rejected(extension_id, f"Extension '{extension_id}' not found")
        if existing.kind != ArtifactKind.EXTENSION:
            return self._rejected(
                extension_id,
                f"'{extension_id}' is a {existing.kind.value}, not an extension",
            )
        return existing

    @staticmethod
    def _rejected(artifact_id: str, error: str) -> SubmissionOutcome:
        outcome = SubmissionOutcome(artifact_id=artifact_id)
        outcome.reject(error)
        return outcome
