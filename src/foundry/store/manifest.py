"""
Artifact Store - persistent manifest of accepted artifacts.

Layout under the store root:

- manifest.json (ordered artifact definitions keyed by id)
- manifest.json.lock (inter-process writer lock)
- artifacts/{artifact_id}/ (rendered source files)

Sources are staged in a temporary directory and renamed into place before
the manifest is rewritten. Writers hold both an in-process RLock and an
flock on the lock file, and the manifest is always replaced atomically.
"""

import logging
import os
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from foundry.core.config import FoundryConfig
from foundry.core.exceptions import StoreError
from foundry.core.models import ArtifactKind, utc_now
from foundry.core.persistence import atomic_write_text, locked_file, read_json
from foundry.generator.models import ArtifactDefinition

logger = logging.getLogger(__name__)

_STAGING_PREFIX = ".staging-"
_RETIRED_PREFIX = ".retired-"


class ManifestIndex(BaseModel):
    """Root document of the artifact store."""

    version: str = "1.0"
    updated_at: str = Field(default_factory=utc_now)
    artifacts: list[ArtifactDefinition] = Field(default_factory=list)

    def find(self, artifact_id: str) -> int | None:
        """Position of an artifact in the manifest, or None."""
        for index, artifact in enumerate(self.artifacts):
            if artifact.id == artifact_id:
                return index
        return None


@dataclass
class ReconcileReport:
    """What a reconciliation pass repaired."""

    dropped_entries: list[str] = field(default_factory=list)
    removed_dirs: list[str] = field(default_factory=list)
    quarantined_manifest: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.dropped_entries or self.removed_dirs or self.quarantined_manifest)


class ArtifactStore:
    """
    File-backed store of accepted artifacts.

    Reads always go to disk, so separate store instances and separate
    processes observe each other's writes.
    """

    MANIFEST_FILE = "manifest.json"
    SOURCES_DIR = "artifacts"

    def __init__(self, root: Path | None = None, reconcile: bool = True):
        """Initialize the store, reconciling manifest and sources on load."""
        self._root = root or Path("var/foundry/store")
        self._sources_dir = self._root / self.SOURCES_DIR
        self._sources_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        if reconcile:
            self.reconcile()

    @classmethod
    def from_config(cls, config: FoundryConfig) -> "ArtifactStore":
        return cls(config.manifest_dir)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def manifest_path(self) -> Path:
        return self._root / self.MANIFEST_FILE

    def source_dir(self, artifact_id: str) -> Path:
        """Directory holding an artifact's rendered files."""
        return self._sources_dir / artifact_id

    # Manifest I/O

    def _read_manifest(self) -> tuple[ManifestIndex, bool]:
        """Load the manifest; the flag reports whether the file was unusable."""
        data = read_json(self.manifest_path, default=None)
        if data is None:
            corrupt = self.manifest_path.exists() and bool(
                self.manifest_path.read_text(encoding="utf-8", errors="replace").strip()
            )
            return ManifestIndex(), corrupt
        if not isinstance(data, dict) or not isinstance(data.get("artifacts", []), list):
            logger.warning(f"Ignoring manifest {self.manifest_path} with unexpected shape")
            return ManifestIndex(), True

        artifacts: list[ArtifactDefinition] = []
        for raw in data.get("artifacts", []):
            try:
                artifacts.append(ArtifactDefinition(**raw))
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping invalid manifest entry {raw!r:.80}: {e}")
        return (
            ManifestIndex(
                version=str(data.get("version", "1.0")),
                updated_at=str(data.get("updated_at", utc_now())),
                artifacts=artifacts,
            ),
            False,
        )

    def _load_manifest(self) -> ManifestIndex:
        index, _ = self._read_manifest()
        return index

    def _save_manifest(self, index: ManifestIndex) -> None:
        index.updated_at = utc_now()
        atomic_write_text(self.manifest_path, index.model_dump_json(indent=2))

    # Operations

    def upsert(self, definition: ArtifactDefinition, files: dict[str, str]) -> Path:
        """
        Persist an accepted artifact and its files.

        An existing entry with the same id is replaced in place and keeps its
        original creation time; a new id is appended.

        Args:
            definition: The accepted definition
            files: Relative file name -> text

        Returns:
            Directory the files were written to

        Raises:
            StoreError: If the files or the manifest cannot be written
        """
        for name in files:
            if not name or Path(name).name != name or name in (".", ".."):
                raise StoreError(
                    f"Invalid artifact file name: {name!r}",
                    artifact_id=definition.id,
                    operation="upsert",
                )

        with self._lock, locked_file(self.manifest_path):
            target = self.source_dir(definition.id)
            token = uuid.uuid4().hex[:8]
            staging = self._sources_dir / f"{_STAGING_PREFIX}{definition.id}-{token}"
            retired = self._sources_dir / f"{_RETIRED_PREFIX}{definition.id}-{token}"

            try:
                staging.mkdir(parents=True)
                for name, content in files.items():
                    (staging / name).write_text(content, encoding="utf-8")
                if target.exists():
                    os.replace(target, retired)
                os.replace(staging, target)
            except OSError as e:
                shutil.rmtree(staging, ignore_errors=True)
                if retired.exists() and not target.exists():
                    os.replace(retired, target)
                raise StoreError(
                    f"Failed to write sources for '{definition.id}': {e}",
                    artifact_id=definition.id,
                    operation="upsert",
                ) from e

            index = self._load_manifest()
            position = index.find(definition.id)
            now = utc_now()
            if position is None:
                stored = definition.model_copy(update={"updated_at": now})
                index.artifacts.append(stored)
            else:
                created_at = index.artifacts[position].created_at
                stored = definition.model_copy(update={"created_at": created_at, "updated_at": now})
                index.artifacts[position] = stored

            try:
                self._save_manifest(index)
            except OSError as e:
                shutil.rmtree(target, ignore_errors=True)
                if retired.exists():
                    os.replace(retired, target)
                raise StoreError(
                    f"Failed to write manifest for '{definition.id}': {e}",
                    artifact_id=definition.id,
                    operation="upsert",
                ) from e

            shutil.rmtree(retired, ignore_errors=True)

        action = "Added" if position is None else "Updated"
        logger.info(f"{action} {definition.kind.value} '{definition.id}' at {target}")
        return target

    def get(self, artifact_id: str) -> ArtifactDefinition | None:
        """Get an artifact definition by id."""
        with self._lock:
            index = self._load_manifest()
        position = index.find(artifact_id)
        return None if position is None else index.artifacts[position]

    def files(self, artifact_id: str) -> list[str]:
        """Names of the files stored for an artifact."""
        directory = self.source_dir(artifact_id)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def list(self, kind: ArtifactKind | None = None) -> list[ArtifactDefinition]:
        """List artifacts in manifest order, optionally filtered by kind."""
        with self._lock:
            index = self._load_manifest()
        if kind is None:
            return list(index.artifacts)
        return [a for a in index.artifacts if a.kind == kind]

    def delete(self, artifact_id: str) -> bool:
        """
        Remove an artifact's manifest entry and then its files.

        Returns:
            True if the artifact existed
        """
        with self._lock, locked_file(self.manifest_path):
            index = self._load_manifest()
            position = index.find(artifact_id)
            if position is None:
                return False
            del index.artifacts[position]
            try:
                self._save_manifest(index)
            except OSError as e:
                raise StoreError(
                    f"Failed to write manifest while deleting '{artifact_id}': {e}",
                    artifact_id=artifact_id,
                    operation="delete",
                ) from e
            shutil.rmtree(self.source_dir(artifact_id), ignore_errors=True)

        logger.info(f"Removed artifact '{artifact_id}'")
        return True

    def load_source(self, artifact_id: str, filename: str) -> str | None:
        """Read one of an artifact's files, or None if it is absent."""
        if Path(filename).name != filename:
            return None
        path = self.source_dir(artifact_id) / filename
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def summary(self) -> dict[str, int]:
        """Artifact count per kind."""
        counts = {kind.value: 0 for kind in ArtifactKind}
        for artifact in self.list():
            counts[artifact.kind.value] += 1
        return counts

    def reconcile(self) -> ReconcileReport:
        """
        Bring the manifest and the source directories back into agreement.

        Entries without sources are dropped, directories without entries are
        removed, and an unreadable manifest is moved aside. Problems are
        logged, never raised.
        """
        report = ReconcileReport()
        try:
            with self._lock, locked_file(self.manifest_path):
                index, corrupt = self._read_manifest()
                if corrupt:
                    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
                    quarantine = self.manifest_path.with_name(f"{self.MANIFEST_FILE}.corrupt-{stamp}")
                    os.replace(self.manifest_path, quarantine)
                    report.quarantined_manifest = str(quarantine)
                    logger.warning(f"Moved unreadable manifest aside to {quarantine}")

                known = {a.id for a in index.artifacts}
                kept = []
                for artifact in index.artifacts:
                    if self.source_dir(artifact.id).is_dir():
                        kept.append(artifact)
                    else:
                        report.dropped_entries.append(artifact.id)
                        logger.warning(f"Dropping manifest entry '{artifact.id}': sources missing")

                for entry in sorted(self._sources_dir.iterdir()):
                    if entry.name in known and entry.is_dir():
                        continue
                    report.removed_dirs.append(entry.name)
                    logger.warning(f"Removing orphaned artifact path {entry}")
                    if entry.is_dir():
                        shutil.rmtree(entry, ignore_errors=True)
                    else:
                        entry.unlink(missing_ok=True)

                if report.dropped_entries:
                    index.artifacts = kept
                    self._save_manifest(index)
        except OSError as e:
            logger.error(f"Reconciliation of {self._root} failed: {e}")
        return report
