"""Persistence of accepted artifacts."""

from foundry.store.manifest import ArtifactStore, ManifestIndex, ReconcileReport

__all__ = ["ArtifactStore", "ManifestIndex", "ReconcileReport"]
