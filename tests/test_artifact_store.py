"""Tests for the artifact store."""

import json
import threading
from pathlib import Path

import pytest

from foundry.core.exceptions import StoreError
from foundry.core.models import ArtifactKind
from foundry.generator.models import ArtifactDefinition, ToolSpec
from foundry.store.manifest import ArtifactStore


def _definition(artifact_id: str = "demo", kind: ArtifactKind = ArtifactKind.EXTENSION, **kwargs):
    return ArtifactDefinition(
        id=artifact_id,
        kind=kind,
        name=kwargs.pop("name", artifact_id.title()),
        tools=kwargs.pop("tools", [ToolSpec(name="ping")]),
        **kwargs,
    )


FILES = {"__init__.py": "def register(api):\n    pass\n", "plugin.json": "{}\n"}


class TestUpsert:
    """Tests for ArtifactStore.upsert."""

    def test_add_artifact(self, store: ArtifactStore) -> None:
        """A new artifact is listed and its files written."""
        location = store.upsert(_definition(), FILES)
        assert location == store.source_dir("demo")
        assert store.get("demo") is not None
        assert store.files("demo") == ["__init__.py", "plugin.json"]
        assert store.load_source("demo", "__init__.py") == FILES["__init__.py"]

    def test_upsert_replaces_in_place(self, store: ArtifactStore) -> None:
        """Writing the same id twice keeps one entry at its original position."""
        store.upsert(_definition("first"), FILES)
        store.upsert(_definition("second"), FILES)
        store.upsert(_definition("first", name="First v2"), {"__init__.py": "X = 2\n"})

        artifacts = store.list()
        assert [a.id for a in artifacts] == ["first", "second"]
        assert artifacts[0].name == "First v2"
        assert store.files("first") == ["__init__.py"]
        assert store.load_source("first", "__init__.py") == "X = 2\n"

    def test_upsert_is_idempotent(self, store: ArtifactStore) -> None:
        """Repeating an identical write leaves the same listing."""
        store.upsert(_definition(), FILES)
        before = [(a.id, a.name, a.kind) for a in store.list()]
        store.upsert(_definition(), FILES)
        assert [(a.id, a.name, a.kind) for a in store.list()] == before

    def test_created_at_preserved(self, store: ArtifactStore) -> None:
        """Replacing an artifact keeps its creation time."""
        store.upsert(_definition(created_at="2024-01-01T00:00:00+00:00"), FILES)
        store.upsert(_definition(created_at="2025-06-01T00:00:00+00:00"), FILES)
        stored = store.get("demo")
        assert stored.created_at == "2024-01-01T00:00:00+00:00"
        assert stored.updated_at > stored.created_at

    @pytest.mark.parametrize("name", ["../escape.py", "sub/dir.py", "", ".."])
    def test_invalid_file_name(self, store: ArtifactStore, name: str) -> None:
        """File names must be plain names inside the artifact directory."""
        with pytest.raises(StoreError):
            store.upsert(_definition(), {name: "x"})
        assert store.get("demo") is None

    def test_manifest_is_json(self, store: ArtifactStore) -> None:
        """The manifest is a readable JSON document."""
        store.upsert(_definition(), FILES)
        data = json.loads(store.manifest_path.read_text())
        assert data["artifacts"][0]["id"] == "demo"
        assert data["artifacts"][0]["kind"] == "extension"

    def test_no_staging_left_behind(self, store: ArtifactStore) -> None:
        """Only final artifact directories remain after writes."""
        store.upsert(_definition(), FILES)
        store.upsert(_definition(), FILES)
        names = [p.name for p in (store.root / ArtifactStore.SOURCES_DIR).iterdir()]
        assert names == ["demo"]


class TestQueries:
    """Tests for list, get, delete and summary."""

    def test_list_by_kind(self, store: ArtifactStore) -> None:
        """list() filters by kind."""
        store.upsert(_definition("ext"), FILES)
        store.upsert(_definition("tl", kind=ArtifactKind.TOOL), {"tool.py": "X = 1\n"})
        assert [a.id for a in store.list(ArtifactKind.TOOL)] == ["tl"]
        assert store.summary() == {"extension": 1, "tool": 1, "hook": 0, "skill": 0}

    def test_get_missing(self, store: ArtifactStore) -> None:
        """Unknown ids return None."""
        assert store.get("nothing") is None
        assert store.files("nothing") == []
        assert store.load_source("nothing", "__init__.py") is None

    def test_load_source_rejects_paths(self, store: ArtifactStore) -> None:
        """load_source only reads plain file names."""
        store.upsert(_definition(), FILES)
        assert store.load_source("demo", "../manifest.json") is None

    def test_delete(self, store: ArtifactStore) -> None:
        """delete() removes the entry and its files."""
        store.upsert(_definition(), FILES)
        assert store.delete("demo")
        assert store.get("demo") is None
        assert not store.source_dir("demo").exists()

    def test_delete_missing(self, store: ArtifactStore) -> None:
        """Deleting an unknown id reports False."""
        assert not store.delete("nothing")

    def test_instances_share_state(self, temp_dir: Path) -> None:
        """Two stores on the same root see each other's writes."""
        first = ArtifactStore(temp_dir / "shared")
        second = ArtifactStore(temp_dir / "shared")
        first.upsert(_definition(), FILES)
        assert second.get("demo") is not None
        second.delete("demo")
        assert first.list() == []


class TestReconcile:
    """Tests for load-time reconciliation."""

    def test_empty_manifest_is_empty_store(self, temp_dir: Path) -> None:
        """An empty manifest file loads as an empty store."""
        root = temp_dir / "store"
        root.mkdir()
        (root / "manifest.json").write_text("")
        store = ArtifactStore(root)
        assert store.list() == []
        assert (root / "manifest.json").exists()

    def test_malformed_manifest_quarantined(self, temp_dir: Path) -> None:
        """An unparseable manifest is moved aside and the store starts empty."""
        root = temp_dir / "store"
        root.mkdir()
        (root / "manifest.json").write_text("{not json")
        store = ArtifactStore(root)
        assert store.list() == []
        assert not (root / "manifest.json").exists()
        assert len(list(root.glob("manifest.json.corrupt-*"))) == 1

    def test_binary_manifest_quarantined(self, temp_dir: Path) -> None:
        """A manifest that is not valid UTF-8 is moved aside like malformed JSON."""
        root = temp_dir / "store"
        root.mkdir()
        (root / "manifest.json").write_bytes(b"\xff\xfe\x00garbage")
        store = ArtifactStore(root)
        assert store.list() == []
        assert len(list(root.glob("manifest.json.corrupt-*"))) == 1
        store.upsert(_definition(), FILES)
        assert [a.id for a in ArtifactStore(root).list()] == ["demo"]

    def test_entry_without_sources_dropped(self, store: ArtifactStore) -> None:
        """Entries whose directory vanished are dropped on reload."""
        store.upsert(_definition("keep"), FILES)
        store.upsert(_definition("lost"), FILES)
        for path in store.source_dir("lost").iterdir():
            path.unlink()
        store.source_dir("lost").rmdir()

        reopened = ArtifactStore(store.root)
        assert [a.id for a in reopened.list()] == ["keep"]

    def test_orphan_directory_removed(self, store: ArtifactStore) -> None:
        """Directories without a manifest entry are removed."""
        store.upsert(_definition(), FILES)
        orphan = store.source_dir("orphan")
        orphan.mkdir()
        (orphan / "x.py").write_text("X = 1\n")

        report = store.reconcile()
        assert report.removed_dirs == ["orphan"]
        assert report.changed
        assert not orphan.exists()
        assert store.source_dir("demo").is_dir()

    def test_invalid_entries_skipped(self, temp_dir: Path) -> None:
        """Manifest entries that fail validation are ignored."""
        root = temp_dir / "store"
        (root / "artifacts" / "good").mkdir(parents=True)
        manifest = {
            "version": "1.0",
            "artifacts": [
                {"id": "good", "kind": "extension", "name": "Good"},
                {"id": "BAD ID", "kind": "extension", "name": "Bad"},
                {"kind": "nonsense"},
            ],
        }
        (root / "manifest.json").write_text(json.dumps(manifest))
        store = ArtifactStore(root)
        assert [a.id for a in store.list()] == ["good"]

    def test_clean_store_unchanged(self, store: ArtifactStore) -> None:
        """Reconciling a consistent store changes nothing."""
        store.upsert(_definition(), FILES)
        assert not store.reconcile().changed


class TestConcurrency:
    """Tests for concurrent writers."""

    def test_concurrent_upserts(self, store: ArtifactStore) -> None:
        """Concurrent writers never lose an entry."""
        errors: list[Exception] = []

        def writer(index: int) -> None:
            try:
                store.upsert(_definition(f"artifact-{index}"), FILES)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(a.id for a in store.list()) == sorted(f"artifact-{i}" for i in range(12))

    def test_concurrent_instances(self, temp_dir: Path) -> None:
        """Writers on separate instances serialize through the file lock."""
        root = temp_dir / "shared"
        stores = [ArtifactStore(root) for _ in range(4)]

        def writer(store: ArtifactStore, index: int) -> None:
            for n in range(3):
                store.upsert(_definition(f"s{index}-{n}"), FILES)

        threads = [threading.Thread(target=writer, args=(s, i)) for i, s in enumerate(stores)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(ArtifactStore(root).list()) == 12

    def test_concurrent_upserts_same_id(self, temp_dir: Path) -> None:
        """Racing writers for one new id leave a single entry and a whole manifest."""
        root = temp_dir / "shared"
        stores = [ArtifactStore(root) for _ in range(2)]
        barrier = threading.Barrier(len(stores))
        errors: list[Exception] = []

        def writer(store: ArtifactStore, index: int) -> None:
            barrier.wait()
            try:
                store.upsert(_definition("same", description=f"writer {index}"), FILES)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(s, i)) for i, s in enumerate(stores)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        reopened = ArtifactStore(root)
        assert [a.id for a in reopened.list()] == ["same"]
        manifest = json.loads((root / "manifest.json").read_text())
        assert [a["id"] for a in manifest["artifacts"]] == ["same"]
        assert sorted(reopened.files("same")) == sorted(FILES)
