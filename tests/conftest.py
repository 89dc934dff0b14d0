"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from foundry.core.config import get_config
from foundry.learning.engine import LearningEngine
from foundry.sandbox.runner import SandboxRunner
from foundry.security.scanner import get_scanner
from foundry.store.manifest import ArtifactStore
from foundry.validation.pipeline import ValidationPipeline


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def foundry_env(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point the global configuration at a temporary data directory."""
    data_dir = temp_dir / "data"
    monkeypatch.setenv("FOUNDRY_DATA_DIR", str(data_dir))
    monkeypatch.setenv("FOUNDRY_SANDBOX_TIMEOUT", "10")
    monkeypatch.delenv("FOUNDRY_POLICY_FILE", raising=False)
    get_config.cache_clear()
    get_scanner.cache_clear()
    yield data_dir
    get_config.cache_clear()
    get_scanner.cache_clear()


@pytest.fixture
def store(temp_dir: Path) -> ArtifactStore:
    """An empty artifact store."""
    return ArtifactStore(temp_dir / "store")


@pytest.fixture
def engine(temp_dir: Path) -> LearningEngine:
    """A learning engine backed by a temporary file."""
    return LearningEngine(temp_dir / "learnings.json")


@pytest.fixture
def pipeline() -> ValidationPipeline:
    """A pipeline with the default policy and a short sandbox timeout."""
    return ValidationPipeline(runner=SandboxRunner(timeout_seconds=10.0, kill_grace_seconds=1.0))


@pytest.fixture
def sandbox_dir(temp_dir: Path) -> Path:
    """Scratch directory for sandbox runs."""
    path = temp_dir / "sandbox"
    path.mkdir()
    return path
