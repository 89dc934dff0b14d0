"""Isolated execution of candidate artifacts."""

from foundry.sandbox.harness import ERROR_PREFIX, OK_MARKER
from foundry.sandbox.runner import SandboxRunner

__all__ = ["ERROR_PREFIX", "OK_MARKER", "SandboxRunner"]
