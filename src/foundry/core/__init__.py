"""Core configuration, models, errors, and persistence helpers."""

from foundry.core.config import FoundryConfig, get_config
from foundry.core.exceptions import (
    ConfigurationError,
    FoundryError,
    InvalidTransitionError,
    PolicyError,
    StoreError,
)
from foundry.core.models import (
    ArtifactKind,
    SandboxResult,
    SubmissionOutcome,
    SubmissionState,
    ValidationVerdict,
)

__all__ = [
    "ArtifactKind",
    "ConfigurationError",
    "FoundryConfig",
    "FoundryError",
    "InvalidTransitionError",
    "PolicyError",
    "SandboxResult",
    "StoreError",
    "SubmissionOutcome",
    "SubmissionState",
    "ValidationVerdict",
    "get_config",
]
