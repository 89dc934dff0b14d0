"""
Foundry configuration.

All tunables are read from FOUNDRY_* environment variables into a
validated pydantic model. The process-wide instance is cached; tests and
embedders construct FoundryConfig directly instead.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, model_validator

from foundry.core.exceptions import ConfigurationError

ENV_PREFIX = "FOUNDRY_"

# env var suffix -> config field
_ENV_FIELDS: dict[str, str] = {
    "DATA_DIR": "data_dir",
    "SANDBOX_TIMEOUT": "sandbox_timeout_seconds",
    "SANDBOX_KILL_GRACE": "sandbox_kill_grace_seconds",
    "PATTERN_THRESHOLD": "pattern_threshold",
    "CRYSTALLIZE_THRESHOLD": "crystallize_threshold",
    "RETENTION_DAYS": "retention_days",
    "SUCCESS_CAP": "success_cap",
    "RELEVANT_WINDOW": "relevant_window",
    "MAINTENANCE_INTERVAL": "maintenance_interval_seconds",
    "POLICY_FILE": "policy_file",
}


class FoundryConfig(BaseModel):
    """Runtime configuration for the foundry."""

    data_dir: Path = Field(default=Path("var/foundry"), description="Root of persisted state")
    sandbox_timeout_seconds: float = Field(default=15.0, gt=0)
    sandbox_kill_grace_seconds: float = Field(default=2.0, ge=0)
    pattern_threshold: int = Field(default=3, ge=1, description="Uses before a pattern is a candidate")
    crystallize_threshold: int = Field(default=5, ge=1, description="Uses before a pattern is promoted")
    retention_days: int = Field(default=30, ge=1)
    success_cap: int = Field(default=100, ge=1)
    relevant_window: int = Field(default=10, ge=1)
    maintenance_interval_seconds: float = Field(default=300.0, gt=0)
    policy_file: Path | None = None

    @model_validator(mode="after")
    def _check_thresholds(self) -> "FoundryConfig":
        if self.crystallize_threshold <= self.pattern_threshold:
            raise ValueError(
                "crystallize_threshold must be greater than pattern_threshold "
                f"({self.crystallize_threshold} <= {self.pattern_threshold})"
            )
        return self

    @property
    def manifest_dir(self) -> Path:
        """Directory holding the artifact manifest and sources."""
        return self.data_dir / "store"

    @property
    def learnings_path(self) -> Path:
        """Path of the persisted learning entries."""
        return self.data_dir / "learnings.json"

    @property
    def sandbox_dir(self) -> Path:
        """Scratch directory for sandbox runs."""
        return self.data_dir / "sandbox"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "FoundryConfig":
        """
        Load configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated FoundryConfig

        Raises:
            ConfigurationError: If a value is malformed or thresholds conflict
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = env.get(f"{ENV_PREFIX}{suffix}")
            if raw is not None and raw != "":
                values[field_name] = raw

        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            loc = first["loc"][0] if first["loc"] else None
            env_var = next(
                (f"{ENV_PREFIX}{k}" for k, v in _ENV_FIELDS.items() if v == loc),
                None,
            )
            raise ConfigurationError(
                f"Invalid foundry configuration: {first['msg']}",
                env_var=env_var,
                config_key=str(loc) if loc else None,
            ) from e


@lru_cache(maxsize=1)
def get_config() -> FoundryConfig:
    """Get the global foundry configuration."""
    return FoundryConfig.from_env()
