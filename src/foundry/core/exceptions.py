"""
Foundry Exception Hierarchy.

Defines the custom exceptions raised across the foundry. Validation
outcomes are returned as data (verdicts, sandbox results); exceptions are
reserved for misconfiguration, invalid lifecycle operations and storage
failures.
"""

from typing import Any


class FoundryError(Exception):
    """
    Root of the foundry exception tree.

    Carries a short message plus optional key/value context (the offending
    env var, artifact id or rule pattern) that is appended when the error
    is printed.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"

    def to_dict(self) -> dict[str, Any]:
        """Error type, message and context as a JSON-ready mapping."""
        return {"error_type": type(self).__name__, "message": self.message, "details": self.details}


class ConfigurationError(FoundryError):
    """
    Invalid FOUNDRY_* settings or policy files.

    Raised when:
    - Environment variables hold values of the wrong type
    - Thresholds are inconsistent with each other
    - The policy rule file is missing or malformed
    """

    def __init__(
        self,
        message: str,
        *,
        config_file: str | None = None,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.config_file = config_file
        self.env_var = env_var
        self.config_key = config_key


class PolicyError(ConfigurationError):
    """Raised when a security policy file or one of its rules cannot be loaded."""

    def __init__(
        self,
        message: str,
        *,
        pattern: str | None = None,
        config_file: str | None = None,
    ):
        details = {}
        if pattern:
            details["pattern"] = pattern
        super().__init__(message, config_file=config_file, details=details)
        self.pattern = pattern


class StoreError(FoundryError):
    """
    Errors in artifact store operations.

    Raised when the manifest or an artifact's source files cannot
    be written. Read-side corruption is reconciled, not raised.
    """

    def __init__(
        self,
        message: str,
        *,
        artifact_id: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if artifact_id:
            details["artifact_id"] = artifact_id
        if operation:
            details["operation"] = operation

        super().__init__(message, details=details)
        self.artifact_id = artifact_id
        self.operation = operation


class InvalidTransitionError(FoundryError):
    """Raised when a submission or learning entry is asked to make a transition it does not have."""

    def __init__(
        self,
        message: str,
        *,
        entry_id: str | None = None,
        entry_type: str | None = None,
    ):
        details = {}
        if entry_id:
            details["entry_id"] = entry_id
        if entry_type:
            details["entry_type"] = entry_type
        super().__init__(message, details=details)
        self.entry_id = entry_id
        self.entry_type = entry_type


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, FoundryError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"
