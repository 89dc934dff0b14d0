"""
Core data models for the foundry.

Verdicts, sandbox results and submission outcomes are plain values handed
between the pipeline, the forge and the command surface.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from foundry.core.exceptions import InvalidTransitionError


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ArtifactKind(Enum):
    """Kinds of capability artifact the foundry can produce."""

    EXTENSION = "extension"
    TOOL = "tool"
    HOOK = "hook"
    SKILL = "skill"


class ValidationVerdict(BaseModel):
    """Outcome of validating one candidate artifact."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    security_flags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _valid_matches_errors(self) -> "ValidationVerdict":
        if self.valid != (not self.errors):
            raise ValueError("valid must be true exactly when there are no errors")
        return self

    @classmethod
    def from_findings(
        cls,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
        security_flags: list[str] | None = None,
    ) -> "ValidationVerdict":
        """Build a verdict whose validity follows from its errors."""
        errors = list(errors or [])
        return cls(
            valid=not errors,
            errors=errors,
            warnings=list(warnings or []),
            security_flags=list(security_flags or []),
        )

    def with_error(self, error: str) -> "ValidationVerdict":
        """Return a copy of this verdict with one more error appended."""
        return ValidationVerdict.from_findings(
            [*self.errors, error], self.warnings, self.security_flags
        )


class SandboxResult(BaseModel):
    """Result of executing a candidate in the isolated sandbox process."""

    success: bool
    error: str | None = None
    timed_out: bool = False
    exit_code: int | None = None
    duration_ms: int = 0


class SubmissionState(Enum):
    """States a candidate moves through on its way to acceptance."""

    PENDING = "pending"
    SYNTAX_FAILED = "syntax_failed"
    SECURITY_BLOCKED = "security_blocked"
    STRUCTURALLY_INVALID = "structurally_invalid"
    SANDBOX_TESTING = "sandbox_testing"
    SANDBOX_FAILED = "sandbox_failed"
    SANDBOX_PASSED = "sandbox_passed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_TRANSITIONS: dict[SubmissionState, frozenset[SubmissionState]] = {
    SubmissionState.PENDING: frozenset(
        {
            SubmissionState.SYNTAX_FAILED,
            SubmissionState.SECURITY_BLOCKED,
            SubmissionState.STRUCTURALLY_INVALID,
            SubmissionState.SANDBOX_TESTING,
            SubmissionState.REJECTED,
        }
    ),
    SubmissionState.SYNTAX_FAILED: frozenset({SubmissionState.REJECTED}),
    SubmissionState.SECURITY_BLOCKED: frozenset({SubmissionState.REJECTED}),
    SubmissionState.STRUCTURALLY_INVALID: frozenset({SubmissionState.REJECTED}),
    SubmissionState.SANDBOX_TESTING: frozenset(
        {SubmissionState.SANDBOX_FAILED, SubmissionState.SANDBOX_PASSED}
    ),
    SubmissionState.SANDBOX_FAILED: frozenset({SubmissionState.REJECTED}),
    SubmissionState.SANDBOX_PASSED: frozenset(
        {SubmissionState.ACCEPTED, SubmissionState.REJECTED}
    ),
    SubmissionState.ACCEPTED: frozenset(),
    SubmissionState.REJECTED: frozenset(),
}


class SubmissionOutcome(BaseModel):
    """Full record of one submission: states taken, verdict and sandbox result."""

    artifact_id: str | None = None
    state: SubmissionState = SubmissionState.PENDING
    transitions: list[SubmissionState] = Field(
        default_factory=lambda: [SubmissionState.PENDING]
    )
    verdict: ValidationVerdict = Field(
        default_factory=lambda: ValidationVerdict.from_findings()
    )
    sandbox: SandboxResult | None = None
    location: str | None = None

    @property
    def accepted(self) -> bool:
        return self.state == SubmissionState.ACCEPTED

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, state: SubmissionState) -> None:
        """
        Move to the next state.

        Raises:
            InvalidTransitionError: If the move is not an edge of the state machine
        """
        if state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Submission cannot move from {self.state.value} to {state.value}",
                entry_id=self.artifact_id,
                entry_type="submission",
            )
        self.state = state
        self.transitions.append(state)

    def reject(self, error: str) -> None:
        """Record an error and finish in the rejected state."""
        self.verdict = self.verdict.with_error(error)
        if self.state != SubmissionState.REJECTED:
            self.advance(SubmissionState.REJECTED)
