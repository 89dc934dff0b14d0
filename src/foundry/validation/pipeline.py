"""
Validation Pipeline - decides whether a candidate may be accepted.

Stages run in a fixed order and accumulate findings:

1. Syntax check
2. Security scan (block rules become errors, flag rules become flags)
3. Structural checks for the artifact kind
4. Sandbox execution, only when stages 1-3 produced no errors

The state reached by a submission is recorded on a SubmissionOutcome.
When several static stages fail, the first failing stage names the state.
"""

import ast
import logging
from pathlib import Path

from foundry.core.config import FoundryConfig
from foundry.core.models import (
    ArtifactKind,
    SandboxResult,
    SubmissionOutcome,
    SubmissionState,
    ValidationVerdict,
)
from foundry.sandbox.runner import SandboxRunner
from foundry.security.scanner import SecurityScanner, get_scanner
from foundry.validation.structure import check_structure

logger = logging.getLogger(__name__)


class ValidationPipeline:
    """Static checks plus sandbox execution for candidate artifacts."""

    def __init__(
        self,
        scanner: SecurityScanner | None = None,
        runner: SandboxRunner | None = None,
    ):
        self._scanner = scanner or SecurityScanner()
        self._runner = runner or SandboxRunner()

    @classmethod
    def from_config(cls, config: FoundryConfig) -> "ValidationPipeline":
        """Build a pipeline using the global policy table and configured timeouts."""
        return cls(scanner=get_scanner(), runner=SandboxRunner.from_config(config))

    @property
    def runner(self) -> SandboxRunner:
        return self._runner

    def validate(self, source: str, kind: ArtifactKind) -> ValidationVerdict:
        """
        Run the static stages (syntax, security, structure).

        Args:
            source: Candidate source text
            kind: Kind of artifact the candidate claims to be

        Returns:
            ValidationVerdict; valid exactly when no stage produced an error
        """
        verdict, _ = self._static_checks(source, kind)
        return verdict

    async def sandbox_test(self, source: str, work_dir: Path) -> SandboxResult:
        """Execute the candidate's registration entry point in the sandbox."""
        return await self._runner.run(source, work_dir)

    async def evaluate(
        self,
        source: str,
        kind: ArtifactKind,
        work_dir: Path,
        artifact_id: str | None = None,
    ) -> SubmissionOutcome:
        """
        Drive one submission through every stage.

        The outcome stops at SANDBOX_PASSED on success; the caller that
        persists the artifact completes the move to ACCEPTED.
        """
        outcome = SubmissionOutcome(artifact_id=artifact_id)
        verdict, failed_state = self._static_checks(source, kind)
        outcome.verdict = verdict

        if failed_state is not None:
            outcome.advance(failed_state)
            outcome.advance(SubmissionState.REJECTED)
            logger.info(
                f"Rejected {artifact_id or 'candidate'} at {failed_state.value}: "
                f"{'; '.join(verdict.errors)}"
            )
            return outcome

        outcome.advance(SubmissionState.SANDBOX_TESTING)
        result = await self.sandbox_test(source, work_dir)
        outcome.sandbox = result

        if not result.success:
            outcome.advance(SubmissionState.SANDBOX_FAILED)
            outcome.reject(f"Sandbox test failed: {result.error}")
            logger.info(f"Rejected {artifact_id or 'candidate'} in sandbox: {result.error}")
            return outcome

        outcome.advance(SubmissionState.SANDBOX_PASSED)
        return outcome

    def _static_checks(
        self, source: str, kind: ArtifactKind
    ) -> tuple[ValidationVerdict, SubmissionState | None]:
        errors: list[str] = []
        warnings: list[str] = []
        failed: SubmissionState | None = None

        tree: ast.Module | None = None
        try:
            tree = ast.parse(source)
        except SyntaxError as e:
            errors.append(f"Syntax error: {e.msg} (line {e.lineno})")
            failed = SubmissionState.SYNTAX_FAILED
        except ValueError as e:
            errors.append(f"Syntax error: {e}")
            failed = SubmissionState.SYNTAX_FAILED

        report = self._scanner.scan(source)
        if report.blocked:
            errors.extend(f"BLOCKED: {reason}" for reason in report.blocked)
            failed = failed or SubmissionState.SECURITY_BLOCKED

        if tree is not None:
            structure = check_structure(source, tree, kind)
            errors.extend(structure.errors)
            warnings.extend(structure.warnings)
            if structure.errors:
                failed = failed or SubmissionState.STRUCTURALLY_INVALID

        verdict = ValidationVerdict.from_findings(errors, warnings, report.flagged)
        return verdict, failed
