"""
Sandbox Runner - executes a candidate artifact in a separate interpreter.

Each run gets its own scratch directory holding the candidate and a copy
of the harness. The child runs in isolated mode with a stripped
environment, and is bounded by a hard timeout with TERM then KILL
escalation. The scratch directory is removed on every exit path.
"""

import asyncio
import logging
import os
import re
import shutil
import sys
import time
import uuid
from pathlib import Path

from foundry.core.config import FoundryConfig
from foundry.core.models import SandboxResult
from foundry.sandbox import harness

logger = logging.getLogger(__name__)

CANDIDATE_FILE = "candidate.py"
RUNNER_FILE = "runner.py"
STDERR_PREVIEW_CHARS = 500

_ERROR_LINE = re.compile(rf"^{re.escape(harness.ERROR_PREFIX)}\s*(.+)$", re.MULTILINE)


class SandboxRunner:
    """Runs candidate source in a throwaway child process."""

    DEFAULT_TIMEOUT_SECONDS = 15.0
    DEFAULT_KILL_GRACE_SECONDS = 2.0

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        python_executable: str | None = None,
    ):
        self._timeout = timeout_seconds
        self._kill_grace = kill_grace_seconds
        self._python = python_executable or sys.executable

    @classmethod
    def from_config(cls, config: FoundryConfig) -> "SandboxRunner":
        return cls(
            timeout_seconds=config.sandbox_timeout_seconds,
            kill_grace_seconds=config.sandbox_kill_grace_seconds,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def run(self, source: str, work_dir: Path) -> SandboxResult:
        """
        Execute a candidate's registration entry point in a child process.

        Args:
            source: Candidate module source
            work_dir: Directory under which the scratch directory is created

        Returns:
            SandboxResult; success only when the child exits 0 and printed the marker
        """
        started = time.monotonic()
        run_dir: Path | None = None
        try:
            run_dir = self._prepare(Path(work_dir), source)
            return await self._execute(run_dir, started)
        except OSError as e:
            logger.error(f"Sandbox setup failed: {e}")
            return SandboxResult(
                success=False,
                error=f"Sandbox setup failed: {e}",
                duration_ms=_elapsed_ms(started),
            )
        finally:
            if run_dir is not None:
                shutil.rmtree(run_dir, ignore_errors=True)

    def run_sync(self, source: str, work_dir: Path) -> SandboxResult:
        """Blocking variant of run() for callers without an event loop."""
        return asyncio.run(self.run(source, work_dir))

    def _prepare(self, work_dir: Path, source: str) -> Path:
        work_dir.mkdir(parents=True, exist_ok=True)
        run_dir = work_dir / f"sandbox_{uuid.uuid4().hex[:12]}"
        run_dir.mkdir()
        (run_dir / CANDIDATE_FILE).write_text(source, encoding="utf-8")
        shutil.copyfile(harness.__file__, run_dir / RUNNER_FILE)
        return run_dir

    def _child_env(self, run_dir: Path) -> dict[str, str]:
        return {
            "PATH": os.defpath,
            "HOME": str(run_dir),
            "TMPDIR": str(run_dir),
            "LANG": "C.UTF-8",
        }

    async def _execute(self, run_dir: Path, started: float) -> SandboxResult:
        try:
            process = await asyncio.create_subprocess_exec(
                self._python,
                "-I",
                "-B",
                str(run_dir / RUNNER_FILE),
                str(run_dir / CANDIDATE_FILE),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(run_dir),
                env=self._child_env(run_dir),
            )
        except OSError as e:
            logger.error(f"Failed to start sandbox process: {e}")
            return SandboxResult(
                success=False,
                error=f"Failed to start sandbox process: {e}",
                duration_ms=_elapsed_ms(started),
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            await self._terminate(process)
            logger.warning(f"Sandbox run in {run_dir.name} timed out after {self._timeout:g}s")
            return SandboxResult(
                success=False,
                error=f"Sandbox timeout ({self._timeout:g}s)",
                timed_out=True,
                exit_code=process.returncode,
                duration_ms=_elapsed_ms(started),
            )

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        exit_code = process.returncode

        if exit_code == 0 and harness.OK_MARKER in out:
            return SandboxResult(success=True, exit_code=0, duration_ms=_elapsed_ms(started))

        return SandboxResult(
            success=False,
            error=_diagnose(exit_code, err),
            exit_code=exit_code,
            duration_ms=_elapsed_ms(started),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM, then SIGKILL once the grace period lapses."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()


def _diagnose(exit_code: int | None, stderr: str) -> str:
    match = _ERROR_LINE.search(stderr)
    if match:
        return match.group(1).strip()
    preview = stderr.strip()[:STDERR_PREVIEW_CHARS]
    if preview:
        return preview
    if exit_code == 0:
        return "Sandbox exited without reporting success"
    return f"Exit code {exit_code}"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
