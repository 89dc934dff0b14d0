"""
Learning Engine - turns runtime outcomes into reusable knowledge.

Lifecycle of an entry:

    failure --resolve--> pattern --reuse x N--> crystallized
        \\                    \\
         +--- stale ---------+--- stale ---> pruned

Entries live in a single JSON array on disk. Every mutation reloads the
file under the writer lock, applies the change and writes the array back
atomically, so concurrent engines (threads or processes) never lose each
other's updates. Queries read fresh from disk.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from foundry.core.config import FoundryConfig
from foundry.core.exceptions import InvalidTransitionError
from foundry.core.models import utc_now
from foundry.core.persistence import atomic_write_text, locked_file, read_json
from foundry.learning.models import (
    ENTRIES_ADAPTER,
    ENTRY_ADAPTER,
    FailureEntry,
    InsightEntry,
    LearningEntry,
    PatternEntry,
    SuccessEntry,
    last_activity,
    new_entry_id,
    resolve_failure,
)
from foundry.learning.signatures import KNOWN_SIGNATURES, ErrorSignature, match_signature

logger = logging.getLogger(__name__)


@dataclass
class LearningSummary:
    """Entry counts by lifecycle stage."""

    patterns: int = 0
    insights: int = 0
    unresolved_failures: int = 0
    successes: int = 0
    crystallized: int = 0

    def __str__(self) -> str:
        return (
            f"{self.patterns} patterns, {self.insights} insights, "
            f"{self.unresolved_failures} unresolved failures, {self.successes} successes"
        )


class LearningEngine:
    """Persistent store and state machine for learning entries."""

    DEFAULT_PATH = Path("var/foundry/learnings.json")

    def __init__(
        self,
        path: Path | None = None,
        *,
        success_cap: int = 100,
        relevant_window: int = 10,
        pattern_threshold: int = 3,
        crystallize_threshold: int = 5,
        retention_days: int = 30,
    ):
        self._path = path or self.DEFAULT_PATH
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.success_cap = success_cap
        self.relevant_window = relevant_window
        self.pattern_threshold = pattern_threshold
        self.crystallize_threshold = crystallize_threshold
        self.retention = timedelta(days=retention_days)

    @classmethod
    def from_config(cls, config: FoundryConfig) -> "LearningEngine":
        return cls(
            config.learnings_path,
            success_cap=config.success_cap,
            relevant_window=config.relevant_window,
            pattern_threshold=config.pattern_threshold,
            crystallize_threshold=config.crystallize_threshold,
            retention_days=config.retention_days,
        )

    @property
    def path(self) -> Path:
        return self._path

    # Persistence

    def _read(self) -> list[LearningEntry]:
        data = read_json(self._path, default=[])
        if not isinstance(data, list):
            logger.warning(f"Ignoring learnings file {self._path}: expected a JSON array")
            return []
        entries: list[LearningEntry] = []
        for raw in data:
            try:
                entries.append(ENTRY_ADAPTER.validate_python(raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid learning entry {raw!r:.80}: {e.error_count()} errors")
        return entries

    def _write(self, entries: list[LearningEntry]) -> None:
        payload = ENTRIES_ADAPTER.dump_json(entries, indent=2).decode("utf-8")
        atomic_write_text(self._path, payload)

    @contextmanager
    def _mutate(self) -> Iterator[list[LearningEntry]]:
        """Read-modify-write cycle; nothing is written if the block raises."""
        with self._lock, locked_file(self._path):
            entries = self._read()
            yield entries
            self._write(entries)

    def entries(self) -> list[LearningEntry]:
        """All entries, oldest first."""
        with self._lock:
            return self._read()

    def reload(self) -> int:
        """Re-read the file; returns the number of entries found."""
        return len(self.entries())

    @staticmethod
    def _index_of(entries: list[LearningEntry], entry_id: str) -> int | None:
        for index, entry in enumerate(entries):
            if entry.id == entry_id:
                return index
        return None

    @staticmethod
    def _open_failure_index(entries: list[LearningEntry], subject: str) -> int | None:
        # The newest failure or pattern for the subject decides: once it is
        # resolved, older unresolved failures are history, not open.
        for index in range(len(entries) - 1, -1, -1):
            entry = entries[index]
            if isinstance(entry, (FailureEntry, PatternEntry)) and entry.subject == subject:
                return index if isinstance(entry, FailureEntry) else None
        return None

    # Recording

    def record_failure(self, subject: str, error: str, context: str | None = None) -> str:
        """
        Record a failed invocation.

        A newer failure for the same subject becomes that subject's open
        failure; older unresolved ones remain as history.

        Returns:
            Id of the new failure entry
        """
        entry = FailureEntry(id=new_entry_id("fail"), subject=subject, error=error, context=context)
        with self._mutate() as entries:
            entries.append(entry)
        logger.info(f"Recorded failure {entry.id} for {subject}: {error[:120]}")
        return entry.id

    def record_resolution(self, entry_id: str, resolution: str) -> PatternEntry | None:
        """
        Attach a resolution to a failure or pattern.

        A failure becomes a pattern; a pattern only has its resolution text
        replaced.

        Returns:
            The resulting pattern, or None if the id is unknown

        Raises:
            InvalidTransitionError: If the entry is a success or an insight
        """
        with self._mutate() as entries:
            index = self._index_of(entries, entry_id)
            if index is None:
                logger.warning(f"Cannot resolve unknown learning entry {entry_id}")
                return None
            entry = entries[index]
            if isinstance(entry, PatternEntry):
                updated = entry.model_copy(update={"resolution": resolution})
            else:
                updated = resolve_failure(entry, resolution)
            entries[index] = updated

        logger.info(f"Resolved {entry_id} for {updated.subject}: {resolution[:120]}")
        return updated

    def record_success(self, subject: str, context: str | None = None) -> str:
        """
        Record a successful invocation.

        If the subject has an open failure it is resolved with
        ``Succeeded with <subject>``. Otherwise each of the subject's
        non-crystallized patterns counts one more reuse.

        Returns:
            Id of the new success entry
        """
        success = SuccessEntry(id=new_entry_id("success"), subject=subject, context=context)
        resolved_id: str | None = None

        with self._mutate() as entries:
            open_index = self._open_failure_index(entries, subject)
            if open_index is not None:
                entries[open_index] = resolve_failure(entries[open_index], f"Succeeded with {subject}")
                resolved_id = entries[open_index].id
            else:
                now = utc_now()
                for index, entry in enumerate(entries):
                    if isinstance(entry, PatternEntry) and entry.subject == subject and not entry.crystallized:
                        entries[index] = entry.model_copy(
                            update={"use_count": entry.use_count + 1, "last_used_at": now}
                        )

            entries.append(success)
            self._cap_successes(entries)

        if resolved_id:
            logger.info(f"Success for {subject} resolved open failure {resolved_id}")
        return success.id

    def _cap_successes(self, entries: list[LearningEntry]) -> None:
        success_ids = [e.id for e in entries if isinstance(e, SuccessEntry)]
        excess = len(success_ids) - self.success_cap
        if excess <= 0:
            return
        evicted = set(success_ids[:excess])
        entries[:] = [e for e in entries if e.id not in evicted]

    def record_insight(self, insight: str, context: str | None = None) -> str:
        """Record a free-form insight, optionally with supporting context."""
        text = f"{insight}\n\nContext: {context}" if context else insight
        entry = InsightEntry(id=new_entry_id("insight"), context=text)
        with self._mutate() as entries:
            entries.append(entry)
        logger.info(f"Recorded insight {entry.id}")
        return entry.id

    # Queries

    def get(self, entry_id: str) -> LearningEntry | None:
        entries = self.entries()
        index = self._index_of(entries, entry_id)
        return None if index is None else entries[index]

    def open_failure(self, subject: str) -> FailureEntry | None:
        """The subject's open failure, if it has one."""
        entries = self.entries()
        index = self._open_failure_index(entries, subject)
        return None if index is None else entries[index]

    def find_relevant(
        self,
        subject: str | None = None,
        error_substring: str | None = None,
    ) -> list[PatternEntry | InsightEntry]:
        """
        Patterns and insights matching a subject and/or error text.

        Insights have no subject, so a subject filter excludes them. They
        carry no error either and pass an error-only filter. Error matching
        is a case-insensitive substring test.

        Returns:
            Most recent first, at most ``relevant_window`` entries
        """
        needle = error_substring.lower() if error_substring else None
        matches: list[PatternEntry | InsightEntry] = []
        for entry in reversed(self.entries()):
            if isinstance(entry, InsightEntry):
                if subject:
                    continue
            elif isinstance(entry, PatternEntry):
                if subject and entry.subject != subject:
                    continue
                if needle and needle not in entry.error.lower():
                    continue
            else:
                continue
            matches.append(entry)
            if len(matches) >= self.relevant_window:
                break
        return matches

    def get_patterns(self) -> list[PatternEntry]:
        return [e for e in self.entries() if isinstance(e, PatternEntry)]

    def get_insights(self) -> list[InsightEntry]:
        return [e for e in self.entries() if isinstance(e, InsightEntry)]

    def get_recent_failures(self, limit: int = 5) -> list[FailureEntry]:
        """Unresolved failures, most recent first."""
        failures = [e for e in self.entries() if isinstance(e, FailureEntry)]
        return list(reversed(failures))[:limit]

    def crystallization_candidates(self) -> list[PatternEntry]:
        """Patterns reused often enough to be worth promoting."""
        return [
            p
            for p in self.get_patterns()
            if p.use_count >= self.pattern_threshold and not p.crystallized
        ]

    def due_for_crystallization(self) -> list[PatternEntry]:
        """Candidates past the promotion threshold that have not failed promotion."""
        return [
            p
            for p in self.crystallization_candidates()
            if p.use_count >= self.crystallize_threshold and p.crystallization_error is None
        ]

    def summary(self) -> LearningSummary:
        summary = LearningSummary()
        for entry in self.entries():
            if isinstance(entry, PatternEntry):
                summary.patterns += 1
                if entry.crystallized:
                    summary.crystallized += 1
            elif isinstance(entry, InsightEntry):
                summary.insights += 1
            elif isinstance(entry, FailureEntry):
                summary.unresolved_failures += 1
            elif isinstance(entry, SuccessEntry):
                summary.successes += 1
        return summary

    # Maintenance

    def mark_crystallized(self, entry_id: str, artifact_id: str) -> bool:
        """
        Record that a pattern was promoted to a permanent artifact.

        Returns:
            False if the pattern was already crystallized or does not exist

        Raises:
            InvalidTransitionError: If the entry is not a pattern
        """
        with self._mutate() as entries:
            index = self._index_of(entries, entry_id)
            if index is None:
                return False
            entry = entries[index]
            if not isinstance(entry, PatternEntry):
                raise InvalidTransitionError(
                    f"Only patterns can be crystallized, '{entry_id}' is a {entry.type}",
                    entry_id=entry_id,
                    entry_type=entry.type,
                )
            if entry.crystallized:
                return False
            entries[index] = entry.model_copy(
                update={"crystallized_artifact_id": artifact_id, "crystallization_error": None}
            )
        logger.info(f"Pattern {entry_id} crystallized as {artifact_id}")
        return True

    def mark_crystallization_failed(self, entry_id: str, error: str) -> None:
        """Record a rejected promotion; the pattern is not retried."""
        with self._mutate() as entries:
            index = self._index_of(entries, entry_id)
            if index is None:
                return
            entry = entries[index]
            if isinstance(entry, PatternEntry) and not entry.crystallized:
                entries[index] = entry.model_copy(update={"crystallization_error": error})
        logger.warning(f"Crystallization of {entry_id} failed: {error}")

    def auto_link(self, signatures: tuple[ErrorSignature, ...] = KNOWN_SIGNATURES) -> list[str]:
        """
        Resolve unresolved failures whose error matches a known signature.

        Returns:
            Ids of the failures that became patterns
        """
        linked: list[str] = []
        with self._mutate() as entries:
            for index, entry in enumerate(entries):
                if not isinstance(entry, FailureEntry):
                    continue
                signature = match_signature(entry.error, signatures)
                if signature is None:
                    continue
                entries[index] = resolve_failure(entry, signature.resolution)
                linked.append(entry.id)
        if linked:
            logger.info(f"Auto-linked {len(linked)} failures to known resolutions")
        return linked

    def prune(self, now: datetime | None = None) -> list[str]:
        """
        Delete entries inactive for longer than the retention window.

        Crystallized patterns are kept.

        Returns:
            Ids of the removed entries
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        removed: list[str] = []
        with self._mutate() as entries:
            kept: list[LearningEntry] = []
            for entry in entries:
                if isinstance(entry, PatternEntry) and entry.crystallized:
                    kept.append(entry)
                elif last_activity(entry) < cutoff:
                    removed.append(entry.id)
                else:
                    kept.append(entry)
            entries[:] = kept
        if removed:
            logger.info(f"Pruned {len(removed)} stale learning entries")
        return removed
