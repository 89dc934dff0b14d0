"""
Learning entries.

Entries form a tagged union on ``type``. A failure becomes a pattern only
through resolve_failure(); nothing turns a pattern back into a failure,
and successes and insights never change type.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from foundry.core.exceptions import InvalidTransitionError
from foundry.core.models import utc_now


def new_entry_id(prefix: str) -> str:
    """Time-ordered id such as ``fail_1718000000000_3f9a2c``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class _EntryBase(BaseModel):
    id: str
    timestamp: str = Field(default_factory=utc_now)
    use_count: int = Field(default=0, ge=0)


class FailureEntry(_EntryBase):
    """An invocation that errored and has no resolution yet."""

    type: Literal["failure"] = "failure"
    subject: str
    error: str
    context: str | None = None


class PatternEntry(_EntryBase):
    """A failure with an attached resolution."""

    type: Literal["pattern"] = "pattern"
    subject: str
    error: str
    resolution: str
    context: str | None = None
    resolved_at: str = Field(default_factory=utc_now)
    last_used_at: str | None = None
    crystallized_artifact_id: str | None = None
    crystallization_error: str | None = None

    @property
    def crystallized(self) -> bool:
        return self.crystallized_artifact_id is not None


class SuccessEntry(_EntryBase):
    """A successful invocation."""

    type: Literal["success"] = "success"
    subject: str
    context: str | None = None
    use_count: int = Field(default=1, ge=0)


class InsightEntry(_EntryBase):
    """Free-form knowledge recorded by the agent."""

    type: Literal["insight"] = "insight"
    context: str


LearningEntry = Annotated[
    Union[FailureEntry, PatternEntry, SuccessEntry, InsightEntry],
    Field(discriminator="type"),
]

ENTRY_ADAPTER: TypeAdapter[LearningEntry] = TypeAdapter(LearningEntry)
ENTRIES_ADAPTER: TypeAdapter[list[LearningEntry]] = TypeAdapter(list[LearningEntry])


def resolve_failure(entry: LearningEntry, resolution: str) -> PatternEntry:
    """
    The failure-to-pattern transition.

    Raises:
        InvalidTransitionError: If the entry is not a failure
    """
    if not isinstance(entry, FailureEntry):
        raise InvalidTransitionError(
            f"Only failures can be resolved into patterns, '{entry.id}' is a {entry.type}",
            entry_id=entry.id,
            entry_type=entry.type,
        )
    return PatternEntry(
        id=entry.id,
        timestamp=entry.timestamp,
        use_count=entry.use_count,
        subject=entry.subject,
        error=entry.error,
        context=entry.context,
        resolution=resolution,
    )


def last_activity(entry: LearningEntry) -> datetime:
    """When an entry was last touched; patterns count their last reuse."""
    stamp = entry.timestamp
    if isinstance(entry, PatternEntry):
        stamp = entry.last_used_at or entry.resolved_at or entry.timestamp
    parsed = datetime.fromisoformat(stamp)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
