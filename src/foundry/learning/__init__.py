"""Runtime learning: failures, patterns, crystallization and pruning."""

from foundry.learning.engine import LearningEngine, LearningSummary
from foundry.learning.maintenance import LearningMaintenance, MaintenanceReport, MaintenanceStatus
from foundry.learning.models import (
    FailureEntry,
    InsightEntry,
    LearningEntry,
    PatternEntry,
    SuccessEntry,
    resolve_failure,
)
from foundry.learning.observer import ToolOutcomeObserver
from foundry.learning.signatures import KNOWN_SIGNATURES, ErrorSignature, match_signature

__all__ = [
    "KNOWN_SIGNATURES",
    "ErrorSignature",
    "FailureEntry",
    "InsightEntry",
    "LearningEngine",
    "LearningEntry",
    "LearningMaintenance",
    "LearningSummary",
    "MaintenanceReport",
    "MaintenanceStatus",
    "PatternEntry",
    "SuccessEntry",
    "ToolOutcomeObserver",
    "match_signature",
    "resolve_failure",
]
