"""
Security Scanner - static policy scan of candidate source text.

Every rule is evaluated against the whole text; the report carries the
full finding set even when the candidate is already known to be blocked.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache

from foundry.core.config import get_config
from foundry.security.rules import PolicyRuleSet, default_rules, load_rules

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Reasons matched by block rules and by flag rules."""

    blocked: list[str] = field(default_factory=list)
    flagged: list[str] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked)

    @property
    def is_clean(self) -> bool:
        return not self.blocked and not self.flagged


class SecurityScanner:
    """Classifies source text into blocked and flagged findings."""

    def __init__(self, rules: PolicyRuleSet | None = None):
        self._rules = rules or default_rules()

    @property
    def rules(self) -> PolicyRuleSet:
        return self._rules

    def scan(self, source: str) -> ScanReport:
        """
        Scan source text against every policy rule.

        Args:
            source: Candidate artifact text

        Returns:
            ScanReport with each matching reason listed once, in rule order
        """
        report = ScanReport()
        for rule in self._rules.block:
            if rule.matches(source) and rule.reason not in report.blocked:
                report.blocked.append(rule.reason)
        for rule in self._rules.flag:
            if rule.matches(source) and rule.reason not in report.flagged:
                report.flagged.append(rule.reason)
        return report


@lru_cache(maxsize=1)
def get_scanner() -> SecurityScanner:
    """
    Get the global scanner.

    The policy table is loaded once; edits to the policy file take effect
    on the next process start.
    """
    config = get_config()
    if config.policy_file is not None:
        rules = load_rules(config.policy_file)
        logger.info(
            f"Loaded policy from {config.policy_file}: "
            f"{len(rules.block)} block, {len(rules.flag)} flag rules"
        )
        return SecurityScanner(rules)
    return SecurityScanner()


def scan(source: str) -> ScanReport:
    """Scan source text with the global scanner."""
    return get_scanner().scan(source)
