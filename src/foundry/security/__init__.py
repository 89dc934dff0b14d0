"""
Security policy scanning.

Static, side-effect free classification of candidate source text into
blocked findings (fatal) and flagged findings (advisory).
"""

from foundry.security.rules import (
    PolicyRule,
    PolicyRuleSet,
    RuleAction,
    default_rules,
    load_rules,
)
from foundry.security.scanner import ScanReport, SecurityScanner, get_scanner, scan

__all__ = [
    "PolicyRule",
    "PolicyRuleSet",
    "RuleAction",
    "ScanReport",
    "SecurityScanner",
    "default_rules",
    "get_scanner",
    "load_rules",
    "scan",
]
