"""
Security policy rules.

A rule is a case-insensitive regular expression paired with a reason and
an action. Block rules reject a candidate outright; flag rules only mark
it for human review. The default table covers credential paths, process
spawning, dynamic code execution, exfiltration endpoints, prompt
injection, crypto mining, persistence mechanisms and inline markup, for
both Python sources and the JavaScript idioms agents tend to emit.

An operator may replace the table with a YAML file of the shape::

    block:
      - pattern: "id_rsa"
        reason: "SSH key reference"
    flag:
      - pattern: "os\\.environ"
        reason: "Environment variable access"
"""

import re
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from foundry.core.exceptions import PolicyError


class RuleAction(Enum):
    """What a rule match does to a candidate."""

    BLOCK = "block"
    FLAG = "flag"


class PolicyRule(BaseModel):
    """A single pattern-to-reason rule."""

    pattern: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    action: RuleAction = RuleAction.BLOCK

    _compiled: re.Pattern[str] | None = PrivateAttr(default=None)

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        try:
            re.compile(value, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"invalid regular expression {value!r}: {e}") from e
        return value

    @property
    def regex(self) -> re.Pattern[str]:
        if self._compiled is None:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)
        return self._compiled

    def matches(self, source: str) -> bool:
        return self.regex.search(source) is not None


class PolicyRuleSet(BaseModel):
    """Ordered block rules plus ordered flag rules."""

    block: list[PolicyRule] = Field(default_factory=list)
    flag: list[PolicyRule] = Field(default_factory=list)

    @property
    def rules(self) -> list[PolicyRule]:
        return [*self.block, *self.flag]


def _block(pattern: str, reason: str) -> PolicyRule:
    return PolicyRule(pattern=pattern, reason=reason, action=RuleAction.BLOCK)


def _flag(pattern: str, reason: str) -> PolicyRule:
    return PolicyRule(pattern=pattern, reason=reason, action=RuleAction.FLAG)


DEFAULT_BLOCK_RULES: list[PolicyRule] = [
    # Credential paths
    _block(r"id_rsa|id_ed25519|~/\.ssh/", "SSH key reference"),
    _block(r"aws_secret|aws_access|~/\.aws/", "AWS credentials"),
    _block(r"~/\.gnupg/", "GPG key reference"),
    # Process spawning
    _block(
        r"require\s*\(\s*['\"]?child_process|from\s+['\"]child_process",
        "Shell execution: child_process import",
    ),
    _block(
        r"\bimport\s+subprocess\b|\bfrom\s+subprocess\s+import\b|\bsubprocess\s*\.|create_subprocess_(?:exec|shell)",
        "Shell execution: subprocess usage",
    ),
    _block(
        r"\bos\s*\.\s*(?:system|popen|exec\w*|spawn\w*|fork\w*|posix_spawn\w*)\s*\(",
        "Shell execution: os process primitive",
    ),
    _block(
        r"\bfrom\s+os\s+import\b[^\n]*\b(?:system|popen|exec\w*|spawn\w*|fork\w*|posix_spawn\w*)\b",
        "Shell execution: os process primitive",
    ),
    _block(r"\bimport\s+pty\b|\bfrom\s+pty\s+import\b", "Shell execution: pty usage"),
    _block(r"\b(?:spawn|spawnSync|execSync|execFile)\s*\(", "Shell execution: spawn call"),
    # Dynamic code execution
    _block(r"(?<![\w.])eval\s*\(", "Dynamic code execution: eval()"),
    _block(r"(?<![\w.])exec\s*\(", "Dynamic code execution: exec()"),
    _block(r"(?<![\w.])compile\s*\(", "Dynamic code execution: compile()"),
    _block(r"__import__\s*\(", "Dynamic code execution: __import__()"),
    _block(r"\bimport_module\s*\(", "Dynamic code execution: import_module()"),
    _block(r"\bnew\s+Function\s*\(", "Dynamic function creation"),
    # Exfiltration and injection
    _block(
        r"\.ngrok\.|\.burpcollaborator\.|\.oastify\.|webhook\.site|requestbin",
        "Exfiltration domain",
    ),
    _block(r"ignore\s+(?:all\s+)?previous\s+instructions|system:\s*you", "Prompt injection"),
    _block(r"coinhive|cryptominer|xmrig", "Crypto mining"),
    _block(r"crontab|systemctl|launchctl", "System persistence"),
    _block(r"<script|<!--", "Script injection"),
]

DEFAULT_FLAG_RULES: list[PolicyRule] = [
    _flag(
        r"process\.env|\.env\b|os\.environ|\bgetenv\s*\(",
        "Environment variable access",
    ),
    _flag(
        r"\breadFile|\bwriteFile|\bfs\.|(?<![\w.])open\s*\(|\bshutil\.|\.(?:read|write)_(?:text|bytes)\s*\(",
        "Filesystem access",
    ),
    _flag(r"\batob\b|\bbtoa\b|Buffer\.from|\bb64(?:en|de)code\b|\bbase64\.", "Base64 encoding"),
    _flag(r"\\x[0-9a-f]{2}|\\u[0-9a-f]{4}", "Hex/unicode escapes"),
]


def default_rules() -> PolicyRuleSet:
    """The built-in policy table."""
    return PolicyRuleSet(block=list(DEFAULT_BLOCK_RULES), flag=list(DEFAULT_FLAG_RULES))


def load_rules(path: Path) -> PolicyRuleSet:
    """
    Load a policy table from a YAML file.

    Args:
        path: YAML file with top-level ``block`` and ``flag`` lists

    Returns:
        Parsed rule set

    Raises:
        PolicyError: If the file is missing, malformed, or holds an invalid rule
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise PolicyError(f"Cannot read policy file: {e}", config_file=str(path)) from e
    except yaml.YAMLError as e:
        raise PolicyError(f"Malformed policy file: {e}", config_file=str(path)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicyError(
            "Policy file must be a mapping with 'block' and 'flag' lists",
            config_file=str(path),
        )

    unknown = set(data) - {"block", "flag"}
    if unknown:
        raise PolicyError(
            f"Unknown policy sections: {', '.join(sorted(unknown))}",
            config_file=str(path),
        )

    rule_set = PolicyRuleSet()
    for action in RuleAction:
        entries = data.get(action.value) or []
        if not isinstance(entries, list):
            raise PolicyError(
                f"Policy section '{action.value}' must be a list",
                config_file=str(path),
            )
        for entry in entries:
            if not isinstance(entry, dict):
                raise PolicyError(
                    f"Policy rule must be a mapping, got {entry!r}",
                    config_file=str(path),
                )
            try:
                rule = PolicyRule(**{**entry, "action": action})
            except ValidationError as e:
                raise PolicyError(
                    f"Invalid {action.value} rule: {e.errors()[0]['msg']}",
                    pattern=str(entry.get("pattern")),
                    config_file=str(path),
                ) from e
            getattr(rule_set, action.value).append(rule)

    return rule_set
