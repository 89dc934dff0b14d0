"""Well-known error signatures with canned resolutions."""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class ErrorSignature:
    """A recognizable error family and the fix that usually applies."""

    name: str
    pattern: re.Pattern[str]
    resolution: str

    def matches(self, error: str) -> bool:
        return self.pattern.search(error) is not None


def _sig(name: str, pattern: str, resolution: str) -> ErrorSignature:
    return ErrorSignature(name, re.compile(pattern, re.IGNORECASE), resolution)


KNOWN_SIGNATURES: tuple[ErrorSignature, ...] = (
    _sig(
        "connection_refused",
        r"ECONNREFUSED|connection refused",
        "Service is not accepting connections. Start it or check host and port.",
    ),
    _sig(
        "timeout",
        r"ETIMEDOUT|timed out|TimeoutError",
        "Request timed out. Retry with a longer timeout or check connectivity.",
    ),
    _sig(
        "not_found",
        r"ENOENT|no such file or directory|FileNotFoundError",
        "Path does not exist. Verify it before reading or create it first.",
    ),
    _sig(
        "permission",
        r"EACCES|EPERM|permission denied|PermissionError",
        "Permission denied. Check ownership and mode of the target.",
    ),
    _sig(
        "unauthorized",
        r"\b401\b|unauthorized",
        "Authentication failed. Check that the credential is present and valid.",
    ),
    _sig(
        "rate_limited",
        r"\b429\b|rate.?limit|too many requests",
        "Rate limited. Back off and retry after a delay.",
    ),
    _sig(
        "missing_module",
        r"ModuleNotFoundError|no module named|cannot find module",
        "A dependency is missing. Install it or fix the import name.",
    ),
    _sig(
        "bad_json",
        r"JSONDecodeError|unexpected token|expecting value",
        "Response was not valid JSON. Inspect the raw payload before parsing.",
    ),
)


def match_signature(
    error: str, signatures: tuple[ErrorSignature, ...] = KNOWN_SIGNATURES
) -> ErrorSignature | None:
    """First signature matching an error message, if any."""
    for signature in signatures:
        if signature.matches(error):
            return signature
    return None
