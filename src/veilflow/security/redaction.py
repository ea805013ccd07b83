"""Redaction of key material and credentials in text and payloads."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# Patterns whose first group is a label to keep.
_LABELLED_PATTERNS = [
    re.compile(r"(?i)\b((?:secret|private)[-_ ]?key\s*[=:]\s*)[\"']?[^\s\"',]{8,}[\"']?"),
    re.compile(r"(?i)\b(seed\s*[=:]\s*)[\"']?[^\s\"',]{8,}[\"']?"),
    re.compile(r"(?i)\b(authorization\s*:\s*bearer\s+)[A-Za-z0-9._:-]+"),
    re.compile(r"(?i)\b(api[-_ ]?key\s*[=:]\s*)[\"']?[A-Za-z0-9._:-]{8,}[\"']?"),
]
_BARE_PATTERNS = [
    # JSON keypair files: arrays of 64 byte values.
    re.compile(r"\[\s*(?:\d{1,3}\s*,\s*){63}\d{1,3}\s*\]"),
    re.compile(r"\bsk-lf-[A-Za-z0-9:_-]{8,}\b"),
    re.compile(r"\bpk-lf-[A-Za-z0-9:_-]{8,}\b"),
]


def redact_text(value: str) -> str:
    """Redact secrets from a text value."""
    redacted = value
    for pattern in _LABELLED_PATTERNS:
        redacted = pattern.sub(r"\1" + REDACTED, redacted)
    for pattern in _BARE_PATTERNS:
        redacted = pattern.sub(REDACTED, redacted)
    return redacted


def redact_mapping(value: Any) -> Any:
    """Recursively redact strings in nested dictionaries/lists."""
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {key: redact_mapping(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_mapping(item) for item in value]
    return value
