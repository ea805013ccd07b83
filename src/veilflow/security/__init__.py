"""Security helpers."""

from veilflow.security.redaction import redact_mapping, redact_text

__all__ = ["redact_mapping", "redact_text"]
