"""Failure fingerprints: stable keys for grouping recurring errors."""

from __future__ import annotations

import hashlib
import re

from skillheal.config import FINGERPRINT_PREFIX_LENGTH

SIGNATURE_LENGTH = 500

_WHITESPACE = re.compile(r"\s+")


def normalize_message(message: str, length: int = FINGERPRINT_PREFIX_LENGTH) -> str:
    """Lower-case, collapse whitespace and strip the first ``length`` chars."""
    prefix = (message or "")[:length]
    return _WHITESPACE.sub(" ", prefix.lower()).strip()


def fingerprint(message: str, length: int = FINGERPRINT_PREFIX_LENGTH) -> str:
    """Return the sha256 hex digest identifying this error message.

    Only the first ``length`` characters take part, so two errors that
    differ only after the prefix share a fingerprint.

    Args:
        message: Raw error message
        length: Prefix length considered

    Returns:
        64-char hex string

    """
    return hashlib.sha256(normalize_message(message, length).encode("utf-8")).hexdigest()


def signature(message: str) -> str:
    """Human-readable excerpt stored alongside a pattern."""
    return (message or "")[:SIGNATURE_LENGTH]
