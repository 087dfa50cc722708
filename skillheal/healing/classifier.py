"""Error categorization for failed work-item runs.

Sorts a raw error message into a coarse category:
- TIMEOUT / NETWORK_ERROR / RATE_LIMIT: transient, a later run may succeed
- AUTH_ERROR / USAGE_LIMIT / CONFIG_ERROR: environment problems
- CODE_ERROR: the skill itself is broken
- RESOURCE_EXHAUSTED: memory, disk or process limits
- UNKNOWN: nothing matched

The category is stored as the error type of the error entry and handed to
the model as a hint; it never decides the fix by itself.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Coarse class of a work-item failure."""

    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    USAGE_LIMIT = "usage_limit"
    CONFIG_ERROR = "config_error"
    CODE_ERROR = "code_error"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    UNKNOWN = "unknown"


TRANSIENT_CATEGORIES = frozenset({
    ErrorCategory.TIMEOUT,
    ErrorCategory.NETWORK_ERROR,
    ErrorCategory.RATE_LIMIT,
})


@dataclass
class ClassifiedFailure:
    """Category of an error message.

    Attributes:
        category: Matched category
        message: The classified message
        is_transient: Whether the failure may go away on its own
        hint: Short note for the diagnosis prompt

    """

    category: ErrorCategory
    message: str
    is_transient: bool
    hint: str


class ErrorClassifier:
    """Pattern-based categorizer for error messages.

    Categories are checked in declaration order of ``PATTERNS``; the first
    match wins.

    Example:
        classifier = ErrorClassifier()
        failure = classifier.classify("Connection refused by api.example.com")
        if failure.is_transient:
            # a plain retry is reasonable

    """

    PATTERNS: dict[ErrorCategory, list[str]] = {
        ErrorCategory.USAGE_LIMIT: [
            r"quota.*exceed",
            r"insufficient.*(quota|credit|balance)",
            r"billing.*limit",
            r"usage.*limit.*exceed",
        ],
        ErrorCategory.RATE_LIMIT: [
            r"rate.*limit",
            r"too.*many.*request",
            r"\b429\b",
            r"throttl",
        ],
        ErrorCategory.AUTH_ERROR: [
            r"invalid.*api.*key",
            r"unauthori[sz]ed",
            r"authentication.*fail",
            r"permission.*denied",
            r"\b40[13]\b",
            r"token.*(expired|invalid)",
        ],
        ErrorCategory.TIMEOUT: [
            r"timed?\s*out",
            r"timeout",
            r"deadline.*exceeded",
        ],
        ErrorCategory.NETWORK_ERROR: [
            r"connection.*(refused|reset|error|aborted)",
            r"network.*unreachable",
            r"(enotfound|econnrefused|econnreset|getaddrinfo)",
            r"failed.*to.*resolve",
            r"ssl.*error",
            r"\b50[234]\b",
        ],
        ErrorCategory.RESOURCE_EXHAUSTED: [
            r"out of memory",
            r"memoryerror",
            r"heap.*(limit|out of)",
            r"no space left",
            r"too many open files",
        ],
        ErrorCategory.CONFIG_ERROR: [
            r"(env|environment).*(variable|var).*(missing|not set|undefined)",
            r"missing.*(config|setting|environment)",
            r"not configured",
            r"no such file or directory",
            r"invalid.*config",
        ],
        ErrorCategory.CODE_ERROR: [
            r"(type|name|attribute|key|index|value|syntax|reference)error",
            r"is not a function",
            r"is not defined",
            r"cannot read propert",
            r"undefined is not",
            r"traceback",
        ],
    }

    HINTS: dict[ErrorCategory, str] = {
        ErrorCategory.TIMEOUT: "Operation timed out; often transient",
        ErrorCategory.NETWORK_ERROR: "Network or upstream failure; often transient",
        ErrorCategory.RATE_LIMIT: "Upstream rate limit; retry later",
        ErrorCategory.AUTH_ERROR: "Credentials rejected; likely needs configuration",
        ErrorCategory.USAGE_LIMIT: "Account quota exhausted; needs a human",
        ErrorCategory.CONFIG_ERROR: "Missing or invalid configuration",
        ErrorCategory.CODE_ERROR: "Programming error in the skill",
        ErrorCategory.RESOURCE_EXHAUSTED: "Process ran out of a system resource",
        ErrorCategory.UNKNOWN: "No known pattern matched",
    }

    def __init__(self):
        self._compiled: dict[ErrorCategory, list[re.Pattern]] = {
            category: [re.compile(p, re.IGNORECASE) for p in patterns]
            for category, patterns in self.PATTERNS.items()
        }

    def classify(self, message: str) -> ClassifiedFailure:
        """Categorize an error message.

        Args:
            message: Error text of the failed run

        Returns:
            ClassifiedFailure (UNKNOWN when nothing matches)

        """
        message = message or ""
        category = ErrorCategory.UNKNOWN
        for candidate, patterns in self._compiled.items():
            if any(p.search(message) for p in patterns):
                category = candidate
                break

        logger.debug("Classified error as %s: %.80s", category.value, message)
        return ClassifiedFailure(
            category=category,
            message=message,
            is_transient=category in TRANSIENT_CATEGORIES,
            hint=self.HINTS[category],
        )
