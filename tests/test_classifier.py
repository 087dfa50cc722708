"""Tests for error categorization."""

import pytest

from skillheal.healing.classifier import ErrorCategory, ErrorClassifier


@pytest.fixture
def classifier():
    return ErrorClassifier()


@pytest.mark.parametrize(
    "message,category",
    [
        ("Request timed out after 30000ms", ErrorCategory.TIMEOUT),
        ("Deadline exceeded while waiting for upstream", ErrorCategory.TIMEOUT),
        ("connect ECONNREFUSED 127.0.0.1:5432", ErrorCategory.NETWORK_ERROR),
        ("502 Bad Gateway", ErrorCategory.NETWORK_ERROR),
        ("429 Too Many Requests", ErrorCategory.RATE_LIMIT),
        ("Rate limit reached for requests", ErrorCategory.RATE_LIMIT),
        ("401 Unauthorized", ErrorCategory.AUTH_ERROR),
        ("Invalid API key provided", ErrorCategory.AUTH_ERROR),
        ("Quota exceeded for this billing period", ErrorCategory.USAGE_LIMIT),
        ("Environment variable GITHUB_TOKEN not set", ErrorCategory.CONFIG_ERROR),
        ("TypeError: Cannot read properties of undefined", ErrorCategory.CODE_ERROR),
        ("ReferenceError: fetchData is not defined", ErrorCategory.CODE_ERROR),
        ("JavaScript heap out of memory", ErrorCategory.RESOURCE_EXHAUSTED),
        ("something odd happened", ErrorCategory.UNKNOWN),
    ],
)
def test_classify(classifier, message, category):
    assert classifier.classify(message).category == category


def test_transient_categories(classifier):
    assert classifier.classify("operation timed out").is_transient is True
    assert classifier.classify("Invalid API key").is_transient is False
    assert classifier.classify("something odd").is_transient is False


def test_every_category_has_hint(classifier):
    for category in ErrorCategory:
        assert classifier.HINTS[category]


def test_empty_message_is_unknown(classifier):
    failure = classifier.classify("")
    assert failure.category == ErrorCategory.UNKNOWN
    assert failure.message == ""
