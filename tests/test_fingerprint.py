"""Tests for failure fingerprints."""

from skillheal.healing.fingerprint import SIGNATURE_LENGTH, fingerprint, normalize_message, signature


def test_fingerprint_is_deterministic():
    message = "TypeError: Cannot read properties of undefined (reading 'map')"
    assert fingerprint(message) == fingerprint(message)
    assert len(fingerprint(message)) == 64


def test_case_and_whitespace_do_not_matter():
    assert fingerprint("Connection  refused\n by host") == fingerprint("connection refused by HOST")


def test_different_messages_differ():
    assert fingerprint("timeout after 30s") != fingerprint("rate limit exceeded")


def test_only_prefix_counts():
    prefix = "x" * 100
    assert fingerprint(prefix + " request id 1") == fingerprint(prefix + " request id 2")


def test_normalize_message():
    assert normalize_message("  Foo\tBAR  ") == "foo bar"
    assert normalize_message(None) == ""


def test_signature_truncates():
    assert len(signature("e" * 2000)) == SIGNATURE_LENGTH
    assert signature("short") == "short"
