"""Tests for the centralized error classifier.

Covers:
- Each category and its keyword set
- Precedence between overlapping keywords
- Totality (empty input, odd exception types)
- Determinism and rendering hints
"""

from __future__ import annotations

import unittest

import pytest

from queue_verifier.core.exceptions import (
    DispatchError,
    NetworkError,
    StatusRequestTimeoutError,
)
from queue_verifier.diagnostics.error_classifier import (
    TROUBLESHOOTING,
    ErrorCategory,
    categorize,
    classify,
    error_text,
)


class TestCategories:
    """Keyword routing for each category."""

    @pytest.mark.parametrize(
        "message",
        [
            "Failed to dispatch test job",
            "Queue connection [redis] not configured",
            "SQLSTATE: database connection refused",
            "Base table or view not found: jobs",
            "Invalid configuration for queue driver",
        ],
    )
    def test_dispatch_failed(self, message: str) -> None:
        assert categorize(message) is ErrorCategory.DISPATCH_FAILED

    @pytest.mark.parametrize(
        "message",
        [
            "Network error: connection reset",
            "Connection refused",
            "Host unreachable",
            "Failed to fetch",
        ],
    )
    def test_network_error(self, message: str) -> None:
        assert categorize(message) is ErrorCategory.NETWORK_ERROR

    @pytest.mark.parametrize("message", ["Request timeout", "Queue worker test timed out"])
    def test_timeout(self, message: str) -> None:
        assert categorize(message) is ErrorCategory.TIMEOUT

    def test_unmatched_is_general(self) -> None:
        assert categorize("Something odd happened") is ErrorCategory.GENERAL

    def test_matching_is_case_insensitive(self) -> None:
        assert categorize("NETWORK DOWN") is ErrorCategory.NETWORK_ERROR


class TestPrecedence:
    """Overlapping keywords resolve in a fixed order."""

    def test_dispatch_beats_timeout(self) -> None:
        assert categorize("dispatch timeout") is ErrorCategory.DISPATCH_FAILED

    def test_dispatch_beats_network(self) -> None:
        assert categorize("network failure during dispatch") is ErrorCategory.DISPATCH_FAILED

    def test_timeout_beats_network(self) -> None:
        assert categorize("fetch timed out") is ErrorCategory.TIMEOUT
        assert categorize("network timeout") is ErrorCategory.TIMEOUT

    def test_plain_fetch_failure_is_network(self) -> None:
        assert categorize("Failed to fetch") is ErrorCategory.NETWORK_ERROR


class TestExceptionInput:
    """Exceptions classify through their message text."""

    def test_domain_exceptions(self) -> None:
        assert categorize(DispatchError("Failed to dispatch test job")) is ErrorCategory.DISPATCH_FAILED
        assert categorize(NetworkError("Network error: boom")) is ErrorCategory.NETWORK_ERROR
        assert (
            categorize(StatusRequestTimeoutError("Status request timed out after 10ms"))
            is ErrorCategory.TIMEOUT
        )

    def test_builtin_exception(self) -> None:
        assert categorize(RuntimeError("Network fetch failed")) is ErrorCategory.NETWORK_ERROR

    def test_broken_str_falls_back_to_type_name(self) -> None:
        class Unprintable(Exception):
            def __str__(self) -> str:
                raise RuntimeError("no")

        result = classify(Unprintable())
        assert result.category is ErrorCategory.GENERAL
        assert result.error_message == "Unprintable"

    def test_empty_exception_uses_type_name(self) -> None:
        assert error_text(TimeoutError()) == "TimeoutError"


class TestClassify(unittest.TestCase):
    """classify() builds the full result."""

    def test_none_and_empty_are_general(self) -> None:
        for value in (None, "", "   "):
            result = classify(value)
            self.assertIs(result.category, ErrorCategory.GENERAL)
            self.assertEqual(result.user_message, "Test failed")

    def test_timeout_status_class(self) -> None:
        self.assertEqual(classify("timed out").status_class, "timeout")
        self.assertEqual(classify("Failed to fetch").status_class, "error")
        self.assertEqual(classify("dispatch").status_class, "error")

    def test_user_messages(self) -> None:
        self.assertEqual(classify("dispatch").user_message, "Failed to dispatch test job")
        self.assertEqual(classify("unreachable").user_message, "Network error during test")
        self.assertEqual(classify("timeout").user_message, "Queue worker test timed out")

    def test_troubleshooting_steps_follow_category(self) -> None:
        result = classify("Connection refused")
        self.assertEqual(result.troubleshooting_steps, TROUBLESHOOTING[ErrorCategory.NETWORK_ERROR])
        self.assertEqual(len(TROUBLESHOOTING[ErrorCategory.DISPATCH_FAILED]), 7)
        self.assertEqual(len(TROUBLESHOOTING[ErrorCategory.TIMEOUT]), 7)

    def test_error_message_is_preserved(self) -> None:
        self.assertEqual(classify("  Failed to fetch  ").error_message, "Failed to fetch")

    def test_deterministic(self) -> None:
        self.assertEqual(classify("network timeout"), classify("network timeout"))

    def test_every_category_has_steps(self) -> None:
        for category in ErrorCategory:
            self.assertTrue(TROUBLESHOOTING[category])
