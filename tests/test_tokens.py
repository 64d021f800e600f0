"""Tests for Parlance token estimation and usage reporting.

Test Coverage:
- Base estimate: max of character and word heuristics
- Structured and code content scaling
- Empty and whitespace-only text
- Full conversation cost with per-message overhead
- Usage status boundaries and usage report logging
"""

from __future__ import annotations

import logging

import pytest

from parlance.context import Message, MessageRole
from parlance.telemetry import (
    DEFAULT_ESTIMATOR,
    HeuristicTokenEstimator,
    TokenEstimator,
    UsageStatus,
    apply_content_type_scaling,
    build_usage_report,
    calculate_message_tokens,
    estimate_tokens,
    log_token_usage,
)
from tests.conftest import text_of


# =============================================================================
# Test: Base Estimate
# =============================================================================


class TestEstimateTokens:
    """Test the heuristic estimator."""

    def test_hello_world(self):
        """Two short words: word heuristic wins (ceil(2 * 1.3) = 3)."""
        assert estimate_tokens("hello world") == 3

    def test_character_heuristic_dominates_long_words(self):
        """A 400-character run prices at 100 tokens."""
        assert estimate_tokens(text_of(100)) == 100

    def test_word_heuristic_dominates_short_words(self):
        """Three characters but two words."""
        assert estimate_tokens("a b") == 3

    @pytest.mark.parametrize("text", ["", "   ", "\n\t  \n", None])
    def test_empty_and_whitespace_is_zero(self, text):
        """Empty, whitespace-only and None text cost nothing."""
        assert estimate_tokens(text) == 0

    def test_never_negative(self):
        assert estimate_tokens("x") >= 0

    def test_deterministic(self):
        text = "The harbor lights flicker {twice} before the storm."
        assert estimate_tokens(text) == estimate_tokens(text)

    @pytest.mark.parametrize(
        "base",
        ["hello", "a b c", "{\"k\": [1, 2]}", "<p>hi</p>", "```\ncode\n```"],
    )
    def test_monotonic_under_append(self, base):
        """Appending text never lowers the estimate."""
        previous = estimate_tokens(base)
        for suffix in [" more", " words here", "xxxxxxxxxxxxxxxx", " and {json}"]:
            base += suffix
            current = estimate_tokens(base)
            assert current >= previous
            previous = current

    def test_estimator_protocol(self):
        """The default estimator satisfies the runtime protocol."""
        assert isinstance(DEFAULT_ESTIMATOR, TokenEstimator)
        assert HeuristicTokenEstimator().estimate("hello world") == 3


# =============================================================================
# Test: Content-Type Scaling
# =============================================================================


class TestContentTypeScaling:
    """Test the structured/code multipliers."""

    def test_structured_content(self):
        """'{"a": 1}': base 3, x1.2 = 3.6 -> 4."""
        assert estimate_tokens('{"a": 1}') == 4

    def test_markup_content(self):
        """'<b>': base 2, x1.15 = 2.3 -> 3."""
        assert estimate_tokens("<b>") == 3

    def test_both_multipliers_compound(self):
        """'[<]': base 2, x1.2 -> 3, x1.15 -> 4."""
        assert estimate_tokens("[<]") == 4

    def test_plain_text_unscaled(self):
        assert apply_content_type_scaling("plain prose", 10) == 10

    def test_code_fence_scaled(self):
        assert apply_content_type_scaling("```py```", 10) == 12

    def test_scaling_rounds_up(self):
        assert apply_content_type_scaling("[1]", 1) == 2


# =============================================================================
# Test: Conversation Cost
# =============================================================================


class TestCalculateMessageTokens:
    """Test full-conversation estimates."""

    def test_adds_overhead_per_message(self):
        """Each message costs its content estimate plus 3 framing tokens."""
        messages = [
            {"role": "user", "content": "hello world"},
            Message(id="1", content="hello world", role=MessageRole.ASSISTANT, sequence_number=1),
        ]
        assert calculate_message_tokens(messages) == (3 + 3) * 2

    def test_custom_overhead(self):
        messages = [{"content": "hello world"}]
        assert calculate_message_tokens(messages, overhead_tokens=0) == 3

    def test_empty_content_costs_overhead_only(self):
        assert calculate_message_tokens([{"content": None}, {"content": ""}]) == 6

    def test_empty_conversation(self):
        assert calculate_message_tokens([]) == 0


# =============================================================================
# Test: Usage Reporting
# =============================================================================


class TestUsageReport:
    """Test usage reports and their status levels."""

    @pytest.mark.parametrize(
        "percent,status",
        [
            (0, UsageStatus.LOW),
            (70, UsageStatus.LOW),
            (71, UsageStatus.MEDIUM),
            (90, UsageStatus.MEDIUM),
            (91, UsageStatus.HIGH),
        ],
    )
    def test_status_boundaries(self, percent, status):
        assert UsageStatus.from_percent(percent) is status

    def test_build_report(self):
        report = build_usage_report(
            "chat-1",
            total_tokens=450,
            max_tokens=500,
            breakdown={"system": 100, "history": 300, "current_message": 50},
            model="local-model",
        )
        assert report.percent_used == 90
        assert report.remaining == 50
        assert report.status is UsageStatus.MEDIUM
        assert report.to_dict()["status"] == "medium"
        assert report.breakdown["history"] == 300

    def test_report_accepts_breakdown_object(self):
        class Breakdown:
            def to_dict(self):
                return {"system": 1}

        report = build_usage_report("chat-1", 1, 10, breakdown=Breakdown())
        assert report.breakdown == {"system": 1}

    def test_overflow_reports_negative_remaining(self):
        report = build_usage_report("chat-1", 1200, 1000)
        assert report.remaining == -200
        assert report.status is UsageStatus.HIGH

    def test_high_usage_logged_as_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="parlance.telemetry.tokens"):
            log_token_usage("chat-1", 95, 100)
        assert caplog.records[-1].levelno == logging.WARNING
        assert "chat-1" in caplog.records[-1].getMessage()

    def test_normal_usage_logged_as_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="parlance.telemetry.tokens"):
            log_token_usage("chat-1", 10, 100)
        assert caplog.records[-1].levelno == logging.INFO
