"""Tests for mode routing."""

import pytest
from freight_assistant.models.request import AssistantPreferences
from freight_assistant.models.routing import Mode
from freight_assistant.services.mode_router import route, ROUTING_RULES, DEFAULT_ROUTE


class TestModeRouter:
    """Test the ordered routing rules."""

    def test_explicit_mode_wins(self):
        """Explicit mode beats every keyword."""
        decision = route("why is my spend up?", AssistantPreferences(mode=Mode.WIDGET))
        assert decision.mode == Mode.WIDGET
        assert decision.confidence == 1.0
        assert decision.reason == "explicit"

    @pytest.mark.parametrize("hint,expected", [
        ("quick", Mode.QUESTION),
        ("deep", Mode.ANALYZE),
        ("visual", Mode.WIDGET),
    ])
    def test_legacy_hint(self, hint, expected):
        """Legacy tier hints map to modes at 0.9 confidence."""
        decision = route("total spend", AssistantPreferences(legacyTierHint=hint))
        assert decision.mode == expected
        assert decision.confidence == 0.9

    def test_compile_keywords(self):
        assert route("filter for shipments over $500").mode == Mode.COMPILE
        assert route("Convert to filters: late loads").mode == Mode.COMPILE

    def test_report_keyword(self):
        decision = route("Generate report of monthly spend")
        assert decision.mode == Mode.REPORT
        assert decision.confidence == 0.85

    def test_widget_keywords(self):
        assert route("build a chart of spend by carrier").mode == Mode.WIDGET
        assert route("make a visualization of volume").mode == Mode.WIDGET

    @pytest.mark.parametrize("question", [
        "Why did spend go up in March?",
        "Compare LTL and FTL costs",
        "Texas versus California volume",
        "What is driving late deliveries?",
    ])
    def test_analytical_questions(self, question):
        assert route(question).mode == Mode.ANALYZE

    def test_first_match_wins(self):
        """Compile outranks analyze when both match."""
        assert route("compile a filter for why loads are late").mode == Mode.COMPILE

    def test_default_route(self):
        decision = route("total spend this month")
        assert decision == DEFAULT_ROUTE
        assert decision.mode == Mode.QUESTION
        assert decision.confidence == 0.7

    def test_rules_are_ordered(self):
        """Rule order is compile, report, widget, analyze."""
        assert [decision.mode for _, decision in ROUTING_RULES] == [
            Mode.COMPILE, Mode.REPORT, Mode.WIDGET, Mode.ANALYZE,
        ]
