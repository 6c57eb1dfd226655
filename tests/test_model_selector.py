"""Tests for model tier selection."""

import pytest
from freight_assistant.models.routing import Mode, ModelTier
from freight_assistant.services.mode_router import route
from freight_assistant.services.model_selector import select_model


class TestModelSelector:
    """Test the conservative fast/capable classifier."""

    @pytest.mark.parametrize("mode", [Mode.ANALYZE, Mode.REPORT])
    def test_capable_modes(self, mode):
        """Analyze and report always use the capable tier."""
        selection = select_model("how many shipments?", mode, ModelTier.FAST)
        assert selection.tier == ModelTier.CAPABLE
        assert selection.confidence == 1.0

    def test_explicit_override(self):
        selection = select_model("tell me about my freight", Mode.QUESTION, ModelTier.FAST)
        assert selection.tier == ModelTier.FAST
        assert selection.reason == "explicit"

    @pytest.mark.parametrize("question", [
        "how many shipments did we move last month?",
        "How many shipments went to Texas",
        "how many shipments were delivered",
    ])
    def test_simple_count_is_fast(self, question):
        selection = select_model(question, Mode.QUESTION)
        assert selection.tier == ModelTier.FAST
        assert selection.confidence >= 0.9

    @pytest.mark.parametrize("question", [
        "total spend this quarter",
        "what is my average cost per shipment",
        "spend by carrier",
        "top 5 lanes",
    ])
    def test_simple_templates_are_fast(self, question):
        assert select_model(question, Mode.QUESTION).tier == ModelTier.FAST

    @pytest.mark.parametrize("question", [
        "why did spend go up?",
        "compare carriers on on-time rate",
        "LTL versus FTL spend",
        "how many shipments would we save if we consolidated?",
    ])
    def test_complex_markers_are_capable(self, question):
        selection = select_model(question, Mode.QUESTION)
        assert selection.tier == ModelTier.CAPABLE
        assert selection.confidence == 0.9

    def test_unrecognized_defaults_to_capable(self):
        selection = select_model("tell me about my freight", Mode.QUESTION)
        assert selection.tier == ModelTier.CAPABLE
        assert selection.reason == "unrecognized pattern"

    @pytest.mark.parametrize("question", [
        "why are costs up",
        "compare Q1 and Q2",
        "Chicago versus Dallas volume",
        "how many shipments, and why so many?",
    ])
    def test_analytical_markers_never_fast_question(self, question):
        """Routing plus selection never yields fast tier in question mode for these markers."""
        decision = route(question)
        selection = select_model(question, decision.mode)
        assert not (decision.mode == Mode.QUESTION and selection.tier == ModelTier.FAST)
        assert decision.mode == Mode.ANALYZE or selection.tier == ModelTier.CAPABLE
