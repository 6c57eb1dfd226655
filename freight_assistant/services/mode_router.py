"""Mode router: classify a question into an operating mode."""

import re
from typing import Callable, List, Optional, Tuple

from freight_assistant.models.request import AssistantPreferences
from freight_assistant.models.routing import Mode, RouteDecision

LEGACY_TIER_MODES = {
    "quick": Mode.QUESTION,
    "deep": Mode.ANALYZE,
    "visual": Mode.WIDGET,
}


def _matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda text: bool(compiled.search(text))


# Evaluated in order over the lower-cased question; first match wins.
ROUTING_RULES: List[Tuple[Callable[[str], bool], RouteDecision]] = [
    (
        _matches(r"\bcompile\b|\bfilter for\b|\bconvert to\b"),
        RouteDecision(Mode.COMPILE, 0.9, "filter compilation request"),
    ),
    (
        _matches(r"\bgenerate report\b|\breport"),
        RouteDecision(Mode.REPORT, 0.85, "report request"),
    ),
    (
        _matches(r"\bwidget|\bchart|\bvisuali[sz]ation"),
        RouteDecision(Mode.WIDGET, 0.85, "widget request"),
    ),
    (
        _matches(r"\bwhy\b|\binvestigat|\banaly[sz]|\bcompar|\bversus\b|\bvs\.?\s|\bdriving\b|\bcausing\b"),
        RouteDecision(Mode.ANALYZE, 0.85, "analytical question"),
    ),
]

DEFAULT_ROUTE = RouteDecision(Mode.QUESTION, 0.7, "default")


def route(question: str, preferences: Optional[AssistantPreferences] = None) -> RouteDecision:
    """
    Decide the operating mode for a question.

    An explicit mode wins, then a legacy tier hint, then the keyword rules.
    """
    if preferences is not None:
        if preferences.mode is not None:
            return RouteDecision(Mode(preferences.mode), 1.0, "explicit")
        if preferences.legacy_tier_hint:
            mode = LEGACY_TIER_MODES[preferences.legacy_tier_hint]
            return RouteDecision(mode, 0.9, f"legacy hint '{preferences.legacy_tier_hint}'")

    text = (question or "").lower()
    for predicate, decision in ROUTING_RULES:
        if predicate(text):
            return decision
    return DEFAULT_ROUTE
