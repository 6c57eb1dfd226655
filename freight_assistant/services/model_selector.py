"""Model selector: choose the fast or capable model tier for a question.

The classifier is conservative. A fast-tier answer to a question it cannot
handle is worse than an unnecessary capable-tier call, so anything that is
not clearly a simple lookup resolves to the capable tier.
"""

import re
from typing import List, Optional, Tuple

from freight_assistant.models.routing import Mode, ModelSelection, ModelTier

CAPABLE_MODES = (Mode.ANALYZE, Mode.REPORT)

# (pattern, reason); any match forces the capable tier.
COMPLEX_MARKERS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\bwhy\b|\bcaus|\bdriv(e|es|ing)\b|\breason\b|\bbecause\b"), "causal question"),
    (re.compile(r"\bcompar|\bversus\b|\bvs\.?\s|\bdifference between\b|\brelative to\b"), "comparative question"),
    (re.compile(r"\banaly[sz]|\binvestigat|\bbreak ?down why\b|\binsight"), "analytical request"),
    (re.compile(r"\bshould\b|\brecommend|\bsuggest|\bimprove\b|\boptimi[sz]"), "recommendation request"),
    (re.compile(r"\bbest\b|\bworst\b|\bmost efficient\b|\bleast efficient\b"), "superlative judgement"),
    (re.compile(r"\bwhat if\b|\bwould\b|\bif we\b|\bsuppose\b|\bscenario"), "hypothetical question"),
    (re.compile(r"\bcorrelat|\brelationship\b|\bimpact of\b|\baffect"), "correlation question"),
    (re.compile(r"\banomal|\boutlier|\bunusual\b|\bspike|\bunexpected\b"), "anomaly question"),
    (re.compile(r"\b(and|or)\b.+\b(by|per)\b.+\b(and|or)\b|\beach of\b|\bacross (all|every)\b"), "multi-entity question"),
]

# (pattern, reason); first match selects the fast tier.
SIMPLE_TEMPLATES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"^(what('s| is) (my|our|the) )?(total|overall)\b"), "total aggregation"),
    (re.compile(r"^how many\b"), "simple count"),
    (re.compile(r"^(what('s| is) (my|our|the) )?(average|avg|mean)\b"), "simple average"),
    (re.compile(r"^(show( me)?|list|get|what( is|'s| are)?)?\s*(my |our |the )?[\w ]+ by \w+"), "breakdown by dimension"),
    (re.compile(r"\btop \d+\b|\btop (five|ten|three)\b"), "top-N request"),
    (re.compile(r"^(what('s| is) (my|our|the) )?sum of\b"), "simple sum"),
    (re.compile(r"\b(mode|equipment)( type)? (breakdown|split|mix)\b|\bby (mode|equipment)\b"), "mode/equipment breakdown"),
]

DEFAULT_SELECTION = ModelSelection(ModelTier.CAPABLE, "unrecognized pattern", 0.7)


def select_model(question: str, mode: Mode, tier_override: Optional[ModelTier] = None) -> ModelSelection:
    """
    Choose the model tier for a question.

    Args:
        question: Question text
        mode: Routed operating mode
        tier_override: Explicit tier requested by the caller

    Returns:
        ModelSelection with tier, reason and confidence
    """
    if mode in CAPABLE_MODES:
        return ModelSelection(ModelTier.CAPABLE, f"{mode.value} mode requires the capable tier", 1.0)

    if tier_override is not None:
        return ModelSelection(ModelTier(tier_override), "explicit", 1.0)

    text = (question or "").strip().lower()

    for pattern, reason in COMPLEX_MARKERS:
        if pattern.search(text):
            return ModelSelection(ModelTier.CAPABLE, reason, 0.9)

    for pattern, reason in SIMPLE_TEMPLATES:
        if pattern.search(text):
            return ModelSelection(ModelTier.FAST, reason, 0.95)

    return DEFAULT_SELECTION
