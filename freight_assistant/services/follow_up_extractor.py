"""Follow-up question extraction from the final answer."""

import re
import uuid
from typing import List

from freight_assistant.models.response import FollowUpQuestion

DEFAULT_FOLLOW_UPS = [
    "How does this compare to previous periods?",
    "What's driving these numbers?",
    "Are there any outliers I should know about?",
]

MAX_FOLLOW_UPS = 3

_SECTION_RE = re.compile(r"follow[- ]?up questions?:?\s*\n([\s\S]*?)(?:\n\n|$)", re.IGNORECASE)
_BULLET_RE = re.compile(r"^[-\d.)*\s]+")


def extract_follow_ups(answer: str) -> List[FollowUpQuestion]:
    """
    Pull up to three follow-up questions from a "Follow-up questions:" block.

    Falls back to generic follow-ups when the answer has no usable block.
    """
    questions: List[str] = []
    match = _SECTION_RE.search(answer or "")
    if match:
        for line in match.group(1).split("\n")[:MAX_FOLLOW_UPS]:
            cleaned = _BULLET_RE.sub("", line.strip()).strip()
            if len(cleaned) > 10:
                questions.append(cleaned)

    if not questions:
        questions = list(DEFAULT_FOLLOW_UPS)

    return [FollowUpQuestion(id=str(uuid.uuid4()), question=q) for q in questions]

