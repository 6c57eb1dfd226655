"""Output guard: redact restricted financial disclosures from customer answers."""

import re
from enum import Enum
from dataclasses import dataclass
from typing import List


class OutputGuardStatus(str, Enum):
    """Guard result status."""
    CLEAN = "clean"
    REDACTED = "redacted"


@dataclass
class OutputGuardIssue:
    """A restricted disclosure found in an answer."""
    code: str  # e.g. "FINANCIAL_VALUE"
    message: str  # human readable
    span_start: int  # character index
    span_end: int  # character index


@dataclass
class OutputGuardResult:
    """Result of guarding an answer."""
    status: OutputGuardStatus
    sanitized_answer: str
    issues: List[OutputGuardIssue]


# Always internal, whatever the surrounding wording
ALWAYS_FLAG_PATTERNS = [
    (r"our\s+margin\s+(is|was)[^.\n]*", "INTERNAL_TERM", "Internal margin statement"),
    (r"we\s+make\s+\$[\d,]+(\.\d+)?", "INTERNAL_TERM", "Internal earnings statement"),
    (r"profit\s+per\s+(shipment|load|mile)[^.\n]*", "INTERNAL_TERM", "Per-unit profit"),
    (r"internal\s+(cost|rate|price)[^.\n]*", "INTERNAL_TERM", "Internal pricing"),
    (r"carrier\s+invoice[^.\n]*", "INTERNAL_TERM", "Carrier invoice reference"),
]

# Restricted terms carrying a concrete value. Bare "cost" is the customer's
# own spend and is left alone.
FINANCIAL_PATTERNS = [
    (r"\$[\d,]+(\.\d+)?\s*(in\s+)?(carrier\s+cost|our\s+cost|margin|profit|markup|commission)", "FINANCIAL_VALUE", "Amount tied to a restricted term"),
    (r"carrier\s*cost\s*(is|was|of|:)?\s*\$[\d,]+(\.\d+)?", "FINANCIAL_VALUE", "Carrier cost value"),
    (r"our\s+cost\s*(is|was|of|:)?\s*\$[\d,]+(\.\d+)?", "FINANCIAL_VALUE", "Internal cost value"),
    (r"margin\s*(is|was|of|:)\s*\$?[\d,]+(\.\d+)?%?", "FINANCIAL_VALUE", "Margin value"),
    (r"profit\s*(is|was|of|:)\s*\$[\d,]+(\.\d+)?", "FINANCIAL_VALUE", "Profit value"),
    (r"markup\s*(is|was|of|:)\s*[\d,]+(\.\d+)?%?", "FINANCIAL_VALUE", "Markup value"),
    (r"\d+(\.\d+)?\s*%\s*(margin|profit|markup)", "FINANCIAL_VALUE", "Percentage tied to a restricted term"),
]

_COMPILED_PATTERNS = [
    (re.compile(pattern, re.IGNORECASE), code, message)
    for pattern, code, message in ALWAYS_FLAG_PATTERNS + FINANCIAL_PATTERNS
]

REDACTION = "[restricted data redacted]"


def _redact(answer: str, issues: List[OutputGuardIssue]) -> str:
    """Replace issue spans of the original answer; overlapping spans merge into one marker."""
    pieces: List[str] = []
    cursor = 0
    for issue in sorted(issues, key=lambda i: (i.span_start, -i.span_end)):
        if issue.span_start < cursor:
            cursor = max(cursor, issue.span_end)
            continue
        pieces.append(answer[cursor:issue.span_start])
        pieces.append(REDACTION)
        cursor = issue.span_end
    pieces.append(answer[cursor:])
    return "".join(pieces)


def guard_answer(answer: str, is_privileged: bool) -> OutputGuardResult:
    """
    Scrub restricted financial disclosures from an answer.

    Privileged users get the answer unchanged. For everyone else, matched
    spans are replaced with a redaction marker. Issue spans index into the
    original answer.
    """
    if is_privileged or not answer:
        return OutputGuardResult(
            status=OutputGuardStatus.CLEAN,
            sanitized_answer=answer,
            issues=[],
        )

    issues: List[OutputGuardIssue] = []
    for regex, code, message in _COMPILED_PATTERNS:
        for match in regex.finditer(answer):
            issues.append(OutputGuardIssue(
                code=code,
                message=message,
                span_start=match.start(),
                span_end=match.end(),
            ))

    if issues:
        issues.sort(key=lambda i: i.span_start)
        return OutputGuardResult(
            status=OutputGuardStatus.REDACTED,
            sanitized_answer=_redact(answer, issues),
            issues=issues,
        )

    return OutputGuardResult(
        status=OutputGuardStatus.CLEAN,
        sanitized_answer=answer,
        issues=[],
    )
