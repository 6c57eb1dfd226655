"""Input validation and sanitization for assistant requests."""

import logging
import re

from freight_assistant.infra.config import config
from freight_assistant.infra.error_handler import InputError
from freight_assistant.models.request import AssistantRequest

logger = logging.getLogger(__name__)


def detect_prompt_injection(content: str) -> list:
    """
    Detect prompt injection patterns in content.

    Args:
        content: Question text to check

    Returns:
        List of detected pattern types (empty if none)
    """
    if not content:
        return []

    patterns = []
    content_lower = content.lower()

    # Meta-instructions to override system behavior
    meta_patterns = [
        r"ignore\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"forget\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"disregard\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"you\s+are\s+now\s+(a|an)\s+",
        r"pretend\s+to\s+be",
    ]

    # Privilege escalation attempts
    role_patterns = [
        r"you\s+are\s+(admin|administrator|root|superuser)",
        r"you\s+have\s+(admin|administrator|root|superuser)\s+(access|privileges?)",
        r"(show|reveal|include)\s+(the\s+)?(carrier\s+cost|margins?)\s+anyway",
    ]

    # System prompt disclosure attempts
    disclosure_patterns = [
        r"show\s+(me\s+)?(your\s+)?(system\s+)?(prompt|instructions?)",
        r"reveal\s+(your\s+)?(system\s+)?(prompt|instructions?|rules?)",
        r"print\s+(your\s+)?(system\s+)?(prompt|instructions?|rules?)",
    ]

    # Cross-tenant access attempts
    cross_access_patterns = [
        r"(switch|change)\s+to\s+(customer|tenant|account)\s+",
        r"(data|shipments?)\s+(for|from)\s+(another|other|different)\s+(customer|tenant|account)",
        r"all\s+customers'?\s+(data|shipments?)",
    ]

    all_patterns = [
        ("meta_instruction", meta_patterns),
        ("role_playing", role_patterns),
        ("disclosure_attempt", disclosure_patterns),
        ("cross_access_attempt", cross_access_patterns),
    ]

    for pattern_type, pattern_list in all_patterns:
        for pattern in pattern_list:
            if re.search(pattern, content_lower):
                patterns.append(pattern_type)
                break  # Only report each type once

    return patterns


def sanitize_question(content: str) -> str:
    """
    Strip control characters from a question.

    Injection patterns are logged for audit but never block the question;
    tenant scoping and field restrictions are enforced by the tool executor.
    """
    if not content:
        return ""

    injection_patterns = detect_prompt_injection(content)
    if injection_patterns:
        logger.warning(
            f"Prompt injection patterns detected: {injection_patterns}. "
            f"Content length: {len(content)}"
        )

    content = content.replace("\x00", "")
    content = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', content)

    return content.strip()


def validate_tenant_id(tenant_id: str) -> None:
    """
    Validate a tenant identifier.

    Raises:
        InputError: If the identifier is missing or malformed
    """
    if not tenant_id or not tenant_id.strip():
        raise InputError("tenantId is required")

    if len(tenant_id) > 128:
        raise InputError("tenantId too long")

    sql_injection_patterns = [
        r"[';]",
        r"--",
        r"/\*",
        r"\*/",
        r"union\s+select",
    ]
    for pattern in sql_injection_patterns:
        if re.search(pattern, tenant_id, re.IGNORECASE):
            raise InputError("Invalid tenantId: contains suspicious characters")


def validate_request(request: AssistantRequest) -> str:
    """
    Validate an assistant request.

    Args:
        request: Inbound request

    Returns:
        Sanitized question text

    Raises:
        InputError: If validation fails
    """
    if not request.question or not request.question.strip():
        raise InputError("question is required")

    if len(request.question) > config.MAX_QUESTION_LENGTH:
        raise InputError(
            f"question too long. Maximum length: {config.MAX_QUESTION_LENGTH} characters"
        )

    validate_tenant_id(request.tenant_id or "")

    for turn in request.conversation_history:
        if turn.role not in ("user", "assistant"):
            raise InputError("conversationHistory roles must be 'user' or 'assistant'")

    return sanitize_question(request.question)
