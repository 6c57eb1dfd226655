"""Assistant usage logging."""

import logging
from typing import Optional
from sqlalchemy import text

from freight_assistant.infra.database import get_db_session

logger = logging.getLogger(__name__)


async def log_assistant_run(
    tenant_id: str,
    user_id: Optional[str],
    mode: str,
    model: Optional[str],
    status: str = "success",
    input_tokens: int = 0,
    output_tokens: int = 0,
    latency_ms: Optional[int] = None,
    tool_turns: int = 0,
    error_message: Optional[str] = None,
) -> None:
    """
    Record one assistant run through the ``log_ai_usage`` database function.

    Args:
        tenant_id: Tenant (customer) ID
        user_id: Acting user ID
        mode: Operating mode (stored as the request type)
        model: Model name used
        status: 'success' | 'failure'
        input_tokens: Prompt tokens across all turns
        output_tokens: Completion tokens across all turns
        latency_ms: End-to-end latency in milliseconds
        tool_turns: Number of tool calls executed
        error_message: Error message if status is 'failure'
    """
    with get_db_session() as session:
        session.execute(
            text("""
                SELECT log_ai_usage(
                    p_user_id => CAST(:user_id AS uuid),
                    p_customer_id => CAST(:customer_id AS integer),
                    p_request_type => :request_type,
                    p_input_tokens => :input_tokens,
                    p_output_tokens => :output_tokens,
                    p_model_used => :model_used,
                    p_latency_ms => :latency_ms,
                    p_tool_turns => :tool_turns,
                    p_status => :status,
                    p_error_message => :error_message
                )
            """),
            {
                "user_id": user_id,
                "customer_id": tenant_id,
                "request_type": f"assistant_{mode}",
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "model_used": model,
                "latency_ms": latency_ms,
                "tool_turns": tool_turns,
                "status": status,
                "error_message": (error_message or "")[:200] or None,
            }
        )
