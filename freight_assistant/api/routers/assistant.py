"""Assistant API router."""

from fastapi import APIRouter

from freight_assistant.models.request import AssistantRequest
from freight_assistant.models.response import AssistantResponse
from freight_assistant.services.assistant_service import assistant_service

router = APIRouter()


@router.post(
    "/assistant/ask",
    tags=["Assistant"],
    response_model=AssistantResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def ask_assistant(request: AssistantRequest):
    """
    Answer a natural-language question about shipment data.

    Always returns HTTP 200 once the body parses; failures are reported with
    ``success: false`` and an ``error`` field.

    **Example Request:**
    ```json
    {
        "question": "What is my total spend by carrier?",
        "tenantId": "42",
        "userId": "3f1c9a2e-...",
        "preferences": {"showReasoning": true}
    }
    ```
    """
    return await assistant_service.handle_question(request)
