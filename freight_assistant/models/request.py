"""Inbound assistant request models."""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal

from freight_assistant.models.routing import Mode, ModelTier


class ConversationTurn(BaseModel):
    """One prior turn supplied by the caller."""
    role: Literal["user", "assistant"] = Field(..., description="'user' | 'assistant'")
    content: str = Field(..., description="Turn text")


class AssistantPreferences(BaseModel):
    """Caller preferences that steer routing and output."""
    mode: Optional[Mode] = Field(None, description="Explicit operating mode")
    show_reasoning: bool = Field(False, alias="showReasoning", description="Return the diagnostic trace")
    legacy_tier_hint: Optional[Literal["quick", "deep", "visual"]] = Field(
        None,
        alias="legacyTierHint",
        description="Legacy hint mapped to question | analyze | widget",
    )
    max_tokens: Optional[int] = Field(None, alias="maxTokens", gt=0, le=16384)
    model_tier: Optional[ModelTier] = Field(None, alias="modelTier", description="Explicit model tier override")

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class RequestContext(BaseModel):
    """Optional UI context (used by widget mode)."""
    available_fields: List[str] = Field(default_factory=list, alias="availableFields")
    widget_type: Optional[str] = Field(None, alias="widgetType")

    model_config = {"populate_by_name": True}


class AssistantRequest(BaseModel):
    """
    A natural-language question scoped to one tenant and acting user.

    Required fields are checked by the assistant service rather than by the
    schema so that a missing question still yields a well-formed response.
    """
    question: str = Field("", description="Free-text question")
    tenant_id: Optional[str] = Field(None, alias="tenantId", description="Tenant (customer) identifier")
    user_id: Optional[str] = Field(None, alias="userId", description="Acting user identifier")
    conversation_history: List[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")
    preferences: AssistantPreferences = Field(default_factory=AssistantPreferences)
    context: RequestContext = Field(default_factory=RequestContext)

    model_config = {"populate_by_name": True, "frozen": True}
