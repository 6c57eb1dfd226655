from .request import AssistantRequest, AssistantPreferences, RequestContext, ConversationTurn
from .routing import Mode, ModelTier, RouteDecision, ModelSelection
from .knowledge import (
    KnowledgeItem,
    ReferenceDocument,
    TenantProfile,
    KnowledgeBundle,
    PromptSection,
    SectionKind,
    CompiledContext,
)
from .tool import ToolDefinition, ToolCall, TOOL_INPUT_MODELS
from .visualization import Visualization
from .response import (
    ReasoningStep,
    FollowUpQuestion,
    TokenUsage,
    FilterCompilation,
    RunOutcome,
    ResponseMetadata,
    AssistantResponse,
)

__all__ = [
    "AssistantRequest",
    "AssistantPreferences",
    "RequestContext",
    "ConversationTurn",
    "Mode",
    "ModelTier",
    "RouteDecision",
    "ModelSelection",
    "KnowledgeItem",
    "ReferenceDocument",
    "TenantProfile",
    "KnowledgeBundle",
    "PromptSection",
    "SectionKind",
    "CompiledContext",
    "ToolDefinition",
    "ToolCall",
    "TOOL_INPUT_MODELS",
    "Visualization",
    "ReasoningStep",
    "FollowUpQuestion",
    "TokenUsage",
    "FilterCompilation",
    "RunOutcome",
    "ResponseMetadata",
    "AssistantResponse",
]
