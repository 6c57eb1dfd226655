"""Run outcome and the outbound assistant response."""

from dataclasses import dataclass, field
from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional, Literal

from freight_assistant.models.visualization import Visualization

ReasoningStepType = Literal["routing", "context", "model", "tool_call", "tool_result", "thinking"]


class ReasoningStep(BaseModel):
    """One diagnostic trace entry."""
    type: ReasoningStepType
    content: str
    tool_name: Optional[str] = Field(None, alias="toolName")

    model_config = {"populate_by_name": True}


class FollowUpQuestion(BaseModel):
    id: str
    question: str


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input += input_tokens or 0
        self.output += output_tokens or 0


class FilterCompilation(BaseModel):
    """Structured filters compiled from a natural-language description."""
    success: bool
    filters: Optional[List[Dict[str, Any]]] = None
    sort: Optional[Dict[str, Any]] = None
    limit: Optional[int] = None
    reasoning: Optional[str] = None
    confidence: Optional[float] = None
    suggestions: Optional[List[str]] = None
    error: Optional[str] = None
    source: Literal["model", "pattern"] = "model"


@dataclass
class RunOutcome:
    """Result of one agent loop run."""
    answer: str = ""
    visualizations: List[Visualization] = field(default_factory=list)
    trace: List[ReasoningStep] = field(default_factory=list)
    tool_call_count: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    turns_used: int = 0
    exhausted: bool = False


class ResponseMetadata(BaseModel):
    processing_time_ms: int = Field(0, alias="processingTimeMs")
    tool_call_count: int = Field(0, alias="toolCallCount")
    mode: str
    model_tier: Optional[str] = Field(None, alias="modelTier")
    model_reason: Optional[str] = Field(None, alias="modelReason")
    tokens_used: Optional[TokenUsage] = Field(None, alias="tokensUsed")
    context_tokens: int = Field(0, alias="contextTokens")
    knowledge_items_used: int = Field(0, alias="knowledgeItemsUsed")

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class AssistantResponse(BaseModel):
    """Outbound response; serialized with camelCase aliases."""
    success: bool
    answer: str
    visualizations: List[Visualization] = Field(default_factory=list)
    reasoning: Optional[List[ReasoningStep]] = None
    follow_up_questions: List[FollowUpQuestion] = Field(default_factory=list, alias="followUpQuestions")
    metadata: ResponseMetadata
    compiled_filters: Optional[FilterCompilation] = Field(None, alias="compiledFilters")
    error: Optional[str] = None

    model_config = {"populate_by_name": True}
