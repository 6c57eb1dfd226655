"""Knowledge store records and the compiled prompt context."""

from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Dict, Any, List, Optional


class KnowledgeItem(BaseModel):
    """A stored term/product/field/rule/calculation definition, global or tenant scoped."""
    id: int
    type: str
    key: str = ""
    label: str = ""
    definition: str = ""
    ai_instructions: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    times_used: int = 0

    @field_validator("key", "label", "definition", mode="before")
    @classmethod
    def null_to_empty(cls, value: Any) -> Any:
        """Nullable store columns arrive as None."""
        return "" if value is None else value

    @property
    def keywords(self) -> List[str]:
        """Search keywords for product items (falls back to the key)."""
        keywords = self.metadata.get("keywords") if self.metadata else None
        if isinstance(keywords, list) and keywords:
            return [str(k) for k in keywords]
        return [self.key]


class ReferenceDocument(BaseModel):
    """A reference document included verbatim in the prompt."""
    id: int
    title: str = ""
    category: Optional[str] = None
    content: str = ""

    @field_validator("title", "content", mode="before")
    @classmethod
    def null_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class TerminologyEntry(BaseModel):
    term: str
    means: str


class TenantProfile(BaseModel):
    """Per-tenant profile: priorities, markets, terminology, notes."""
    priorities: List[str] = Field(default_factory=list)
    key_markets: List[str] = Field(default_factory=list)
    terminology: List[TerminologyEntry] = Field(default_factory=list)
    benchmark_period: Optional[str] = None
    account_notes: Optional[str] = None

    def is_empty(self) -> bool:
        return not (
            self.priorities
            or self.key_markets
            or self.terminology
            or self.benchmark_period
            or self.account_notes
        )


class KnowledgeBundle(BaseModel):
    """Result of the single batched knowledge read for one request."""
    global_knowledge: List[KnowledgeItem] = Field(default_factory=list)
    tenant_knowledge: List[KnowledgeItem] = Field(default_factory=list)
    documents: List[ReferenceDocument] = Field(default_factory=list)
    profile: Optional[TenantProfile] = None


class SectionKind(str, Enum):
    PREAMBLE = "preamble"
    ACCESS = "access"
    GLOBAL_KNOWLEDGE = "global_knowledge"
    TENANT_KNOWLEDGE = "tenant_knowledge"
    DOCUMENTS = "documents"
    PROFILE = "profile"
    MODE = "mode"


@dataclass(frozen=True)
class PromptSection:
    kind: SectionKind
    title: str
    body: str

    def render(self) -> str:
        if self.title:
            return f"## {self.title}\n{self.body}"
        return self.body


@dataclass
class CompiledContext:
    """
    System prompt compiled once per request.

    ``text`` is the serialized form of ``sections``; ``knowledge_ids`` lists
    every knowledge item included in the prompt, in inclusion order.
    """
    text: str
    sections: List[PromptSection] = field(default_factory=list)
    knowledge_ids: List[int] = field(default_factory=list)
    token_estimate: int = 0
    degraded: bool = False

    def has_section(self, kind: SectionKind) -> bool:
        return any(section.kind == kind for section in self.sections)
