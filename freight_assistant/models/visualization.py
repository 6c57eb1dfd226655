"""Chart-ready visualization descriptor."""

from pydantic import BaseModel, Field
from typing import Dict, Any, Optional, Literal


class Visualization(BaseModel):
    """A stat, bar, table or lane-map derived from one tool result."""
    id: str
    type: Literal["stat", "bar", "table", "lane-map"]
    title: str
    subtitle: Optional[str] = None
    data: Any = None
    config: Dict[str, Any] = Field(default_factory=dict)
