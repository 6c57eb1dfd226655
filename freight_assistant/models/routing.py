"""Routing outcomes: operating mode and model tier."""

from dataclasses import dataclass
from enum import Enum


class Mode(str, Enum):
    """High-level task classification for a question."""
    QUESTION = "question"
    WIDGET = "widget"
    REPORT = "report"
    ANALYZE = "analyze"
    COMPILE = "compile"


class ModelTier(str, Enum):
    """Language-model backend tier."""
    FAST = "fast"
    CAPABLE = "capable"


@dataclass(frozen=True)
class RouteDecision:
    """Result of mode routing."""
    mode: Mode
    confidence: float
    reason: str


@dataclass(frozen=True)
class ModelSelection:
    """Result of model tier selection."""
    tier: ModelTier
    reason: str
    confidence: float
