"""
Retention Risk Engine

Churn-risk scores per client, recomputed on a schedule and adjusted by
logged call outcomes, with tier-crossing alerts, a priority queue and a
daily briefing.
"""

from .categories import Category, categorize
from .config import EngineConfig, ScoringConfig
from .collaborators import (
    DataFrameAttributeSource,
    InMemoryAttributeSource,
    InMemoryEventSink,
    LoggingEventSink,
    StaticTaskSource,
    TaskSummary,
)
from .engine import RetentionEngine
from .errors import (
    AttributeSourceError,
    ConflictError,
    NotFoundError,
    RetentionError,
    UnknownOutcomeError,
    ValidationError,
)
from .outcomes import Outcome, OutcomeCatalog, OutcomeCategory
from .queue import QueueFilter
from .scoring import RuleWeightedScoreFunction, ScoreFunction

__all__ = [
    "Category",
    "categorize",
    "EngineConfig",
    "ScoringConfig",
    "DataFrameAttributeSource",
    "InMemoryAttributeSource",
    "InMemoryEventSink",
    "LoggingEventSink",
    "StaticTaskSource",
    "TaskSummary",
    "RetentionEngine",
    "AttributeSourceError",
    "ConflictError",
    "NotFoundError",
    "RetentionError",
    "UnknownOutcomeError",
    "ValidationError",
    "Outcome",
    "OutcomeCatalog",
    "OutcomeCategory",
    "QueueFilter",
    "RuleWeightedScoreFunction",
    "ScoreFunction",
]
__version__ = "1.0.0"
