"""Scoring components for the rule-weighted score function."""

from .base import BaseScorer
from .plan import PlanScorer
from .recency import RecencyScorer
from .urgency import UrgencyScorer
from .premium import PremiumScorer
from .tenure import TenureScorer
from .issues import IssueScorer

__all__ = [
    "BaseScorer",
    "PlanScorer",
    "RecencyScorer",
    "UrgencyScorer",
    "PremiumScorer",
    "TenureScorer",
    "IssueScorer",
]
