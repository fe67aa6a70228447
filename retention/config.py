"""
Configuration for the retention engine.

ScoringConfig holds every threshold and point value used by the default
rule-weighted score function. EngineConfig holds the operational knobs of
the engine around it (retries, queue limits, briefing rules).

Component budget (sums to 100):
- Plan Type: 0-10
- Contact Recency: 0-30
- Renewal Urgency: 0-20
- Premium Change: 0-15
- Tenure: 0-10
- Service Issues: 0-15
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

import yaml


@dataclass
class ScoringConfig:
    """
    Configuration for all rule-weighted scoring components.

    Thresholds are (bound, points) pairs evaluated in order; the first
    matching bound wins and anything past the last bound gets the default.
    """

    # === Plan Type (0-10 points) ===
    # Standalone drug plans switch most often at renewal
    plan_points: Dict[str, int] = field(default_factory=lambda: {
        "PDP": 10,
        "HMO": 6,
        "PPO": 3,
        "SNP": 2,
    })
    plan_default: int = 6

    # === Contact Recency (0-30 points) ===
    # Days since last meaningful contact; lower bound inclusive
    recency_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (180, 30),  # 180+ days: relationship gone cold
        (120, 24),  # 120-179 days
        (90, 16),   # 90-119 days
        (60, 8),    # 60-89 days
        (30, 3),    # 30-59 days
        # <30 days: 0 points
    ])
    recency_default: int = 0

    # === Renewal Urgency (0-20 points) ===
    urgency_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (1, 20),   # <=1 month: enrollment window open or imminent
        (3, 12),   # 2-3 months
        (6, 5),    # 4-6 months
        # >6 months: 0 points
    ])
    urgency_default: int = 0

    # === Premium Change (0-15 points) ===
    # PREMIUM_CHANGE is a fraction: 0.25 means +25% at renewal
    premium_thresholds: List[Tuple[float, int]] = field(default_factory=lambda: [
        (0.30, 15),  # >= +30%: price shock
        (0.10, 10),  # +10% to +30%
        (0.01, 4),   # small increase
        # decrease: 0 points
    ])
    premium_default: int = 0

    # === Tenure (0-10 points) ===
    tenure_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (6, 10),   # <=6 months: new client, not yet anchored
        (18, 5),   # 7-18 months
        # >18 months: 0 points
    ])
    tenure_default: int = 0

    # === Service Issues (0-15 points) ===
    # Open complaints/claims problems; lower bound inclusive
    issue_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (3, 15),   # 3+ open issues
        (2, 10),
        (1, 5),
        # none: 0 points
    ])
    issue_default: int = 0

    # === Fallback ===
    # Returned whenever an attribute snapshot is incomplete or invalid
    neutral_score: int = 50

    # === Metadata ===
    max_score: int = 100
    version: str = "1.0.0"

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ScoringConfig":
        """Load configuration from YAML file; missing keys keep defaults."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        for key, value in data.items():
            if key.endswith("_thresholds"):
                data[key] = [tuple(pair) for pair in value]
        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict:
        """Convert to dictionary, thresholds as plain lists."""
        data = asdict(self)
        for key, value in data.items():
            if key.endswith("_thresholds"):
                data[key] = [list(pair) for pair in value]
        return data


@dataclass
class EngineConfig:
    """
    Operational configuration for the engine.

    Load from YAML:
        config = EngineConfig.from_yaml("configs/engine.yaml")
    """

    # Base score for clients first seen through a logged outcome
    neutral_score: int = 50

    # Optimistic-concurrency retry budget per write
    max_write_retries: int = 3

    # Priority queue
    default_queue_limit: int = 50
    max_queue_limit: int = 500

    # Briefing rules
    briefing_increase_threshold: int = 10
    briefing_priority_limit: int = 5
    briefing_priority_min_category: str = "elevated"
    stale_contact_days: int = 14

    # Hours allowed to respond, by alert level
    alert_response_hours: Dict[str, int] = field(default_factory=lambda: {
        "emergency": 24,
        "urgent": 24,
        "warning": 48,
        "notice": 72,
    })

    def __post_init__(self):
        if not 0 <= self.neutral_score <= 100:
            raise ValueError(f"neutral_score must be in [0, 100], got {self.neutral_score}")
        if self.max_write_retries < 1:
            raise ValueError("max_write_retries must be at least 1")
        if not 1 <= self.default_queue_limit <= self.max_queue_limit:
            raise ValueError("default_queue_limit must be in [1, max_queue_limit]")

    @classmethod
    def from_yaml(cls, path: Path | str) -> "EngineConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)


# Default configuration instances
DEFAULT_CONFIG = ScoringConfig()
DEFAULT_ENGINE_CONFIG = EngineConfig()
