"""
Call outcome catalog.

Every logged call outcome references an entry here; the entry fixes the
score delta. Sign convention, enforced when a catalog is built:

- positive outcomes lower the score (delta < 0)
- neutral outcomes leave it unchanged (delta == 0)
- concern and negative outcomes raise it (delta > 0)

Higher score = higher churn risk, the same direction as the categories.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

import yaml

from .errors import UnknownOutcomeError

MANUAL_OVERRIDE_ID = "manual_override"


class OutcomeCategory(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONCERN = "concern"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class Outcome:
    """A named call result with a fixed score adjustment."""

    outcome_id: str
    label: str
    category: OutcomeCategory
    score_adjustment: int
    requires_follow_up: bool = False

    def __post_init__(self):
        # Allow plain strings from YAML
        object.__setattr__(self, "category", OutcomeCategory(self.category))
        if not self.outcome_id:
            raise ValueError("Outcome id must not be empty")
        if self.outcome_id == MANUAL_OVERRIDE_ID:
            raise ValueError(f"{MANUAL_OVERRIDE_ID!r} is reserved")
        _check_sign(self)

    def to_dict(self) -> dict:
        return {
            "outcomeId": self.outcome_id,
            "label": self.label,
            "category": self.category.value,
            "scoreAdjustment": self.score_adjustment,
            "requiresFollowUp": self.requires_follow_up,
        }


def _check_sign(outcome: Outcome) -> None:
    delta = outcome.score_adjustment
    category = outcome.category
    if category is OutcomeCategory.POSITIVE and delta >= 0:
        raise ValueError(f"Positive outcome {outcome.outcome_id!r} must lower the score, got {delta:+d}")
    if category is OutcomeCategory.NEUTRAL and delta != 0:
        raise ValueError(f"Neutral outcome {outcome.outcome_id!r} must not move the score, got {delta:+d}")
    if category in (OutcomeCategory.CONCERN, OutcomeCategory.NEGATIVE) and delta <= 0:
        raise ValueError(f"{category.value.title()} outcome {outcome.outcome_id!r} must raise the score, got {delta:+d}")


class OutcomeCatalog:
    """
    Read-only set of outcomes keyed by id.

    Load from YAML:
        catalog = OutcomeCatalog.from_yaml("configs/outcomes.yaml")

    The YAML file is a list of mappings with the Outcome field names.
    """

    def __init__(self, outcomes: Iterable[Outcome]):
        self._outcomes: dict[str, Outcome] = {}
        for outcome in outcomes:
            if outcome.outcome_id in self._outcomes:
                raise ValueError(f"Duplicate outcome id {outcome.outcome_id!r}")
            self._outcomes[outcome.outcome_id] = outcome

    def __contains__(self, outcome_id: str) -> bool:
        return outcome_id in self._outcomes

    def __iter__(self) -> Iterator[Outcome]:
        return iter(self._outcomes.values())

    def __len__(self) -> int:
        return len(self._outcomes)

    def get(self, outcome_id: str) -> Outcome:
        """
        Look up an outcome.

        Raises:
            UnknownOutcomeError: If the id is not in the catalog
        """
        try:
            return self._outcomes[outcome_id]
        except KeyError:
            raise UnknownOutcomeError(outcome_id) from None

    def grouped(self) -> dict[str, list[Outcome]]:
        """Outcomes grouped by category, every category present."""
        groups: dict[str, list[Outcome]] = {c.value: [] for c in OutcomeCategory}
        for outcome in self._outcomes.values():
            groups[outcome.category.value].append(outcome)
        return groups

    @classmethod
    def from_yaml(cls, path: Path | str) -> "OutcomeCatalog":
        """Load a catalog from a YAML list of outcomes."""
        with open(Path(path)) as f:
            data = yaml.safe_load(f) or []
        return cls(Outcome(**entry) for entry in data)


DEFAULT_OUTCOMES = [
    # Positive: relationship reinforced
    Outcome("retained_confirmed", "Confirmed staying on plan", OutcomeCategory.POSITIVE, -20),
    Outcome("issue_resolved", "Resolved open issue", OutcomeCategory.POSITIVE, -12),
    Outcome("review_booked", "Booked benefits review", OutcomeCategory.POSITIVE, -8),
    Outcome("good_conversation", "Positive check-in", OutcomeCategory.POSITIVE, -5),
    # Neutral: no information about intent
    Outcome("left_voicemail", "Left voicemail", OutcomeCategory.NEUTRAL, 0),
    Outcome("no_answer", "No answer", OutcomeCategory.NEUTRAL, 0),
    Outcome("callback_requested", "Client asked for a callback", OutcomeCategory.NEUTRAL, 0,
            requires_follow_up=True),
    # Concern: something to work on
    Outcome("cost_complaint", "Unhappy with cost", OutcomeCategory.CONCERN, 8),
    Outcome("provider_issue", "Doctor or pharmacy problem", OutcomeCategory.CONCERN, 8),
    Outcome("shopping_plans", "Comparing other plans", OutcomeCategory.CONCERN, 12,
            requires_follow_up=True),
    # Negative: likely or actual loss
    Outcome("plans_to_switch", "Intends to switch", OutcomeCategory.NEGATIVE, 20,
            requires_follow_up=True),
    Outcome("switched_carrier", "Already switched", OutcomeCategory.NEGATIVE, 30),
]

DEFAULT_CATALOG = OutcomeCatalog(DEFAULT_OUTCOMES)
