"""
Risk categories and the score-to-category lookup.

Every tier decision in the package goes through `categorize` or
`Category.rank`; no other module compares raw scores against tier bounds.

| Category | Score range |
|----------|-------------|
| stable   | 0-24        |
| low      | 25-39       |
| moderate | 40-54       |
| elevated | 55-69       |
| high     | 70-84       |
| critical | 85-94       |
| severe   | 95-100      |
"""

from bisect import bisect_right
from enum import Enum
from numbers import Integral

from .errors import ValidationError

MIN_SCORE = 0
MAX_SCORE = 100


class Category(Enum):
    """
    Ordered urgency tiers, least urgent first.

    Each member carries (lower, upper, label, color, action).
    """

    STABLE = ("stable", 0, 24, "Stable", "#166534", "Quarterly touch")
    LOW = ("low", 25, 39, "Low", "#22c55e", "Monitor")
    MODERATE = ("moderate", 40, 54, "Moderate", "#eab308", "Outreach within 14 days")
    ELEVATED = ("elevated", 55, 69, "Elevated", "#f97316", "Outreach within 7 days")
    HIGH = ("high", 70, 84, "High", "#ef4444", "Outreach within 48 hours")
    CRITICAL = ("critical", 85, 94, "Critical", "#dc2626", "Same-day outreach")
    SEVERE = ("severe", 95, 100, "Severe", "#7f1d1d", "Call immediately")

    def __init__(self, key, lower, upper, label, color, action):
        self.key = key
        self.lower = lower
        self.upper = upper
        self.label = label
        self.color = color
        self.action = action

    @property
    def rank(self) -> int:
        """Position in the urgency ordering (0 = stable)."""
        return _ORDER.index(self)

    def __str__(self) -> str:
        return self.key

    @classmethod
    def parse(cls, name: str) -> "Category":
        """Look up a category by name, case-insensitively."""
        if isinstance(name, Category):
            return name
        normalized = str(name).strip().lower()
        for category in cls:
            if category.key == normalized:
                return category
        valid = ", ".join(c.key for c in cls)
        raise ValidationError(f"Unknown category {name!r}; expected one of: {valid}")

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "min": self.lower,
            "max": self.upper,
            "color": self.color,
            "action": self.action,
        }


_ORDER = list(Category)
_LOWER_BOUNDS = [c.lower for c in _ORDER]


def categorize(score: int) -> Category:
    """
    Map an integer score in [0, 100] to its category.

    Raises:
        ValidationError: If the score is not an integer in range.
    """
    if isinstance(score, bool) or not isinstance(score, Integral):
        raise ValidationError(f"Score must be an integer, got {score!r}")
    score = int(score)
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(
            f"Score {score} outside [{MIN_SCORE}, {MAX_SCORE}]"
        )
    return _ORDER[bisect_right(_LOWER_BOUNDS, score) - 1]


def is_more_urgent(candidate: Category, baseline: Category) -> bool:
    """True if `candidate` is strictly more urgent than `baseline`."""
    return candidate.rank > baseline.rank


def categories_at_or_above(minimum: Category) -> list[Category]:
    """All categories at least as urgent as `minimum`, in ascending order."""
    return _ORDER[minimum.rank:]


def clamp_score(value: int) -> int:
    """Clamp a raw value into the valid score range."""
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))
