"""Book-wide risk distribution with the last 24 hours of movement."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .categories import Category
from .db import ClientRiskState
from .history import score_changes_since

CHANGE_WINDOW = timedelta(hours=24)


@dataclass
class RiskDistribution:
    counts: Dict[str, int]
    total: int
    increased: int = 0
    unchanged: int = 0
    decreased: int = 0
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "distribution": [
                {**category.to_dict(), "count": self.counts[category.key]}
                for category in Category
            ],
            "counts": dict(self.counts),
            "total": self.total,
            "change24h": {
                "increased": self.increased,
                "unchanged": self.unchanged,
                "decreased": self.decreased,
            },
            "generatedAt": self.generated_at.isoformat(),
        }


def category_counts(session: Session) -> Dict[str, int]:
    """Client count per category, every category present."""
    counts = {category.key: 0 for category in Category}
    stmt = select(ClientRiskState.category, func.count()).group_by(ClientRiskState.category)
    for key, count in session.execute(stmt):
        counts[key] = count
    return counts


def risk_distribution(session: Session, now: datetime) -> RiskDistribution:
    """
    Counts per category and how scores moved in the 24 hours before `now`.

    Clients with no score change in the window count as unchanged.
    """
    counts = category_counts(session)
    total = sum(counts.values())
    changes = score_changes_since(session, now - CHANGE_WINDOW)
    increased = int((changes["change"] > 0).sum()) if not changes.empty else 0
    decreased = int((changes["change"] < 0).sum()) if not changes.empty else 0
    return RiskDistribution(
        counts=counts,
        total=total,
        increased=increased,
        unchanged=total - increased - decreased,
        decreased=decreased,
        generated_at=now,
    )
