"""
Priority queue: who an agent should call next.

Order is fully deterministic:
    1. score, highest first
    2. days since last contact, most overdue first (never contacted is
       the most overdue)
    3. client id, ascending
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .alerts import ALERT_LEVELS
from .categories import Category, categories_at_or_above
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import ClientRiskState, RiskAlert
from .errors import ValidationError

logger = logging.getLogger(__name__)

QUEUE_COLUMNS = [
    "client_id",
    "score",
    "previous_score",
    "category",
    "last_contact_at",
    "days_since_contact",
]


@dataclass(frozen=True)
class QueueFilter:
    min_category: Optional[Category] = None
    limit: int = 50

    @classmethod
    def parse(
        cls,
        min_category: Optional[str] = None,
        limit: Optional[Union[int, str]] = None,
        config: Optional[EngineConfig] = None,
    ) -> "QueueFilter":
        """
        Build a filter from request parameters.

        Raises:
            ValidationError: Unknown category name or limit out of range
        """
        config = config or DEFAULT_ENGINE_CONFIG
        category = Category.parse(min_category) if min_category not in (None, "") else None

        if limit is None or limit == "":
            limit = config.default_queue_limit
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise ValidationError(f"limit must be an integer, got {limit!r}") from None
        if not 1 <= limit <= config.max_queue_limit:
            raise ValidationError(
                f"limit must be between 1 and {config.max_queue_limit}, got {limit}"
            )
        return cls(min_category=category, limit=limit)


@dataclass
class QueueEntry:
    client_id: str
    score: int
    category: Category
    days_since_contact: Optional[int]
    has_active_alert: bool
    previous_score: Optional[int] = None
    alert_level: Optional[str] = None
    rank: int = 0

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "clientId": self.client_id,
            "score": self.score,
            "previousScore": self.previous_score,
            "category": self.category.key,
            "categoryLabel": self.category.label,
            "color": self.category.color,
            "recommendedAction": self.category.action,
            "daysSinceContact": self.days_since_contact,
            "hasActiveAlert": self.has_active_alert,
            "alertLevel": self.alert_level,
        }


class PriorityQueueBuilder:
    """
    Read-only view of client states ordered for outreach.

    Args:
        session_factory: SQLAlchemy sessionmaker
        config: Engine configuration (limits)
        clock: Callable returning the current naive datetime
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.clock = clock

    def build(self, queue_filter: Optional[QueueFilter] = None) -> List[QueueEntry]:
        """Ordered queue entries, at most `queue_filter.limit` of them."""
        queue_filter = queue_filter or QueueFilter(limit=self.config.default_queue_limit)
        df = self.frame(queue_filter.min_category)
        logger.debug(
            "Priority queue: %d matching clients, returning up to %d",
            len(df), queue_filter.limit,
        )
        return self._entries(df.head(queue_filter.limit))

    def next_after(
        self,
        client_id: Optional[str],
        queue_filter: Optional[QueueFilter] = None,
    ) -> Optional[QueueEntry]:
        """
        Entry that follows `client_id` in the queue.

        With no client id, or one that is not in the queue, returns the
        head of the queue. Returns None past the end.
        """
        queue_filter = queue_filter or QueueFilter(limit=self.config.default_queue_limit)
        df = self.frame(queue_filter.min_category)
        if df.empty:
            return None
        position = 0
        if client_id:
            matches = np.flatnonzero(df["client_id"].to_numpy() == client_id)
            if len(matches):
                position = int(matches[0]) + 1
        if position >= len(df):
            return None
        return self._entries(df.iloc[position:position + 1], start_rank=position + 1)[0]

    def frame(self, min_category: Optional[Category] = None) -> pd.DataFrame:
        """All matching client states as a sorted DataFrame."""
        now = self.clock()
        stmt = select(
            ClientRiskState.client_id,
            ClientRiskState.current_score,
            ClientRiskState.previous_score,
            ClientRiskState.category,
            ClientRiskState.last_contact_at,
        )
        if min_category is not None:
            keys = [c.key for c in categories_at_or_above(min_category)]
            stmt = stmt.where(ClientRiskState.category.in_(keys))

        with self.session_factory() as session:
            rows = session.execute(stmt).all()
            alert_levels = self._open_alert_levels(session)

        if not rows:
            return pd.DataFrame(columns=QUEUE_COLUMNS + ["alert_level"])

        df = pd.DataFrame(
            rows,
            columns=["client_id", "score", "previous_score", "category", "last_contact_at"],
        )
        df["days_since_contact"] = [
            None if ts is None or pd.isna(ts) else max((now - ts).days, 0)
            for ts in df["last_contact_at"]
        ]
        # Never contacted sorts as the most overdue
        df["_overdue"] = pd.to_numeric(df["days_since_contact"], errors="coerce").fillna(np.inf)
        df["alert_level"] = df["client_id"].map(alert_levels)

        return (
            df.sort_values(
                ["score", "_overdue", "client_id"],
                ascending=[False, False, True],
            )
            .drop(columns="_overdue")
            .reset_index(drop=True)
        )

    @staticmethod
    def _open_alert_levels(session) -> Dict[str, str]:
        """Most urgent open alert level per client."""
        levels: Dict[str, str] = {}
        stmt = select(RiskAlert.client_id, RiskAlert.level).where(RiskAlert.acted_on_at.is_(None))
        for client_id, level in session.execute(stmt):
            current = levels.get(client_id)
            if current is None or ALERT_LEVELS.index(level) > ALERT_LEVELS.index(current):
                levels[client_id] = level
        return levels

    @staticmethod
    def _entries(df: pd.DataFrame, start_rank: int = 1) -> List[QueueEntry]:
        entries = []
        for offset, row in enumerate(df.itertuples(index=False)):
            alert_level = row.alert_level if isinstance(row.alert_level, str) else None
            days = row.days_since_contact
            entries.append(QueueEntry(
                client_id=row.client_id,
                score=int(row.score),
                category=Category.parse(row.category),
                days_since_contact=None if days is None or pd.isna(days) else int(days),
                has_active_alert=alert_level is not None,
                previous_score=None if pd.isna(row.previous_score) else int(row.previous_score),
                alert_level=alert_level,
                rank=start_rank + offset,
            ))
        return entries
