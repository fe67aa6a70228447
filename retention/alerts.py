"""
Alert lifecycle: generated -> viewed -> acted_on.

Each transition is a single conditional UPDATE (`... WHERE viewed_at IS
NULL`), so repeating it is a no-op and concurrent callers cannot
overwrite each other's timestamps.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from .categories import Category
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import RiskAlert
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ALERT_LEVELS = ["notice", "warning", "urgent", "emergency"]

_LEVEL_BY_CATEGORY = {
    Category.ELEVATED: "warning",
    Category.HIGH: "warning",
    Category.CRITICAL: "urgent",
    Category.SEVERE: "emergency",
}

ALERT_STATUSES = ("open", "unviewed", "all")


def alert_level(category: Category) -> str:
    """Alert level for a client entering `category`."""
    return _LEVEL_BY_CATEGORY.get(category, "notice")


def _level_urgency():
    return case(
        {level: rank for rank, level in enumerate(ALERT_LEVELS)},
        value=RiskAlert.level,
        else_=-1,
    )


class AlertTracker:
    """
    Opens alerts for the recomputation job and records what agents did
    with them.

    Args:
        session_factory: SQLAlchemy sessionmaker
        config: Engine configuration (response windows, list limits)
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

    # ------------------------------------------------------------------
    # Writes used inside other components' transactions
    # ------------------------------------------------------------------

    def open_alert(
        self,
        session: Session,
        client_id: str,
        score: int,
        category: Category,
        previous_category: Optional[Category],
        now: datetime,
    ) -> RiskAlert:
        """Add a new alert to `session` and flush so it has an id."""
        level = alert_level(category)
        hours = self.config.alert_response_hours.get(level, 72)
        alert = RiskAlert(
            client_id=client_id,
            score_at_generation=score,
            category_at_generation=category.key,
            previous_category=previous_category.key if previous_category else None,
            level=level,
            generated_at=now,
            response_due_at=now + timedelta(hours=hours),
        )
        session.add(alert)
        session.flush()
        logger.info(
            "Opened %s alert %d for %s (%s -> %s, score %d)",
            level, alert.id, client_id,
            alert.previous_category, category.key, score,
        )
        return alert

    @staticmethod
    def latest_unresolved(session: Session, client_id: str) -> Optional[RiskAlert]:
        """Most recent alert for the client that nobody has acted on."""
        stmt = (
            select(RiskAlert)
            .where(RiskAlert.client_id == client_id, RiskAlert.acted_on_at.is_(None))
            .order_by(RiskAlert.generated_at.desc(), RiskAlert.id.desc())
            .limit(1)
        )
        return session.scalars(stmt).first()

    @staticmethod
    def resolve(
        session: Session,
        alert_id: int,
        action_type: str,
        outcome: Optional[str],
        now: datetime,
    ) -> bool:
        """
        Mark an alert acted-on inside the caller's transaction.

        Also fills viewed_at if it is still empty. Returns False if the
        alert had already been acted on.
        """
        result = session.execute(
            update(RiskAlert)
            .where(RiskAlert.id == alert_id, RiskAlert.acted_on_at.is_(None))
            .values(acted_on_at=now, action_type=action_type, outcome=outcome)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        session.execute(
            update(RiskAlert)
            .where(RiskAlert.id == alert_id, RiskAlert.viewed_at.is_(None))
            .values(viewed_at=now)
            .execution_options(synchronize_session=False)
        )
        return True

    # ------------------------------------------------------------------
    # Agent actions
    # ------------------------------------------------------------------

    def mark_viewed(self, alert_id: int) -> RiskAlert:
        """
        Record that an agent opened the alert. Idempotent.

        Raises:
            NotFoundError: If no alert has this id
        """
        now = self.clock()
        with self.session_factory.begin() as session:
            self._require(session, alert_id)
            session.execute(
                update(RiskAlert)
                .where(RiskAlert.id == alert_id, RiskAlert.viewed_at.is_(None))
                .values(viewed_at=now)
                .execution_options(synchronize_session=False)
            )
        return self.get(alert_id)

    def mark_acted_on(
        self,
        alert_id: int,
        action_type: str,
        outcome: Optional[str] = None,
    ) -> RiskAlert:
        """
        Record the action taken on an alert. Only the first call has effect.

        Raises:
            ValidationError: If action_type is blank
            NotFoundError: If no alert has this id
        """
        if not action_type or not str(action_type).strip():
            raise ValidationError("action_type is required")
        now = self.clock()
        with self.session_factory.begin() as session:
            self._require(session, alert_id)
            if not self.resolve(session, alert_id, action_type.strip(), outcome, now):
                logger.debug("Alert %d already acted on; leaving it unchanged", alert_id)
        return self.get(alert_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, alert_id: int) -> RiskAlert:
        """
        Raises:
            NotFoundError: If no alert has this id
        """
        with self.session_factory() as session:
            return self._require(session, alert_id)

    def list_alerts(self, status: str = "open", limit: int = 50) -> List[RiskAlert]:
        """
        Alerts ordered by level (emergency first), then newest first.

        Args:
            status: "open" (not acted on), "unviewed" or "all"
            limit: Maximum number of alerts
        """
        if status not in ALERT_STATUSES:
            raise ValidationError(
                f"Unknown alert status {status!r}; expected one of: {', '.join(ALERT_STATUSES)}"
            )
        if not 1 <= limit <= self.config.max_queue_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.config.max_queue_limit}, got {limit}"
            )

        stmt = select(RiskAlert)
        if status == "open":
            stmt = stmt.where(RiskAlert.acted_on_at.is_(None))
        elif status == "unviewed":
            stmt = stmt.where(RiskAlert.viewed_at.is_(None), RiskAlert.acted_on_at.is_(None))
        stmt = stmt.order_by(
            _level_urgency().desc(), RiskAlert.generated_at.desc(), RiskAlert.id.desc()
        ).limit(limit)

        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def counts_by_level(self) -> Dict[str, int]:
        """Open alert counts for every level, zero-filled."""
        counts = {level: 0 for level in ALERT_LEVELS}
        stmt = (
            select(RiskAlert.level, func.count())
            .where(RiskAlert.acted_on_at.is_(None))
            .group_by(RiskAlert.level)
        )
        with self.session_factory() as session:
            for level, count in session.execute(stmt):
                counts[level] = count
        return counts

    def count_generated_between(self, start: datetime, end: datetime) -> int:
        stmt = select(func.count()).select_from(RiskAlert).where(
            RiskAlert.generated_at >= start, RiskAlert.generated_at < end
        )
        with self.session_factory() as session:
            return session.scalar(stmt) or 0

    def count_unviewed(self) -> int:
        stmt = select(func.count()).select_from(RiskAlert).where(
            RiskAlert.viewed_at.is_(None), RiskAlert.acted_on_at.is_(None)
        )
        with self.session_factory() as session:
            return session.scalar(stmt) or 0

    @staticmethod
    def _require(session: Session, alert_id: int) -> RiskAlert:
        alert = session.get(RiskAlert, alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert
