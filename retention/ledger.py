"""
Adjustment ledger: applies logged call outcomes and manual overrides to a
client's score.

Each write is one read-modify-write transaction on the client's state row,
guarded by the row's version column. A conflicting commit makes the UPDATE
match no row (StaleDataError) or makes a first insert collide
(IntegrityError); the whole transaction is then rolled back and re-run, up
to `EngineConfig.max_write_retries` times.

Usage:
    ledger = AdjustmentLedger(session_factory)
    applied = ledger.apply_outcome("CLIENT_0001", "cost_complaint", logged_by="agent-7")
    print(applied.new_score, applied.new_category)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .alerts import AlertTracker
from .categories import Category, categorize, clamp_score
from .collaborators import EventSink, FollowUpRequested, OutcomeLogged, emit_all
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import ClientRiskState, ScoreAdjustment, ScoreHistory
from .errors import ConflictError, ValidationError
from .outcomes import MANUAL_OVERRIDE_ID, OutcomeCatalog, DEFAULT_CATALOG

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AppliedOutcome:
    """Result of one committed ledger write."""

    client_id: str
    outcome_id: str
    score_before: int
    new_score: int
    new_category: Category
    adjustment_id: int
    logged_at: datetime
    created: bool = False
    resolved_alert_id: Optional[int] = None

    @property
    def delta(self) -> int:
        return self.new_score - self.score_before

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "outcomeId": self.outcome_id,
            "previousScore": self.score_before,
            "newScore": self.new_score,
            "newCategory": self.new_category.key,
            "adjustmentId": self.adjustment_id,
            "resolvedAlertId": self.resolved_alert_id,
        }


def _require_text(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value).strip()


def run_with_retries(
    session_factory: sessionmaker,
    client_id: str,
    write: Callable[[Session, datetime], T],
    max_attempts: int,
    clock: Callable[[], datetime] = datetime.now,
) -> T:
    """
    Run `write(session, now)` in its own transaction, retrying on
    optimistic-concurrency conflicts.

    Raises:
        ConflictError: If every attempt conflicted
    """
    for attempt in range(1, max_attempts + 1):
        now = clock()
        try:
            with session_factory.begin() as session:
                return write(session, now)
        except (StaleDataError, IntegrityError) as exc:
            logger.warning(
                "Write conflict on %s (attempt %d/%d): %s",
                client_id, attempt, max_attempts, exc.__class__.__name__,
            )
    raise ConflictError(client_id, max_attempts)


class AdjustmentLedger:
    """
    Applies outcomes to client scores and keeps the append-only record.

    Args:
        session_factory: SQLAlchemy sessionmaker
        catalog: Outcome catalog (default: DEFAULT_CATALOG)
        config: Engine configuration
        event_sink: Receives OutcomeLogged / FollowUpRequested after commit
        clock: Callable returning the current naive datetime
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        catalog: Optional[OutcomeCatalog] = None,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.catalog = catalog or DEFAULT_CATALOG
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.event_sink = event_sink
        self.clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_outcome(
        self,
        client_id: str,
        outcome_id: str,
        logged_by: str,
        notes: Optional[str] = None,
        follow_up_date: Optional[date] = None,
    ) -> AppliedOutcome:
        """
        Apply a call outcome to the client's score.

        A client without state starts from the neutral score. The most
        recent unresolved alert for the client is marked acted-on.

        Raises:
            UnknownOutcomeError: If outcome_id is not in the catalog
            ValidationError: If a required field is missing
            ConflictError: If concurrent writes outlast the retry budget
        """
        client_id = _require_text(client_id, "client_id")
        logged_by = _require_text(logged_by, "logged_by")
        outcome = self.catalog.get(outcome_id)
        if outcome.requires_follow_up and follow_up_date is None:
            raise ValidationError(f"Outcome {outcome_id!r} requires a follow-up date")

        def write(session: Session, now: datetime) -> AppliedOutcome:
            state, created = self._state_or_new(session, client_id, now)
            before = state.current_score
            after = clamp_score(before + outcome.score_adjustment)

            state.set_score(after, now)
            state.last_contact_at = now
            state.updated_at = now

            adjustment = ScoreAdjustment(
                client_id=client_id,
                outcome_id=outcome.outcome_id,
                outcome_category=outcome.category.value,
                delta=outcome.score_adjustment,
                score_before=before,
                score_after=after,
                notes=notes,
                follow_up_date=follow_up_date,
                logged_by=logged_by,
                logged_at=now,
            )
            session.add(adjustment)
            if created or after != before:
                session.add(ScoreHistory(
                    client_id=client_id,
                    score_before=before,
                    score_after=after,
                    source="outcome",
                    recorded_at=now,
                ))

            resolved_id = None
            alert = AlertTracker.latest_unresolved(session, client_id)
            if alert is not None and AlertTracker.resolve(
                session, alert.id, "call_outcome", outcome.category.value, now
            ):
                resolved_id = alert.id

            session.flush()
            return AppliedOutcome(
                client_id=client_id,
                outcome_id=outcome.outcome_id,
                score_before=before,
                new_score=after,
                new_category=categorize(after),
                adjustment_id=adjustment.id,
                logged_at=now,
                created=created,
                resolved_alert_id=resolved_id,
            )

        applied = run_with_retries(
            self.session_factory, client_id, write,
            self.config.max_write_retries, self.clock,
        )
        logger.info(
            "Logged %s for %s by %s: %d -> %d (%s)",
            outcome.outcome_id, client_id, logged_by,
            applied.score_before, applied.new_score, applied.new_category.key,
        )

        events = [OutcomeLogged(
            client_id=client_id,
            outcome_id=outcome.outcome_id,
            outcome_category=outcome.category.value,
            score_before=applied.score_before,
            score_after=applied.new_score,
            category=applied.new_category.key,
            logged_by=logged_by,
            logged_at=applied.logged_at,
        )]
        if follow_up_date is not None:
            events.append(FollowUpRequested(
                client_id=client_id,
                outcome_id=outcome.outcome_id,
                follow_up_date=follow_up_date,
                requested_by=logged_by,
                notes=notes,
            ))
        emit_all(self.event_sink, events)
        return applied

    def override_score(
        self,
        client_id: str,
        score: int,
        logged_by: str,
        notes: Optional[str] = None,
    ) -> AppliedOutcome:
        """
        Set a client's score directly. Recorded in the ledger as
        `manual_override`.

        Raises:
            ValidationError: If score is not an integer in [0, 100]
            ConflictError: If concurrent writes outlast the retry budget
        """
        client_id = _require_text(client_id, "client_id")
        logged_by = _require_text(logged_by, "logged_by")
        category = categorize(score)
        score = int(score)

        def write(session: Session, now: datetime) -> AppliedOutcome:
            state, created = self._state_or_new(session, client_id, now)
            before = state.current_score
            state.set_score(score, now)
            state.updated_at = now

            adjustment = ScoreAdjustment(
                client_id=client_id,
                outcome_id=MANUAL_OVERRIDE_ID,
                outcome_category="manual",
                delta=score - before,
                score_before=before,
                score_after=score,
                notes=notes,
                logged_by=logged_by,
                logged_at=now,
            )
            session.add(adjustment)
            if created or score != before:
                session.add(ScoreHistory(
                    client_id=client_id,
                    score_before=before,
                    score_after=score,
                    source="manual",
                    recorded_at=now,
                ))
            session.flush()
            return AppliedOutcome(
                client_id=client_id,
                outcome_id=MANUAL_OVERRIDE_ID,
                score_before=before,
                new_score=score,
                new_category=category,
                adjustment_id=adjustment.id,
                logged_at=now,
                created=created,
            )

        applied = run_with_retries(
            self.session_factory, client_id, write,
            self.config.max_write_retries, self.clock,
        )
        logger.info(
            "Manual override for %s by %s: %d -> %d",
            client_id, logged_by, applied.score_before, applied.new_score,
        )
        emit_all(self.event_sink, [OutcomeLogged(
            client_id=client_id,
            outcome_id=MANUAL_OVERRIDE_ID,
            outcome_category="manual",
            score_before=applied.score_before,
            score_after=applied.new_score,
            category=applied.new_category.key,
            logged_by=logged_by,
            logged_at=applied.logged_at,
        )])
        return applied

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entries_for(self, client_id: str, limit: Optional[int] = None) -> List[ScoreAdjustment]:
        """Ledger entries for one client, newest first."""
        stmt = (
            select(ScoreAdjustment)
            .where(ScoreAdjustment.client_id == client_id)
            .order_by(ScoreAdjustment.logged_at.desc(), ScoreAdjustment.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def entries_between(self, start: datetime, end: datetime) -> List[ScoreAdjustment]:
        """Ledger entries logged in [start, end), oldest first."""
        stmt = (
            select(ScoreAdjustment)
            .where(ScoreAdjustment.logged_at >= start, ScoreAdjustment.logged_at < end)
            .order_by(ScoreAdjustment.logged_at, ScoreAdjustment.id)
        )
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_state(self, session: Session, client_id: str) -> Optional[ClientRiskState]:
        return session.get(ClientRiskState, client_id)

    def _state_or_new(self, session: Session, client_id: str, now: datetime):
        state = self._load_state(session, client_id)
        if state is not None:
            return state, False
        state = ClientRiskState.new(client_id, self.config.neutral_score, now)
        session.add(state)
        return state, True
