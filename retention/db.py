"""
SQLAlchemy models and session helpers.

Tables:
    client_risk_state   one mutable row per client, version-checked
    score_adjustments   append-only ledger of call outcomes and overrides
    score_history       append-only log of every committed score change
    risk_alerts         tier-crossing alerts and their lifecycle

Timestamps are naive and come from the engine clock; nothing here uses
server-side defaults so that every write in one unit shares one `now`.
"""

import threading
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .categories import categorize


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Client state
# ---------------------------------------------------------------------------

class ClientRiskState(Base):
    """Current risk score of one client.

    `version` is the optimistic-concurrency token: SQLAlchemy adds
    `WHERE version = :old` to every UPDATE and raises StaleDataError when
    another writer committed first.
    """

    __tablename__ = "client_risk_state"
    __table_args__ = (
        CheckConstraint(
            "current_score >= 0 AND current_score <= 100",
            name="ck_state_score_range",
        ),
    )

    client_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_score: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    last_recomputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_contact_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def new(cls, client_id: str, score: int, now: datetime) -> "ClientRiskState":
        """Build a state row with its cached category in place."""
        return cls(
            client_id=client_id,
            current_score=score,
            previous_score=None,
            category=categorize(score).key,
            created_at=now,
            updated_at=now,
        )

    def set_score(self, score: int, now: datetime) -> bool:
        """
        Move to a new score, keeping category and previous_score in step.

        Returns:
            True if the score changed
        """
        category = categorize(score).key
        if score == self.current_score:
            return False
        self.previous_score = self.current_score
        self.current_score = score
        self.category = category
        self.updated_at = now
        return True

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "score": self.current_score,
            "previousScore": self.previous_score,
            "category": self.category,
            "lastRecomputedAt": self.last_recomputed_at.isoformat() if self.last_recomputed_at else None,
            "lastContactAt": self.last_contact_at.isoformat() if self.last_contact_at else None,
            "updatedAt": self.updated_at.isoformat(),
        }

    def __repr__(self):
        return f"<ClientRiskState {self.client_id} score={self.current_score} category={self.category}>"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class ScoreAdjustment(Base):
    """Immutable record of one outcome applied to a client's score."""

    __tablename__ = "score_adjustments"
    __table_args__ = (
        Index("ix_adjustments_client_logged", "client_id", "logged_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome_category: Mapped[str] = mapped_column(String(16), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    score_before: Mapped[int] = mapped_column(Integer, nullable=False)
    score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    follow_up_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    logged_by: Mapped[str] = mapped_column(String(64), nullable=False)
    logged_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "outcomeId": self.outcome_id,
            "outcomeCategory": self.outcome_category,
            "delta": self.delta,
            "scoreBefore": self.score_before,
            "scoreAfter": self.score_after,
            "notes": self.notes,
            "followUpDate": self.follow_up_date.isoformat() if self.follow_up_date else None,
            "loggedBy": self.logged_by,
            "loggedAt": self.logged_at.isoformat(),
        }

    def __repr__(self):
        return (
            f"<ScoreAdjustment {self.client_id} {self.outcome_id} "
            f"{self.score_before}->{self.score_after}>"
        )


class ScoreHistory(Base):
    """One committed score change, whatever caused it."""

    __tablename__ = "score_history"
    __table_args__ = (
        Index("ix_history_client_recorded", "client_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score_before: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)  # recompute | outcome | manual
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    @property
    def change(self) -> int:
        return self.score_after - (self.score_before if self.score_before is not None else self.score_after)

    def to_dict(self) -> dict:
        return {
            "scoreBefore": self.score_before,
            "scoreAfter": self.score_after,
            "change": self.change,
            "source": self.source,
            "recordedAt": self.recorded_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class RiskAlert(Base):
    """A client's score crossing into a more urgent category.

    Lifecycle timestamps are set once and never cleared:
    generated_at -> viewed_at -> acted_on_at.
    """

    __tablename__ = "risk_alerts"
    __table_args__ = (
        Index("ix_alerts_client_open", "client_id", "acted_on_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score_at_generation: Mapped[int] = mapped_column(Integer, nullable=False)
    category_at_generation: Mapped[str] = mapped_column(String(16), nullable=False)
    previous_category: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    level: Mapped[str] = mapped_column(String(16), nullable=False)  # notice | warning | urgent | emergency
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    response_due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    acted_on_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    action_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    @property
    def status(self) -> str:
        if self.acted_on_at is not None:
            return "acted_on"
        if self.viewed_at is not None:
            return "viewed"
        return "generated"

    @property
    def is_resolved(self) -> bool:
        return self.acted_on_at is not None

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "clientId": self.client_id,
            "scoreAtGeneration": self.score_at_generation,
            "category": self.category_at_generation,
            "previousCategory": self.previous_category,
            "level": self.level,
            "status": self.status,
            "generatedAt": _iso(self.generated_at),
            "responseDueAt": _iso(self.response_due_at),
            "viewedAt": _iso(self.viewed_at),
            "actedOnAt": _iso(self.acted_on_at),
            "actionType": self.action_type,
            "outcome": self.outcome,
        }

    def __repr__(self):
        return f"<RiskAlert {self.id} client={self.client_id} level={self.level} status={self.status}>"


# ---------------------------------------------------------------------------
# Engine / session helpers
# ---------------------------------------------------------------------------

def make_engine(url: str = "sqlite:///retention.db", echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine.

    SQLite connections are shared across threads by the pool, so
    same-thread checking is disabled. An in-memory database lives on a
    single static connection; checking it out holds a lock until it is
    checked back in, so sessions on different threads take turns and
    never share an open transaction.
    """
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        if is_memory_url(url):
            engine = create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
            _serialize_checkouts(engine)
            return engine
        return create_engine(url, echo=echo, connect_args=connect_args)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def _serialize_checkouts(engine: Engine) -> None:
    lock = threading.RLock()

    @event.listens_for(engine, "checkout")
    def _acquire(dbapi_connection, connection_record, connection_proxy):
        lock.acquire()

    @event.listens_for(engine, "checkin")
    def _release(dbapi_connection, connection_record):
        lock.release()


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory used by every engine component."""
    return sessionmaker(bind=engine, expire_on_commit=False)
