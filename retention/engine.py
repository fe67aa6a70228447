"""
RetentionEngine: one object wiring every component to a shared database,
configuration, event sink and clock.

Usage:
    from retention import RetentionEngine

    engine = RetentionEngine.from_url("sqlite:///retention.db")
    engine.recompute(DataFrameAttributeSource.from_csv("attributes.csv"))
    for entry in engine.priority_queue(min_category="high", limit=10):
        print(entry.client_id, entry.score, entry.category)
"""

import logging
import threading
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from .alerts import AlertTracker
from .briefing import Briefing, BriefingGenerator
from .collaborators import AttributeSource, EventSink, LoggingEventSink, TaskSource
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import ClientRiskState, RiskAlert, init_db, make_engine, make_session_factory
from .distribution import RiskDistribution, risk_distribution
from .errors import AttributeSourceError, NotFoundError
from .history import ScoreHistoryReader, ScoreTrend
from .ledger import AdjustmentLedger, AppliedOutcome
from .outcomes import Outcome, OutcomeCatalog, DEFAULT_CATALOG
from .queue import PriorityQueueBuilder, QueueEntry, QueueFilter
from .recompute import ClientRecompute, RecomputationJob, RecomputeResult
from .scoring import RuleWeightedScoreFunction, ScoreFunction

logger = logging.getLogger(__name__)


class RetentionEngine:
    """
    Facade over the scoring, ledger, alert and read-side components.

    Args:
        session_factory: SQLAlchemy sessionmaker bound to the database
        score_function: Base score capability (default: rule-weighted)
        catalog: Outcome catalog
        config: Engine configuration
        event_sink: Receives engine events (default: logs them)
        task_source: External task totals for the briefing
        clock: Callable returning the current naive datetime
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        score_function: Optional[ScoreFunction] = None,
        catalog: Optional[OutcomeCatalog] = None,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[EventSink] = None,
        task_source: Optional[TaskSource] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.score_function = score_function or RuleWeightedScoreFunction()
        self.catalog = catalog or DEFAULT_CATALOG
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.event_sink = event_sink if event_sink is not None else LoggingEventSink()
        self.task_source = task_source
        self.clock = clock

        self.ledger = AdjustmentLedger(
            session_factory, self.catalog, self.config, self.event_sink, clock
        )
        self.alerts = AlertTracker(session_factory, self.config, clock)
        self.queue = PriorityQueueBuilder(session_factory, self.config, clock)
        self.history = ScoreHistoryReader(session_factory, clock)
        self.briefings = BriefingGenerator(session_factory, self.config, task_source, clock)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RetentionEngine":
        """Create the database tables if needed and build an engine on them."""
        db_engine = make_engine(url)
        init_db(db_engine)
        return cls(make_session_factory(db_engine), **kwargs)

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
        return self.ledger.apply_outcome(client_id, outcome_id, logged_by, notes, follow_up_date)

    def override_score(
        self,
        client_id: str,
        score: int,
        logged_by: str,
        notes: Optional[str] = None,
    ) -> AppliedOutcome:
        return self.ledger.override_score(client_id, score, logged_by, notes)

    def recompute(
        self,
        attribute_source: AttributeSource,
        stop_event: Optional[threading.Event] = None,
        max_workers: int = 1,
        batch_size: int = 500,
    ) -> RecomputeResult:
        job = self._recompute_job(attribute_source, max_workers, batch_size)
        return job.run(stop_event)

    def recalculate_client(self, client_id: str, attribute_source: AttributeSource) -> ClientRecompute:
        """
        Rescore one client from its current attributes right away.

        Raises:
            NotFoundError: If the client has no stored score and the
                source has no attributes for it
        """
        if self._find_state(client_id) is None:
            try:
                attribute_source.fetch(client_id)
            except AttributeSourceError:
                raise NotFoundError(f"Unknown client {client_id!r}") from None
        return self._recompute_job(attribute_source).recompute_client(client_id)

    def mark_viewed(self, alert_id: int) -> RiskAlert:
        return self.alerts.mark_viewed(alert_id)

    def mark_acted_on(self, alert_id: int, action_type: str, outcome: Optional[str] = None) -> RiskAlert:
        return self.alerts.mark_acted_on(alert_id, action_type, outcome)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_alerts(self, status: str = "open", limit: int = 50) -> List[RiskAlert]:
        return self.alerts.list_alerts(status, limit)

    def alert_counts(self) -> Dict[str, int]:
        return self.alerts.counts_by_level()

    def priority_queue(self, min_category: Optional[str] = None, limit=None) -> List[QueueEntry]:
        """Ordered outreach queue. Raises ValidationError for bad filters."""
        return self.queue.build(QueueFilter.parse(min_category, limit, self.config))

    def next_in_queue(self, after: Optional[str] = None, min_category: Optional[str] = None) -> Optional[QueueEntry]:
        return self.queue.next_after(after, QueueFilter.parse(min_category, None, self.config))

    def risk_distribution(self) -> RiskDistribution:
        with self.session_factory() as session:
            return risk_distribution(session, self.clock())

    def briefing(self, now: Optional[datetime] = None) -> Briefing:
        return self.briefings.generate(now)

    def client_trend(self, client_id: str, days: int = 90) -> ScoreTrend:
        return self.history.trend(client_id, days)

    def outcome_options(self) -> Dict[str, List[Outcome]]:
        return self.catalog.grouped()

    def client_state(self, client_id: str) -> ClientRiskState:
        """Current score of one client. Raises NotFoundError if never scored."""
        state = self._find_state(client_id)
        if state is None:
            raise NotFoundError(f"Client {client_id!r} has no risk score")
        return state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_state(self, client_id: str) -> Optional[ClientRiskState]:
        with self.session_factory() as session:
            return session.get(ClientRiskState, client_id)

    def _recompute_job(
        self,
        attribute_source: AttributeSource,
        max_workers: int = 1,
        batch_size: int = 500,
    ) -> RecomputationJob:
        return RecomputationJob(
            self.session_factory,
            self.score_function,
            attribute_source,
            config=self.config,
            event_sink=self.event_sink,
            clock=self.clock,
            max_workers=max_workers,
            batch_size=batch_size,
        )
