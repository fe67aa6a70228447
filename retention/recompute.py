"""
Recomputation job: rescores every client and opens alerts on tier
crossings.

Each client is handled in its own transaction; no lock spans clients, so
agents can keep logging outcomes while the job runs, and an interrupted
run can simply be started again.

Usage:
    job = RecomputationJob(session_factory, RuleWeightedScoreFunction(), source)
    result = job.run()
    print(result.summary())
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .alerts import AlertTracker
from .categories import Category, categorize, is_more_urgent
from .collaborators import AlertOpened, AttributeSource, EventSink, emit_all
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import ClientRiskState, ScoreHistory
from .errors import AttributeSourceError
from .ledger import run_with_retries
from .scoring import ScoreFunction

logger = logging.getLogger(__name__)


@dataclass
class ClientRecompute:
    """What happened to one client in a run."""

    client_id: str
    score: int
    category: Category
    created: bool
    changed: bool
    neutral_fallback: bool = False
    alert: Optional[AlertOpened] = None

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "score": self.score,
            "category": self.category.key,
            "created": self.created,
            "changed": self.changed,
            "neutralFallback": self.neutral_fallback,
            "alertOpened": self.alert is not None,
        }


@dataclass
class RecomputeResult:
    """
    Container for one recomputation run.

    Attributes:
        run_id: Short unique id for the run
        total_clients: Clients the run set out to process
        processed: Clients whose new score was committed
        failures: client_id -> error message for clients left untouched
    """

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_clients: int = 0
    processed: int = 0
    created: int = 0
    changed: int = 0
    unchanged: int = 0
    alerts_opened: int = 0
    neutral_fallbacks: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    interrupted: bool = False
    source_unavailable: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def record(self, outcome: ClientRecompute) -> None:
        self.processed += 1
        if outcome.created:
            self.created += 1
        elif outcome.changed:
            self.changed += 1
        else:
            self.unchanged += 1
        if outcome.neutral_fallback:
            self.neutral_fallbacks += 1
        if outcome.alert is not None:
            self.alerts_opened += 1

    def summary(self) -> str:
        """Return formatted summary string."""
        lines = [
            f"Run: {self.run_id}",
            f"Started: {self.started_at.isoformat(timespec='seconds')}",
            f"Clients: {self.processed}/{self.total_clients} processed",
            f"  created: {self.created}  changed: {self.changed}  unchanged: {self.unchanged}",
            f"Alerts opened: {self.alerts_opened}",
            f"Neutral fallbacks: {self.neutral_fallbacks}",
            f"Failures: {self.failed}",
        ]
        if self.duration_seconds is not None:
            lines.append(f"Duration: {self.duration_seconds:.1f}s")
        if self.interrupted:
            lines.append("INTERRUPTED: run stopped before all clients were processed")
        if self.source_unavailable:
            lines.append("Attribute source unavailable; used persisted client list")
        for client_id, message in list(self.failures.items())[:10]:
            lines.append(f"  ! {client_id}: {message}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "total_clients": self.total_clients,
            "processed": self.processed,
            "created": self.created,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "alerts_opened": self.alerts_opened,
            "neutral_fallbacks": self.neutral_fallbacks,
            "failed": self.failed,
            "failures": dict(self.failures),
            "interrupted": self.interrupted,
            "source_unavailable": self.source_unavailable,
        }


class RecomputationJob:
    """
    Rescores clients from their current attributes.

    Args:
        session_factory: SQLAlchemy sessionmaker
        score_function: Any ScoreFunction implementation
        attribute_source: Where client ids and snapshots come from
        config: Engine configuration
        event_sink: Receives AlertOpened after each client's commit
        clock: Callable returning the current naive datetime
        max_workers: Clients scored concurrently (1 = sequential)
        batch_size: Clients submitted per chunk; the stop event is
            checked between chunks and, when sequential, between clients
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        score_function: ScoreFunction,
        attribute_source: AttributeSource,
        config: Optional[EngineConfig] = None,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], datetime] = datetime.now,
        max_workers: int = 1,
        batch_size: int = 500,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.session_factory = session_factory
        self.score_function = score_function
        self.attribute_source = attribute_source
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.event_sink = event_sink
        self.clock = clock
        self.max_workers = max_workers
        self.batch_size = batch_size
        self.alerts = AlertTracker(session_factory, self.config, clock)

    def run(self, stop_event: Optional[threading.Event] = None) -> RecomputeResult:
        """
        Recompute every client once.

        Per-client failures are logged and recorded; they never stop the
        run. Setting `stop_event` ends the run at the next checkpoint.
        """
        result = RecomputeResult(run_id=uuid.uuid4().hex[:8], started_at=self.clock())
        client_ids = self._client_ids(result)
        result.total_clients = len(client_ids)
        logger.info(
            "Recompute %s: %d clients (score function %s v%s, %d worker(s))",
            result.run_id, len(client_ids),
            self.score_function.name, self.score_function.version, self.max_workers,
        )

        chunks = [
            client_ids[i:i + self.batch_size]
            for i in range(0, len(client_ids), self.batch_size)
        ]
        if self.max_workers == 1:
            self._run_sequential(chunks, result, stop_event)
        else:
            self._run_parallel(chunks, result, stop_event)

        result.finished_at = self.clock()
        logger.info(
            "Recompute %s finished: %d processed, %d changed, %d alerts, %d failed%s",
            result.run_id, result.processed, result.changed + result.created,
            result.alerts_opened, result.failed,
            " (interrupted)" if result.interrupted else "",
        )
        return result

    def recompute_client(self, client_id: str) -> ClientRecompute:
        """
        Rescore one client and commit the result.

        Raises whatever the score function, categorizer or database
        raise; `run` turns those into recorded failures.
        """
        neutral_fallback = False
        try:
            attributes = self.attribute_source.fetch(client_id)
        except AttributeSourceError as exc:
            logger.warning("Attributes unavailable for %s (%s); scoring neutral", client_id, exc)
            attributes = {}
            neutral_fallback = True

        score = self.score_function.compute(attributes)
        category = categorize(score)
        score = int(score)

        def write(session: Session, now: datetime) -> ClientRecompute:
            return self._write(session, now, client_id, score, category, attributes)

        outcome = run_with_retries(
            self.session_factory, client_id, write,
            self.config.max_write_retries, self.clock,
        )
        outcome.neutral_fallback = neutral_fallback
        if outcome.alert is not None:
            emit_all(self.event_sink, [outcome.alert])
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _client_ids(self, result: RecomputeResult) -> List[str]:
        try:
            return list(self.attribute_source.client_ids())
        except AttributeSourceError as exc:
            logger.warning("Attribute source unavailable (%s); using persisted clients", exc)
            result.source_unavailable = True
            with self.session_factory() as session:
                return list(session.scalars(
                    select(ClientRiskState.client_id).order_by(ClientRiskState.client_id)
                ))

    def _write(
        self,
        session: Session,
        now: datetime,
        client_id: str,
        score: int,
        category: Category,
        attributes: Mapping[str, Any],
    ) -> ClientRecompute:
        state = session.get(ClientRiskState, client_id)
        created = state is None
        if created:
            state = ClientRiskState.new(client_id, score, now)
            session.add(state)
            baseline = categorize(self.config.neutral_score)
            changed = True
            before = None
        else:
            baseline = categorize(state.current_score)
            before = state.current_score
            changed = state.set_score(score, now)

        state.last_recomputed_at = now
        state.updated_at = now
        contact = _contact_from_attributes(attributes, now)
        if contact is not None and (state.last_contact_at is None or contact > state.last_contact_at):
            state.last_contact_at = contact

        if changed:
            session.add(ScoreHistory(
                client_id=client_id,
                score_before=before,
                score_after=score,
                source="recompute",
                recorded_at=now,
            ))

        event = None
        if is_more_urgent(category, baseline) and AlertTracker.latest_unresolved(session, client_id) is None:
            alert = self.alerts.open_alert(session, client_id, score, category, baseline, now)
            event = AlertOpened(
                alert_id=alert.id,
                client_id=client_id,
                level=alert.level,
                category=category.key,
                previous_category=baseline.key,
                score=score,
                generated_at=now,
                response_due_at=alert.response_due_at,
            )

        return ClientRecompute(
            client_id=client_id,
            score=score,
            category=category,
            created=created,
            changed=changed,
            alert=event,
        )

    def _run_sequential(self, chunks, result, stop_event) -> None:
        for chunk in chunks:
            for client_id in chunk:
                if stop_event is not None and stop_event.is_set():
                    result.interrupted = True
                    logger.warning("Recompute %s interrupted", result.run_id)
                    return
                self._process(client_id, result)

    def _run_parallel(self, chunks, result, stop_event) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for chunk in chunks:
                if stop_event is not None and stop_event.is_set():
                    result.interrupted = True
                    logger.warning("Recompute %s interrupted", result.run_id)
                    return
                futures = [(cid, pool.submit(self.recompute_client, cid)) for cid in chunk]
                for client_id, future in futures:
                    try:
                        result.record(future.result())
                    except Exception as exc:
                        self._fail(client_id, exc, result)

    def _process(self, client_id: str, result: RecomputeResult) -> None:
        try:
            result.record(self.recompute_client(client_id))
        except Exception as exc:
            self._fail(client_id, exc, result)

    @staticmethod
    def _fail(client_id: str, exc: Exception, result: RecomputeResult) -> None:
        logger.exception("Recompute failed for %s: %s", client_id, exc)
        result.failures[client_id] = f"{exc.__class__.__name__}: {exc}"


def _contact_from_attributes(attributes: Mapping[str, Any], now: datetime) -> Optional[datetime]:
    """Last contact implied by DAYS_SINCE_CONTACT, if the snapshot has a usable value."""
    days = attributes.get("DAYS_SINCE_CONTACT")
    if days is None or isinstance(days, bool):
        return None
    try:
        days = int(days)
    except (TypeError, ValueError, OverflowError):
        return None
    if days < 0:
        return None
    try:
        return now - timedelta(days=days)
    except OverflowError:
        return None
