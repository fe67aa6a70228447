"""
Tests for the recomputation job.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from retention.categories import Category, clamp_score
from retention.collaborators import (
    AlertOpened,
    AttributeSource,
    DataFrameAttributeSource,
    InMemoryAttributeSource,
)
from retention.db import (
    ClientRiskState,
    RiskAlert,
    ScoreAdjustment,
    ScoreHistory,
    init_db,
    make_engine,
    make_session_factory,
)
from retention.engine import RetentionEngine
from retention.errors import AttributeSourceError, NotFoundError
from retention.recompute import RecomputationJob
from retention.scoring import RuleWeightedScoreFunction

from conftest import FIXED_NOW, StubScoreFunction, seed_state, snapshot


def _states(session_factory):
    with session_factory() as session:
        return {s.client_id: s for s in session.scalars(select(ClientRiskState))}


def _alerts(session_factory):
    with session_factory() as session:
        return list(session.scalars(select(RiskAlert).order_by(RiskAlert.id)))


def _history_count(session_factory):
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(ScoreHistory))


class GhostSource(InMemoryAttributeSource):
    """Lists ids it cannot fetch."""

    def __init__(self, snapshots, ghosts):
        super().__init__(snapshots)
        self.ghosts = list(ghosts)

    def client_ids(self):
        return super().client_ids() + self.ghosts


class DownSource(AttributeSource):
    def client_ids(self):
        raise AttributeSourceError("warehouse offline")

    def fetch(self, client_id):
        raise AttributeSourceError("warehouse offline")


class StoppingScoreFunction(StubScoreFunction):
    """Sets the stop event once `after` clients have been scored."""

    def __init__(self, stop_event, after):
        self.stop_event = stop_event
        self.after = after
        self.calls = 0

    def compute(self, attributes):
        self.calls += 1
        if self.calls >= self.after:
            self.stop_event.set()
        return super().compute(attributes)


class FlakyWriteJob(RecomputationJob):
    """Fails inside the write transaction for the listed clients."""

    def __init__(self, *args, failing=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = set(failing)

    def _write(self, session, now, client_id, *args):
        outcome = super()._write(session, now, client_id, *args)
        if client_id in self.failing:
            session.flush()
            raise RuntimeError(f"write failed for {client_id}")
        return outcome


@pytest.fixture
def memory_factory():
    """In-memory SQLite database."""
    db_engine = make_engine("sqlite://")
    init_db(db_engine)
    yield make_session_factory(db_engine)
    db_engine.dispose()


class TestRecompute:
    """Scoring, persistence and idempotency."""

    def test_creates_states(self, engine, source, session_factory):
        source.snapshots.update({"A": snapshot(72), "B": snapshot(30)})

        result = engine.recompute(source)

        states = _states(session_factory)
        assert (states["A"].current_score, states["A"].category) == (72, "high")
        assert (states["B"].current_score, states["B"].category) == (30, "low")
        assert states["A"].last_recomputed_at == FIXED_NOW
        assert result.created == 2
        assert result.processed == result.total_clients == 2

    def test_first_history_entry_has_no_before(self, engine, source, session_factory):
        source.snapshots["A"] = snapshot(72)
        engine.recompute(source)

        trend = engine.client_trend("A")
        assert [(p.score_before, p.score_after) for p in trend.entries] == [(None, 72)]

    def test_idempotent(self, engine, source, session_factory, clock):
        source.snapshots.update({"A": snapshot(72), "B": snapshot(30), "C": snapshot(91)})
        engine.recompute(source)
        first = {cid: (s.current_score, s.category, s.previous_score) for cid, s in _states(session_factory).items()}
        history_before = _history_count(session_factory)
        alerts_before = len(_alerts(session_factory))

        clock.advance(hours=1)
        result = engine.recompute(source)

        second = {cid: (s.current_score, s.category, s.previous_score) for cid, s in _states(session_factory).items()}
        assert second == first
        assert result.unchanged == 3
        assert result.alerts_opened == 0
        assert _history_count(session_factory) == history_before
        assert len(_alerts(session_factory)) == alerts_before

    def test_changed_score_updates_previous(self, engine, source, session_factory):
        seed_state(session_factory, "A", 40)
        source.snapshots["A"] = snapshot(45)

        result = engine.recompute(source)

        state = _states(session_factory)["A"]
        assert (state.current_score, state.previous_score) == (45, 40)
        assert result.changed == 1

    def test_contact_refreshed_from_attributes(self, engine, source, session_factory):
        seed_state(session_factory, "A", 40, last_contact_at=FIXED_NOW - timedelta(days=30))
        seed_state(session_factory, "B", 40, last_contact_at=FIXED_NOW - timedelta(days=1))
        source.snapshots.update({
            "A": {"SCORE": 40, "DAYS_SINCE_CONTACT": 3},
            "B": {"SCORE": 40, "DAYS_SINCE_CONTACT": 10},
        })

        engine.recompute(source)

        states = _states(session_factory)
        assert states["A"].last_contact_at == FIXED_NOW - timedelta(days=3)
        assert states["B"].last_contact_at == FIXED_NOW - timedelta(days=1)

    def test_summary_and_dict(self, engine, source):
        source.snapshots.update({"A": snapshot(72), "B": snapshot(30)})

        result = engine.recompute(source)

        assert "Clients: 2/2 processed" in result.summary()
        data = result.to_dict()
        assert data["processed"] == 2
        assert data["failed"] == 0
        assert data["duration_seconds"] == 0.0

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"batch_size": 0}])
    def test_rejects_bad_sizes(self, session_factory, stub_score_fn, source, kwargs):
        with pytest.raises(ValueError):
            RecomputationJob(session_factory, stub_score_fn, source, **kwargs)


class TestAlerts:
    """Alerts open when a client moves into a more urgent category."""

    def test_tier_crossing_opens_alert(self, engine, source, session_factory, events):
        seed_state(session_factory, "C1", 60)
        source.snapshots["C1"] = snapshot(88)

        result = engine.recompute(source)

        (alert,) = _alerts(session_factory)
        assert alert.client_id == "C1"
        assert (alert.previous_category, alert.category_at_generation) == ("elevated", "critical")
        assert alert.level == "urgent"
        assert alert.score_at_generation == 88
        assert alert.response_due_at == FIXED_NOW + timedelta(hours=24)
        assert result.alerts_opened == 1
        (event,) = events.of_type(AlertOpened)
        assert event.alert_id == alert.id

    def test_new_client_compared_to_neutral(self, engine, source, session_factory):
        source.snapshots.update({"HOT": snapshot(97), "MILD": snapshot(52), "COOL": snapshot(10)})

        engine.recompute(source)

        alerts = _alerts(session_factory)
        assert [(a.client_id, a.previous_category, a.level) for a in alerts] == [("HOT", "moderate", "emergency")]

    def test_moving_down_opens_nothing(self, engine, source, session_factory):
        seed_state(session_factory, "C1", 90)
        source.snapshots["C1"] = snapshot(30)

        engine.recompute(source)

        assert _alerts(session_factory) == []

    def test_no_duplicate_while_unresolved(self, engine, source, session_factory, clock):
        seed_state(session_factory, "C1", 60)
        source.snapshots["C1"] = snapshot(88)
        engine.recompute(source)

        clock.advance(hours=6)
        source.snapshots["C1"] = snapshot(97)
        result = engine.recompute(source)

        assert len(_alerts(session_factory)) == 1
        assert result.alerts_opened == 0

    def test_new_alert_after_resolution(self, engine, source, session_factory, clock):
        seed_state(session_factory, "C1", 60)
        source.snapshots["C1"] = snapshot(88)
        engine.recompute(source)
        (first,) = _alerts(session_factory)
        engine.mark_acted_on(first.id, "call")

        for score in (60, 90):
            clock.advance(days=1)
            source.snapshots["C1"] = snapshot(score)
            engine.recompute(source)

        alerts = _alerts(session_factory)
        assert len(alerts) == 2
        assert alerts[1].previous_category == "elevated"
        assert alerts[1].generated_at == clock.now


class TestFailures:
    """One bad client never stops the run."""

    def test_partial_failure(self, engine, source, session_factory):
        source.snapshots.update({
            "A": snapshot(40),
            "B": snapshot("broken"),
            "C": snapshot(150),
            "D": snapshot(80),
        })

        result = engine.recompute(source)

        assert result.processed == 2
        assert set(result.failures) == {"B", "C"}
        assert set(_states(session_factory)) == {"A", "D"}
        assert "! B" in result.summary()

    def test_failure_leaves_previous_state(self, engine, source, session_factory):
        seed_state(session_factory, "B", 35)
        source.snapshots["B"] = snapshot(-5)

        result = engine.recompute(source)

        assert result.failed == 1
        assert _states(session_factory)["B"].current_score == 35

    def test_failure_logged(self, engine, source, caplog):
        source.snapshots["B"] = snapshot(150)

        with caplog.at_level("ERROR", logger="retention.recompute"):
            engine.recompute(source)

        assert "Recompute failed for B" in caplog.text

    def test_unfetchable_client_scores_neutral(self, engine, session_factory):
        source = GhostSource({"A": snapshot(72)}, ghosts=["GHOST"])

        result = engine.recompute(source)

        assert result.neutral_fallbacks == 1
        assert _states(session_factory)["GHOST"].current_score == 50

    def test_source_down_uses_persisted_clients(self, engine, session_factory):
        seed_state(session_factory, "C1", 60)
        seed_state(session_factory, "C2", 20)

        result = engine.recompute(DownSource())

        assert result.source_unavailable
        assert result.total_clients == 2
        assert result.neutral_fallbacks == 2
        assert {cid: s.current_score for cid, s in _states(session_factory).items()} == {"C1": 50, "C2": 50}

    def test_empty_source(self, engine, session_factory):
        result = engine.recompute(InMemoryAttributeSource())

        assert result.total_clients == 0
        assert result.processed == 0
        assert not result.interrupted


class TestStopAndParallel:
    def test_preset_stop_event(self, engine, source):
        source.snapshots.update({"A": snapshot(10), "B": snapshot(20)})
        stop = threading.Event()
        stop.set()

        result = engine.recompute(source, stop_event=stop)

        assert result.interrupted
        assert result.processed == 0
        assert "INTERRUPTED" in result.summary()

    def test_stop_mid_run(self, session_factory, clock):
        stop = threading.Event()
        source = InMemoryAttributeSource({f"C{i:02d}": snapshot(30) for i in range(10)})
        job = RecomputationJob(session_factory, StoppingScoreFunction(stop, after=3), source, clock=clock)

        result = job.run(stop)

        assert result.interrupted
        assert result.processed == 3
        assert len(_states(session_factory)) == 3

    def test_rerun_after_interrupt_completes(self, session_factory, clock):
        stop = threading.Event()
        source = InMemoryAttributeSource({f"C{i:02d}": snapshot(30) for i in range(10)})
        RecomputationJob(session_factory, StoppingScoreFunction(stop, after=3), source, clock=clock).run(stop)

        result = RecomputationJob(session_factory, StubScoreFunction(), source, clock=clock).run()

        assert result.processed == 10
        assert result.unchanged == 3
        assert result.created == 7

    def test_parallel_workers(self, session_factory, clock):
        source = InMemoryAttributeSource({f"C{i:03d}": snapshot(i % 101) for i in range(40)})
        job = RecomputationJob(
            session_factory, StubScoreFunction(), source, clock=clock, max_workers=4, batch_size=10
        )

        result = job.run()

        assert result.processed == 40
        assert result.failed == 0
        states = _states(session_factory)
        assert len(states) == 40
        assert states["C039"].current_score == 39


class TestRuleWeightedRecompute:
    def test_edge_cases_end_to_end(self, session_factory, clock, edge_cases):
        source = DataFrameAttributeSource(edge_cases)
        job = RecomputationJob(session_factory, RuleWeightedScoreFunction(), source, clock=clock)

        result = job.run()

        states = _states(session_factory)
        assert states["EDGE_HIGH_RISK"].current_score == 100
        assert states["EDGE_LOW_RISK"].category == Category.STABLE.key
        assert states["EDGE_NO_PREMIUM"].last_contact_at == FIXED_NOW - timedelta(days=45)
        assert result.alerts_opened == 2
        levels = {a.client_id: a.level for a in _alerts(session_factory)}
        assert levels == {"EDGE_HIGH_RISK": "emergency", "EDGE_BOUNDARY": "warning"}

    def test_null_attribute_scores_neutral(self, session_factory, clock, single_client):
        seed_state(session_factory, "C1", 30)
        source = InMemoryAttributeSource({"C1": dict(single_client, OPEN_ISSUES=None)})
        job = RecomputationJob(session_factory, RuleWeightedScoreFunction(), source, clock=clock)

        result = job.run()

        assert result.failed == 0
        assert _states(session_factory)["C1"].current_score == 50


class TestContactDerivation:
    @pytest.mark.parametrize("days", [800_000, 10**9])
    def test_huge_days_since_contact_keeps_score(self, engine, source, session_factory, days):
        source.snapshots["A"] = {"SCORE": 70, "DAYS_SINCE_CONTACT": days}

        result = engine.recompute(source)

        assert result.failed == 0
        state = _states(session_factory)["A"]
        assert state.current_score == 70
        assert state.last_contact_at is None


class TestInMemoryDatabase:
    """A single shared connection must not mix concurrent transactions."""

    def test_parallel_rollbacks_stay_isolated(self, memory_factory, clock):
        ids = [f"C{i:03d}" for i in range(300)]
        failing = ids[::3]
        source = InMemoryAttributeSource({cid: snapshot(i % 101) for i, cid in enumerate(ids)})
        job = FlakyWriteJob(
            memory_factory, StubScoreFunction(), source, clock=clock,
            max_workers=8, batch_size=50, failing=failing,
        )

        result = job.run()

        assert result.processed == 200
        assert set(result.failures) == set(failing)
        assert set(_states(memory_factory)) == set(ids) - set(failing)
        assert _history_count(memory_factory) == 200

    def test_engine_from_memory_url(self, clock):
        engine = RetentionEngine.from_url("sqlite://", score_function=StubScoreFunction(), clock=clock)
        source = InMemoryAttributeSource({f"C{i:02d}": snapshot(40 + i) for i in range(30)})

        result = engine.recompute(source, max_workers=6, batch_size=10)

        assert result.processed == 30
        assert engine.risk_distribution().total == 30


class TestMixedWrites:
    """Outcomes and recomputes interleaved on the same clients."""

    def test_tier_crossing_elevated_to_high(self, engine, source, session_factory):
        seed_state(session_factory, "C1", 68)
        source.snapshots["C1"] = snapshot(72)

        result = engine.recompute(source)

        (alert,) = _alerts(session_factory)
        assert alert.score_at_generation == 72
        assert (alert.previous_category, alert.category_at_generation) == ("elevated", "high")
        assert result.alerts_opened == 1

    def test_bounds_hold_across_interleaved_writes(self, engine, source, session_factory, clock):
        steps = [
            ("recompute", {"A": 97, "B": 3}),
            ("outcome", ("A", "switched_carrier")),
            ("outcome", ("B", "retained_confirmed")),
            ("recompute", {"A": 90, "B": 10}),
            ("outcome", ("A", "switched_carrier")),
            ("outcome", ("A", "provider_issue")),
            ("outcome", ("B", "issue_resolved")),
            ("recompute", {"A": 100, "B": 0}),
            ("outcome", ("A", "cost_complaint")),
            ("outcome", ("B", "good_conversation")),
        ]
        for kind, payload in steps:
            clock.advance(minutes=5)
            if kind == "recompute":
                source.snapshots.update({cid: snapshot(score) for cid, score in payload.items()})
                engine.recompute(source)
            else:
                client_id, outcome_id = payload
                engine.apply_outcome(client_id, outcome_id, "agent-1")

        states = _states(session_factory)
        assert {cid: s.current_score for cid, s in states.items()} == {"A": 100, "B": 0}
        with session_factory() as session:
            adjustments = list(session.scalars(select(ScoreAdjustment)))
            history = list(session.scalars(select(ScoreHistory).order_by(ScoreHistory.id)))
        for entry in adjustments:
            assert entry.score_after == clamp_score(entry.score_before + entry.delta)
        for entry in history:
            assert 0 <= entry.score_after <= 100
        for client_id in ("A", "B"):
            chain = [h for h in history if h.client_id == client_id]
            for earlier, later in zip(chain, chain[1:]):
                assert later.score_before == earlier.score_after
            assert chain[-1].score_after == states[client_id].current_score


class TestSingleClient:
    def test_recalculate_client(self, engine, source, session_factory, events):
        seed_state(session_factory, "C1", 60)
        source.snapshots["C1"] = snapshot(88)

        outcome = engine.recalculate_client("C1", source)

        assert (outcome.score, outcome.category, outcome.changed) == (88, Category.CRITICAL, True)
        assert outcome.alert is not None
        assert len(events.of_type(AlertOpened)) == 1
        assert engine.client_state("C1").previous_score == 60

    def test_recalculate_unknown_client(self, engine, source):
        with pytest.raises(NotFoundError):
            engine.recalculate_client("NOPE", source)

    def test_known_client_missing_from_source_scores_neutral(self, engine, source, session_factory):
        seed_state(session_factory, "C1", 80)

        outcome = engine.recalculate_client("C1", source)

        assert outcome.neutral_fallback
        assert outcome.score == 50

    def test_client_state_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.client_state("NOPE")
