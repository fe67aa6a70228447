"""
Pytest fixtures for retention engine tests.
"""

from datetime import datetime, timedelta

import pandas as pd
import pytest

# Add packages to path
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from retention.collaborators import InMemoryAttributeSource, InMemoryEventSink, StaticTaskSource, TaskSummary
from retention.config import EngineConfig, ScoringConfig
from retention.db import ClientRiskState, init_db, make_engine, make_session_factory
from retention.engine import RetentionEngine
from retention.scoring import RuleWeightedScoreFunction, ScoreFunction, generate_sample_attributes

# Tuesday morning
FIXED_NOW = datetime(2026, 3, 10, 9, 30)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


class StubScoreFunction(ScoreFunction):
    """Returns the snapshot's SCORE attribute, or 50 without one."""

    name = "stub"
    version = "test"

    def compute(self, attributes):
        return attributes.get("SCORE", 50)


def snapshot(score):
    return {"SCORE": score}


def seed_state(session_factory, client_id, score, now=FIXED_NOW, last_contact_at=None, previous_score=None):
    """Insert a client state directly."""
    with session_factory.begin() as session:
        state = ClientRiskState.new(client_id, score, now)
        state.previous_score = previous_score
        state.last_contact_at = last_contact_at
        state.last_recomputed_at = now
        session.add(state)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test."""
    db_engine = make_engine(f"sqlite:///{tmp_path / 'retention.db'}")
    init_db(db_engine)
    yield make_session_factory(db_engine)
    db_engine.dispose()


@pytest.fixture
def events():
    return InMemoryEventSink()


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def stub_score_fn():
    return StubScoreFunction()


@pytest.fixture
def engine(session_factory, stub_score_fn, engine_config, events, clock):
    """RetentionEngine on a fresh database with a stub score function."""
    return RetentionEngine(
        session_factory,
        score_function=stub_score_fn,
        config=engine_config,
        event_sink=events,
        task_source=StaticTaskSource(default=TaskSummary(total=5, completed=2)),
        clock=clock,
    )


@pytest.fixture
def source():
    """Empty in-memory attribute source; tests fill `source.snapshots`."""
    return InMemoryAttributeSource()


@pytest.fixture
def default_config():
    """Default scoring configuration."""
    return ScoringConfig()


@pytest.fixture
def score_fn(default_config):
    """Rule-weighted score function with default config."""
    return RuleWeightedScoreFunction(default_config)


@pytest.fixture
def sample_data():
    """100 sample clients with realistic distributions."""
    return generate_sample_attributes(n_clients=100, seed=42)


@pytest.fixture
def edge_cases():
    """Specific edge cases for testing boundary conditions."""
    return pd.DataFrame([
        # Everything pointing to churn
        {
            "CLIENT_ID": "EDGE_HIGH_RISK",
            "PLAN_TYPE": "PDP",
            "DAYS_SINCE_CONTACT": 400,
            "MONTHS_UNTIL_RENEWAL": 0,
            "PREMIUM_CHANGE": 0.45,
            "TENURE_MONTHS": 3,
            "OPEN_ISSUES": 5,
        },
        # Long-tenured, recently contacted, no issues, premium down
        {
            "CLIENT_ID": "EDGE_LOW_RISK",
            "PLAN_TYPE": "SNP",
            "DAYS_SINCE_CONTACT": 5,
            "MONTHS_UNTIL_RENEWAL": 11,
            "PREMIUM_CHANGE": -0.05,
            "TENURE_MONTHS": 96,
            "OPEN_ISSUES": 0,
        },
        # Exactly on every lower bound
        {
            "CLIENT_ID": "EDGE_BOUNDARY",
            "PLAN_TYPE": "HMO",
            "DAYS_SINCE_CONTACT": 90,
            "MONTHS_UNTIL_RENEWAL": 3,
            "PREMIUM_CHANGE": 0.10,
            "TENURE_MONTHS": 18,
            "OPEN_ISSUES": 2,
        },
        # No published premium change
        {
            "CLIENT_ID": "EDGE_NO_PREMIUM",
            "PLAN_TYPE": "PPO",
            "DAYS_SINCE_CONTACT": 45,
            "MONTHS_UNTIL_RENEWAL": 6,
            "PREMIUM_CHANGE": None,
            "TENURE_MONTHS": 24,
            "OPEN_ISSUES": 0,
        },
    ])


@pytest.fixture
def single_client():
    """Single valid attribute snapshot."""
    return {
        "PLAN_TYPE": "HMO",
        "DAYS_SINCE_CONTACT": 95,
        "MONTHS_UNTIL_RENEWAL": 2,
        "PREMIUM_CHANGE": 0.12,
        "TENURE_MONTHS": 30,
        "OPEN_ISSUES": 1,
    }
