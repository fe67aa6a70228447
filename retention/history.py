"""
Score history reads: per-client trend and velocity, and score movement
across the whole book since a point in time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .db import ClientRiskState, ScoreHistory
from .errors import ValidationError

VELOCITY_WINDOW = 7

VELOCITY_INDICATORS = {
    "spiking": {"label": "Spiking - Investigate urgently", "color": "red"},
    "rising": {"label": "Rising - Something changed", "color": "orange"},
    "stable": {"label": "Stable - Monitor", "color": "gray"},
    "improving": {"label": "Improving - Engagement working", "color": "green"},
}


def velocity(scores_newest_first: List[int]) -> str:
    """
    Classify recent movement from scores ordered newest first.

    Compares the newest score with the oldest of the latest seven:
    >= +20 spiking, >= +10 rising, <= -10 improving, otherwise stable.
    """
    recent = scores_newest_first[:VELOCITY_WINDOW]
    if len(recent) < 2:
        return "stable"
    change = recent[0] - recent[-1]
    if change >= 20:
        return "spiking"
    if change >= 10:
        return "rising"
    if change <= -10:
        return "improving"
    return "stable"


@dataclass
class ScoreTrend:
    client_id: str
    days: int
    entries: List[ScoreHistory] = field(default_factory=list)

    @property
    def velocity(self) -> str:
        return velocity([e.score_after for e in self.entries])

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "days": self.days,
            "history": [e.to_dict() for e in self.entries],
            "velocity": self.velocity,
            "velocityIndicator": VELOCITY_INDICATORS[self.velocity],
        }


class ScoreHistoryReader:
    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.clock = clock

    def trend(self, client_id: str, days: int = 90) -> ScoreTrend:
        """History entries from the last `days` days, newest first."""
        if days < 1:
            raise ValidationError(f"days must be at least 1, got {days}")
        since = self.clock() - timedelta(days=days)
        stmt = (
            select(ScoreHistory)
            .where(ScoreHistory.client_id == client_id, ScoreHistory.recorded_at > since)
            .order_by(ScoreHistory.recorded_at.desc(), ScoreHistory.id.desc())
        )
        with self.session_factory() as session:
            entries = list(session.scalars(stmt))
        return ScoreTrend(client_id=client_id, days=days, entries=entries)


def score_changes_since(session: Session, since: datetime) -> pd.DataFrame:
    """
    Clients whose score moved after `since`.

    Returns a DataFrame with client_id, score_then, score_now, change.
    The first history entry after `since` holds the score the client had
    at `since`; clients first scored after `since` have no earlier score
    and are left out.
    """
    columns = ["client_id", "score_then", "score_now", "change"]
    stmt = (
        select(
            ScoreHistory.client_id,
            ScoreHistory.score_before,
            ClientRiskState.current_score,
        )
        .join(ClientRiskState, ClientRiskState.client_id == ScoreHistory.client_id)
        .where(ScoreHistory.recorded_at > since)
        .order_by(ScoreHistory.client_id, ScoreHistory.recorded_at, ScoreHistory.id)
    )
    rows = session.execute(stmt).all()
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows, columns=["client_id", "score_then", "score_now"])
    df = df.drop_duplicates(subset="client_id", keep="first")
    df = df.dropna(subset=["score_then"]).copy()
    df["score_then"] = df["score_then"].astype(int)
    df["score_now"] = df["score_now"].astype(int)
    df["change"] = df["score_now"] - df["score_then"]
    return df[columns].reset_index(drop=True)
