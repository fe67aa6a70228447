"""
Daily briefing: a time-of-day aware summary of the book.

Everything is aggregated at read time from persisted state; nothing about
the briefing is stored. Sparse data (a new book, a quiet day) yields zero
counts and empty lists, never an error.

Usage:
    briefing = BriefingGenerator(session_factory).generate()
    print(briefing.greeting)
    print(briefing.narrative)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from .alerts import AlertTracker
from .categories import Category, categories_at_or_above, categorize
from .collaborators import TaskSource, TaskSummary
from .config import EngineConfig, DEFAULT_ENGINE_CONFIG
from .db import ClientRiskState, ScoreAdjustment
from .distribution import category_counts
from .errors import TaskSourceError
from .history import score_changes_since
from .queue import PriorityQueueBuilder, QueueEntry, QueueFilter

logger = logging.getLogger(__name__)

GREETINGS = {
    "morning": "Good Morning",
    "afternoon": "Good Afternoon",
    "evening": "Good Evening",
}

URGENT = Category.HIGH
CRITICAL = Category.CRITICAL


def time_of_day(now: datetime) -> str:
    """morning before 12:00, afternoon before 17:00, evening after."""
    if now.hour < 12:
        return "morning"
    if now.hour < 17:
        return "afternoon"
    return "evening"


def _plural(count: int, word: str, suffix: str = "s") -> str:
    return f"{count} {word}{'' if count == 1 else suffix}"


@dataclass
class ScoreRise:
    client_id: str
    score_before: int
    score_after: int
    category: Category

    @property
    def change(self) -> int:
        return self.score_after - self.score_before

    def to_dict(self) -> dict:
        return {
            "clientId": self.client_id,
            "scoreBefore": self.score_before,
            "scoreAfter": self.score_after,
            "change": self.change,
            "category": self.category.key,
        }


@dataclass
class Briefing:
    greeting: str
    time_of_day: str
    generated_at: datetime
    counts: Dict[str, int]
    total_clients: int
    priority_clients: List[QueueEntry] = field(default_factory=list)
    risers: List[ScoreRise] = field(default_factory=list)
    actions_today: int = 0
    actions_by_category: Dict[str, int] = field(default_factory=dict)
    alerts_today: int = 0
    open_alerts: Dict[str, int] = field(default_factory=dict)
    tasks: TaskSummary = field(default_factory=TaskSummary)
    insights: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    narrative: str = ""

    def to_dict(self) -> dict:
        return {
            "greeting": self.greeting,
            "timeOfDay": self.time_of_day,
            "generatedAt": self.generated_at.isoformat(),
            "narrative": self.narrative,
            "insights": list(self.insights),
            "actionItems": list(self.action_items),
            "stats": {
                "totalClients": self.total_clients,
                "byCategory": dict(self.counts),
            },
            "priorityClients": [e.to_dict() for e in self.priority_clients],
            "increasedToday": [r.to_dict() for r in self.risers],
            "todayProgress": {
                "actionsCompleted": self.actions_today,
                "byOutcomeCategory": dict(self.actions_by_category),
                "alertsGenerated": self.alerts_today,
            },
            "openAlerts": dict(self.open_alerts),
            "tasks": self.tasks.to_dict(),
        }


class BriefingGenerator:
    """
    Builds the briefing from client states, today's ledger entries and
    alerts, and the external task signal.

    Args:
        session_factory: SQLAlchemy sessionmaker
        config: Engine configuration (briefing thresholds)
        task_source: External task totals; None means no task data
        clock: Callable returning the current naive datetime
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[EngineConfig] = None,
        task_source: Optional[TaskSource] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.task_source = task_source
        self.clock = clock
        self.queue = PriorityQueueBuilder(session_factory, self.config, clock)
        self.alerts = AlertTracker(session_factory, self.config, clock)

    def generate(self, now: Optional[datetime] = None) -> Briefing:
        now = now or self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1)
        bucket = time_of_day(now)

        with self.session_factory() as session:
            counts = category_counts(session)
            changes = score_changes_since(session, start_of_day)
            states = pd.DataFrame(
                session.execute(
                    select(ClientRiskState.client_id, ClientRiskState.category,
                           ClientRiskState.last_contact_at)
                ).all(),
                columns=["client_id", "category", "last_contact_at"],
            )
            states["last_contact_at"] = pd.to_datetime(states["last_contact_at"])
            actions = dict(session.execute(
                select(ScoreAdjustment.outcome_category, func.count())
                .where(ScoreAdjustment.logged_at >= start_of_day,
                       ScoreAdjustment.logged_at < end_of_day)
                .group_by(ScoreAdjustment.outcome_category)
            ).all())

        priority = self.queue.build(QueueFilter(
            min_category=Category.parse(self.config.briefing_priority_min_category),
            limit=self.config.briefing_priority_limit,
        ))
        briefing = Briefing(
            greeting=GREETINGS[bucket],
            time_of_day=bucket,
            generated_at=now,
            counts=counts,
            total_clients=sum(counts.values()),
            priority_clients=priority,
            risers=self._risers(changes),
            actions_today=sum(actions.values()),
            actions_by_category=actions,
            alerts_today=self.alerts.count_generated_between(start_of_day, end_of_day),
            open_alerts=self.alerts.counts_by_level(),
            tasks=self._tasks(now),
        )

        unviewed = self.alerts.count_unviewed()
        briefing.insights = self._insights(briefing, states, now, unviewed)
        urgent_uncontacted = self._urgent_uncontacted(states, start_of_day)
        briefing.narrative, briefing.action_items = self._narrative(briefing, urgent_uncontacted)
        return briefing

    # ------------------------------------------------------------------
    # Pieces
    # ------------------------------------------------------------------

    def _risers(self, changes: pd.DataFrame) -> List[ScoreRise]:
        if changes.empty:
            return []
        rising = changes[changes["change"] >= self.config.briefing_increase_threshold]
        rising = rising.sort_values(["change", "client_id"], ascending=[False, True])
        return [
            ScoreRise(
                client_id=row.client_id,
                score_before=int(row.score_then),
                score_after=int(row.score_now),
                category=categorize(int(row.score_now)),
            )
            for row in rising.itertuples(index=False)
        ]

    def _tasks(self, now: datetime) -> TaskSummary:
        if self.task_source is None:
            return TaskSummary()
        try:
            return self.task_source.summary(now.date())
        except TaskSourceError as exc:
            logger.warning("Task summary unavailable (%s); reporting zero tasks", exc)
            return TaskSummary()

    def _insights(self, briefing: Briefing, states: pd.DataFrame, now: datetime, unviewed: int) -> List[str]:
        insights = []
        counts = briefing.counts
        total = briefing.total_clients

        critical = sum(counts[c.key] for c in categories_at_or_above(CRITICAL))
        if critical:
            insights.append(f"{_plural(critical, 'client')} in critical risk or worse")

        if briefing.risers:
            insights.append(f"{_plural(len(briefing.risers), 'client')} had risk score increases today")

        days = self.config.stale_contact_days
        if total:
            cutoff = now - timedelta(days=days)
            contacted = states["last_contact_at"].notna() & (states["last_contact_at"] >= cutoff)
            if not contacted.any():
                insights.append(f"No clients contacted in the last {days} days")
            else:
                stale = int((~contacted).sum())
                if stale:
                    insights.append(f"{_plural(stale, 'client')} not contacted in {days} days")

        if unviewed:
            insights.append(f"{_plural(unviewed, 'unviewed alert')} waiting for review")

        healthy = counts[Category.STABLE.key] + counts[Category.LOW.key]
        if total and healthy > total * 0.8:
            insights.append("Your book is in excellent health - over 80% of clients have low risk scores")
        return insights

    @staticmethod
    def _urgent_uncontacted(states: pd.DataFrame, start_of_day: datetime) -> int:
        if states.empty:
            return 0
        urgent_keys = [c.key for c in categories_at_or_above(URGENT)]
        urgent = states["category"].isin(urgent_keys)
        contacted_today = states["last_contact_at"].notna() & (states["last_contact_at"] >= start_of_day)
        return int((urgent & ~contacted_today).sum())

    def _narrative(self, briefing: Briefing, urgent_uncontacted: int):
        counts = briefing.counts
        urgent = sum(counts[c.key] for c in categories_at_or_above(URGENT))
        elevated = counts[Category.ELEVATED.key]
        tasks = briefing.tasks
        first = briefing.priority_clients[0] if briefing.priority_clients else None
        items: List[str] = []

        if briefing.time_of_day == "morning":
            text = "Here's your morning brief. "
            if urgent:
                text += f"The risk scoring system identified {_plural(urgent, 'client')} requiring urgent attention. "
                if briefing.risers:
                    top = briefing.risers[0]
                    text += (
                        f"{top.client_id}'s risk score increased by {top.change} points overnight"
                        f" - this should be your first call. "
                    )
            else:
                text += "Your book looks healthy today - no critical risk clients detected overnight. "
            if tasks.pending:
                text += f"You have {_plural(tasks.pending, 'task')} scheduled for today. "

            if first is not None:
                items.append(f"Call {first.client_id} (Risk: {first.score}) - {first.category.action}")
            if tasks.pending:
                items.append(f"Complete {_plural(tasks.pending, 'scheduled task')}")
            if elevated:
                items.append(f"Review {_plural(elevated, 'elevated-risk client')} before end of day")

        elif briefing.time_of_day == "afternoon":
            text = "Here's your afternoon update. "
            if briefing.actions_today:
                text += f"Great progress so far! You've logged {_plural(briefing.actions_today, 'call outcome')} today. "
            if tasks.completed:
                text += f"You've completed {tasks.completed} of {tasks.total} tasks. "
            if urgent_uncontacted:
                verb = "needs" if urgent_uncontacted == 1 else "need"
                text += (
                    f"{_plural(urgent_uncontacted, 'high-priority client')} still {verb}"
                    f" attention before end of day. "
                )
            else:
                text += "All high-priority clients have been contacted - you're in great shape! "

            if tasks.pending:
                items.append(f"{_plural(tasks.pending, 'task')} remaining for today")
            if first is not None and not briefing.actions_today:
                items.append(f"Don't forget to call {first.client_id}")

        else:
            text = "Here's your evening wrap-up. "
            text += (
                f"Today you logged {_plural(briefing.actions_today, 'call outcome')}"
                f" and completed {_plural(tasks.completed, 'task')}. "
            )
            if tasks.pending:
                text += f"{_plural(tasks.pending, 'task')} will roll over to tomorrow. "
            else:
                text += "All tasks completed - great job! "
            text += f"Tomorrow, keep an eye on {_plural(urgent, 'high-risk client')} in your book."

            items.append("Log any final notes for today")
            if tasks.pending:
                items.append("Review tomorrow's task list")

        return text.strip(), items
