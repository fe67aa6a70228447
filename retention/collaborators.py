"""
Interfaces to the systems around the engine, with simple implementations.

- AttributeSource: where client attribute snapshots come from
- EventSink: where the engine reports what it did (notifications,
  task creation and audit feeds subscribe here)
- TaskSource: the day's task totals shown in the briefing
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .errors import AttributeSourceError, TaskSourceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Attribute sources
# ---------------------------------------------------------------------------

class AttributeSource(ABC):
    """Read-only view of client attributes used for scoring."""

    @abstractmethod
    def client_ids(self) -> List[str]:
        """All client ids to score. Raises AttributeSourceError if unavailable."""

    @abstractmethod
    def fetch(self, client_id: str) -> Dict[str, Any]:
        """Attribute snapshot for one client. Raises AttributeSourceError."""


class InMemoryAttributeSource(AttributeSource):
    """Attribute snapshots held in a dict keyed by client id."""

    def __init__(self, snapshots: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.snapshots: Dict[str, Dict[str, Any]] = {
            client_id: dict(attrs) for client_id, attrs in (snapshots or {}).items()
        }

    def client_ids(self) -> List[str]:
        return sorted(self.snapshots)

    def fetch(self, client_id: str) -> Dict[str, Any]:
        try:
            return dict(self.snapshots[client_id])
        except KeyError:
            raise AttributeSourceError(f"No attributes for client {client_id!r}") from None


class DataFrameAttributeSource(AttributeSource):
    """
    Attribute snapshots backed by a pandas DataFrame, one row per client.

    Usage:
        source = DataFrameAttributeSource.from_csv("data/attributes.csv")
    """

    def __init__(self, df: pd.DataFrame, id_column: str = "CLIENT_ID"):
        if id_column not in df.columns:
            raise ValueError(f"Missing id column: {id_column}")
        duplicated = df[id_column][df[id_column].duplicated()].unique().tolist()
        if duplicated:
            raise ValueError(f"Duplicate client ids: {duplicated[:5]}")
        self.id_column = id_column
        self._df = df.astype({id_column: str}).set_index(id_column)

    @classmethod
    def from_csv(cls, path: Path | str, id_column: str = "CLIENT_ID") -> "DataFrameAttributeSource":
        path = Path(path)
        if not path.exists():
            raise AttributeSourceError(f"Attribute file not found: {path}")
        df = pd.read_csv(path, dtype={id_column: str})
        logger.info("Loaded %d attribute rows from %s", len(df), path)
        return cls(df, id_column=id_column)

    def __len__(self) -> int:
        return len(self._df)

    def client_ids(self) -> List[str]:
        return sorted(self._df.index.tolist())

    def fetch(self, client_id: str) -> Dict[str, Any]:
        if client_id not in self._df.index:
            raise AttributeSourceError(f"No attributes for client {client_id!r}")
        row = self._df.loc[client_id]
        # NaN -> None so snapshots look the same as the in-memory ones
        return {k: (None if pd.isna(v) else v) for k, v in row.items()}

    @property
    def frame(self) -> pd.DataFrame:
        """The backing data with the id column restored."""
        return self._df.reset_index()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass
class Event:
    name = "event"

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, (datetime, date)):
                data[key] = value.isoformat()
        return {"event": self.name, **data}


@dataclass
class OutcomeLogged(Event):
    name = "outcome_logged"

    client_id: str
    outcome_id: str
    outcome_category: str
    score_before: int
    score_after: int
    category: str
    logged_by: str
    logged_at: datetime


@dataclass
class FollowUpRequested(Event):
    name = "follow_up_requested"

    client_id: str
    outcome_id: str
    follow_up_date: date
    requested_by: str
    notes: Optional[str] = None


@dataclass
class AlertOpened(Event):
    name = "alert_opened"

    alert_id: int
    client_id: str
    level: str
    category: str
    previous_category: Optional[str]
    score: int
    generated_at: datetime
    response_due_at: datetime


class EventSink(ABC):
    """Receives engine events after the write they describe has committed."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        ...


class LoggingEventSink(EventSink):
    """Writes each event as one JSON log line."""

    def __init__(self, logger_name: str = "retention.events"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: Event) -> None:
        self._logger.info(json.dumps(event.to_dict(), default=str))


class InMemoryEventSink(EventSink):
    """Collects events in a list."""

    def __init__(self):
        self.events: List[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[Event]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


def emit_all(sink: Optional[EventSink], events: Iterable[Event]) -> None:
    """Deliver events, logging and dropping any sink failure."""
    if sink is None:
        return
    for event in events:
        try:
            sink.emit(event)
        except Exception:
            logger.exception("Event sink failed for %s", event.name)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@dataclass
class TaskSummary:
    total: int = 0
    completed: int = 0

    @property
    def pending(self) -> int:
        return max(self.total - self.completed, 0)

    def to_dict(self) -> dict:
        return {"total": self.total, "completed": self.completed, "pending": self.pending}


class TaskSource(ABC):
    """Daily task totals from the external task system."""

    @abstractmethod
    def summary(self, day: date) -> TaskSummary:
        """Task totals for `day`. Raises TaskSourceError if unavailable."""


@dataclass
class StaticTaskSource(TaskSource):
    """Fixed task totals, per day or one default for every day."""

    by_day: Dict[date, TaskSummary] = field(default_factory=dict)
    default: Optional[TaskSummary] = None

    def summary(self, day: date) -> TaskSummary:
        if day in self.by_day:
            return self.by_day[day]
        if self.default is not None:
            return self.default
        raise TaskSourceError(f"No task summary for {day.isoformat()}")
