"""
HTTP surface for the agent-facing UI.

Usage:
    from retention.api import create_app
    app = create_app(RetentionEngine.from_url("sqlite:///retention.db"))
    # uvicorn module:app

The acting agent comes from the X-Agent-Id header; authentication happens
in front of this service.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .categories import Category
from .collaborators import AttributeSource
from .engine import RetentionEngine
from .errors import AttributeSourceError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_AGENT = "unknown"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CallOutcomeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId", min_length=1)
    outcome_id: str = Field(alias="outcomeId", min_length=1)
    notes: Optional[str] = None
    follow_up_date: Optional[date] = Field(default=None, alias="followUpDate")


class ActedOnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_type: str = Field(alias="actionType")
    outcome: Optional[str] = None


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(engine: RetentionEngine, attribute_source: Optional[AttributeSource] = None) -> FastAPI:
    """
    Build the app around one engine.

    `attribute_source` backs single-client recalculation; without one
    that route answers 503.
    """
    app = FastAPI(
        title="Retention Risk Engine",
        description="Churn-risk scores, priority queue, alerts and daily briefing.",
        version=__version__,
    )
    app.state.engine = engine

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"ok": False, "error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"ok": False, "error": str(exc)})

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        logger.warning("Returning 409 for %s", exc.client_id)
        return JSONResponse(
            status_code=409,
            content={"ok": False, "error": str(exc), "retryable": True},
        )

    @app.exception_handler(AttributeSourceError)
    async def _source_unavailable(request: Request, exc: AttributeSourceError):
        logger.warning("Attribute source unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"ok": False, "error": str(exc), "retryable": True},
        )

    # --- reads -------------------------------------------------------------

    @app.get("/health")
    def health():
        return {"ok": True, "version": __version__}

    @app.get("/priority-queue")
    def priority_queue(
        min_category: Optional[str] = Query(default=None, alias="minCategory"),
        limit: Optional[int] = Query(default=None),
    ):
        entries = engine.priority_queue(min_category, limit)
        return {
            "ok": True,
            "count": len(entries),
            "clients": [e.to_dict() for e in entries],
        }

    @app.get("/priority-queue/next")
    def next_in_queue(
        after: Optional[str] = Query(default=None),
        min_category: Optional[str] = Query(default=None, alias="minCategory"),
    ):
        entry = engine.next_in_queue(after, min_category)
        return {"ok": True, "client": entry.to_dict() if entry else None}

    @app.get("/risk-distribution")
    def distribution():
        return {"ok": True, **engine.risk_distribution().to_dict()}

    @app.get("/briefing")
    def briefing():
        return {"ok": True, "briefing": engine.briefing().to_dict()}

    @app.get("/call-outcome-options")
    def call_outcome_options():
        grouped = engine.outcome_options()
        return {
            "ok": True,
            "options": {
                category: [o.to_dict() for o in outcomes]
                for category, outcomes in grouped.items()
            },
        }

    @app.get("/alerts")
    def alerts(
        status: str = Query(default="open"),
        limit: int = Query(default=50),
    ):
        items = engine.list_alerts(status, limit)
        return {
            "ok": True,
            "alerts": [a.to_dict() for a in items],
            "openCounts": engine.alert_counts(),
        }

    @app.get("/clients/{client_id}/score")
    def client_score(client_id: str):
        return {"ok": True, **engine.client_state(client_id).to_dict()}

    @app.get("/clients/{client_id}/history")
    def client_history(client_id: str, days: int = Query(default=90)):
        return {"ok": True, **engine.client_trend(client_id, days).to_dict()}

    @app.get("/categories")
    def categories():
        return {"ok": True, "categories": [c.to_dict() for c in Category]}

    # --- writes ------------------------------------------------------------

    @app.post("/call-outcome")
    def call_outcome(
        body: CallOutcomeRequest,
        x_agent_id: Optional[str] = Header(default=None),
    ):
        applied = engine.apply_outcome(
            body.client_id,
            body.outcome_id,
            logged_by=x_agent_id or UNKNOWN_AGENT,
            notes=body.notes,
            follow_up_date=body.follow_up_date,
        )
        return {"ok": True, **applied.to_dict()}

    @app.post("/clients/{client_id}/recalculate")
    def recalculate(client_id: str):
        if attribute_source is None:
            raise AttributeSourceError("No attribute source configured")
        return {"ok": True, **engine.recalculate_client(client_id, attribute_source).to_dict()}

    @app.post("/alert/{alert_id}/viewed")
    def alert_viewed(alert_id: int):
        return {"ok": True, "alert": engine.mark_viewed(alert_id).to_dict()}

    @app.post("/alert/{alert_id}/acted-on")
    def alert_acted_on(alert_id: int, body: ActedOnRequest):
        alert = engine.mark_acted_on(alert_id, body.action_type, body.outcome)
        return {"ok": True, "alert": alert.to_dict()}

    return app
