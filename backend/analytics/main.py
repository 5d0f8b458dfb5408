"""FastAPI application entrypoint for the analytics ingestion and query API."""
from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .auth import get_current_user_id
from .database import SessionLocal, engine
from .errors import AnalyticsError, RateLimitError, ValidationError
from .filters import DEFAULT_LIMIT, EventFilter, delete_all_events, query_events
from .logging_config import setup_logging
from .models import Base
from .projects import get_owned_project
from .recorder import country_from_headers, parse_track_payload, record_event
from .stats import DEFAULT_PERIOD, compute_stats

logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

DELETE_CONFIRMATION = "delete the logs"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

app = FastAPI(
    title="Analytics Ingestion API",
    description="Collects pageview, click and custom events and serves dashboard statistics.",
    version="0.1.0",
)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _error_response(exc: AnalyticsError, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


@app.exception_handler(AnalyticsError)
async def handle_analytics_error(_: Request, exc: AnalyticsError) -> JSONResponse:
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()))
        message = f"Invalid {location}: {errors[0].get('msg', 'invalid value')}"
    return JSONResponse({"error": message}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(SQLAlchemyError)
async def handle_storage_error(_: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error while serving dashboard request", exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


class FixedWindowRateLimiter:
    """Simple in-memory fixed window rate limiter keyed by identifier."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._counters: dict[str, tuple[int, float]] = {}
        self._last_sweep = time.monotonic()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._counters)

    def _sweep(self, now: float) -> None:
        # At most once per window; drops clients whose window has run out.
        if now - self._last_sweep < self._window_seconds:
            return
        self._last_sweep = now
        expired = [
            key
            for key, (_, window_start) in self._counters.items()
            if now - window_start >= self._window_seconds
        ]
        for key in expired:
            del self._counters[key]

    def check(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            count, window_start = self._counters.get(key, (0, now))
            if now - window_start >= self._window_seconds:
                count = 0
                window_start = now
            if count >= self._max_requests:
                raise RateLimitError("Rate limit exceeded")
            self._counters[key] = (count + 1, window_start)


def _get_rate_limiter() -> FixedWindowRateLimiter:
    requests_per_window = int(os.environ.get("ANALYTICS_DASHBOARD_RATE_LIMIT", "120"))
    window_seconds = int(os.environ.get("ANALYTICS_DASHBOARD_RATE_WINDOW", "60"))
    return FixedWindowRateLimiter(requests_per_window, window_seconds)


_dashboard_rate_limiter = _get_rate_limiter()


def _check_dashboard_rate_limit(request: Request) -> None:
    client_identifier = "anonymous"
    if request.client:
        client_identifier = request.client.host or client_identifier
    _dashboard_rate_limiter.check(client_identifier)


async def read_json_body(request: Request) -> Any:
    """Parsed JSON body, or ``None`` when the body is not valid JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


@app.options("/track", status_code=status.HTTP_204_NO_CONTENT)
def track_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@app.post("/track", response_model=schemas.TrackOut)
def track(
    request: Request,
    body: Any = Depends(read_json_body),
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        payload = parse_track_payload(body)
        record_event(
            db,
            payload,
            user_agent=request.headers.get("user-agent"),
            country=country_from_headers(request.headers),
        )
    except AnalyticsError as exc:
        return _error_response(exc, headers=CORS_HEADERS)
    except Exception:
        db.rollback()
        logger.exception("Unexpected failure while tracking event")
        return JSONResponse({"error": "Tracking failed"}, status_code=500, headers=CORS_HEADERS)

    return JSONResponse(schemas.TrackOut().model_dump(), headers=CORS_HEADERS)


@app.get("/projects/{project_id}/events", response_model=schemas.EventsPage)
def list_events(
    project_id: str,
    request: Request,
    limit: int = Query(DEFAULT_LIMIT),
    offset: int = Query(0),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    event_type: Optional[str] = Query(None, alias="type"),
    name: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    page_contains: Optional[str] = Query(None, alias="pageContains"),
    device: Optional[str] = Query(None),
    browser: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    referrer: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> schemas.EventsPage:
    _check_dashboard_rate_limit(request)
    project = get_owned_project(db, project_id, user_id)
    event_filter = EventFilter.from_query(
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
        start_date=start_date,
        end_date=end_date,
        type=event_type,
        name=name,
        page=page,
        page_contains=page_contains,
        device=device,
        browser=browser,
        country=country,
        session_id=session_id,
        referrer=referrer,
    )
    return query_events(db, project.id, event_filter)


@app.delete("/projects/{project_id}/events")
def delete_events(
    project_id: str,
    body: Optional[schemas.DeleteEventsIn] = Body(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    project = get_owned_project(db, project_id, user_id)
    if body is None or body.confirmation != DELETE_CONFIRMATION:
        raise ValidationError(
            f'Confirmation text must be "{DELETE_CONFIRMATION}"', field="confirmation"
        )
    deleted = delete_all_events(db, project.id)
    db.commit()
    logger.warning("Deleted %d events for project %s at user request", deleted, project.id)
    return {"success": True, "deleted": deleted}


@app.get("/projects/{project_id}/stats", response_model=schemas.StatsOut)
def get_stats(
    project_id: str,
    request: Request,
    period: str = Query(DEFAULT_PERIOD),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> schemas.StatsOut:
    _check_dashboard_rate_limit(request)
    project = get_owned_project(db, project_id, user_id)
    return compute_stats(db, project.id, period)


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}


@app.on_event("startup")
async def configure_logging() -> None:
    setup_logging()


def reset_application_state() -> None:
    """Reset mutable globals for test isolation."""

    global _dashboard_rate_limiter
    _dashboard_rate_limiter = _get_rate_limiter()
