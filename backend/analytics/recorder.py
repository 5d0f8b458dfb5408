"""Validation and persistence of incoming tracking events."""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from typing import Any, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .aggregation import bump_daily_stat
from .errors import AuthError, StorageError, ValidationError
from .models import PAGEVIEW, Event, utcnow
from .projects import resolve_api_key
from .useragent import classify

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "Unknown"
DEFAULT_PAGE = "/"
_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")


def _get_geo_headers() -> List[str]:
    raw = os.environ.get("ANALYTICS_GEO_HEADERS", "x-vercel-ip-country,cf-ipcountry")
    return [name.strip().lower() for name in raw.split(",") if name.strip()]


def country_from_headers(headers: Mapping[str, str]) -> str:
    """Two-letter country code set by the fronting proxy, or ``"Unknown"``."""
    for name in _get_geo_headers():
        value = (headers.get(name) or "").strip().upper()
        if _COUNTRY_RE.match(value) and value != "XX":
            return value
    return UNKNOWN_COUNTRY


def parse_track_payload(body: Any) -> schemas.TrackIn:
    """Turn an untrusted JSON body into a :class:`TrackIn`, or raise a client error."""
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")
    if not str(body.get("apiKey") or "").strip():
        raise ValidationError("API key is required", field="apiKey")
    try:
        return schemas.TrackIn.model_validate(body)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or None
        raise ValidationError(f"Invalid field {field}: {error['msg']}", field=field) from exc


def record_event(
    db: Session,
    payload: schemas.TrackIn,
    user_agent: Optional[str],
    country: str = UNKNOWN_COUNTRY,
    now: Optional[datetime] = None,
) -> Event:
    """Store one event and, for pageviews, count it in the daily stats.

    The event row and the aggregate bump are committed in one transaction.
    Raises :class:`AuthError` for unknown or inactive keys before anything is
    written, and :class:`StorageError` if the write fails.
    """
    project = resolve_api_key(db, payload.api_key)
    if project is None:
        logger.info("Rejected event with unknown or inactive API key")
        raise AuthError("Invalid API key")

    project_id = project.id
    ua = classify(user_agent)
    created_at = now or utcnow()
    event_type = payload.type or PAGEVIEW
    page = payload.page or DEFAULT_PAGE

    event = Event(
        project_id=project_id,
        type=event_type,
        name=payload.name,
        page=page,
        referrer=payload.referrer,
        country=country,
        device=ua.device,
        browser=ua.browser,
        session_id=payload.session_id,
        created_at=created_at,
    )
    try:
        db.add(event)
        db.flush()
        if event_type == PAGEVIEW:
            bump_daily_stat(db, project_id, page, created_at)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to persist event for project %s", project_id)
        raise StorageError("Tracking failed") from exc
    return event
