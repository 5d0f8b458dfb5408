"""Filtered, paginated access to a project's raw events.

Query parameters are parsed into an :class:`EventFilter`, a closed structure
whose fields each map to exactly one predicate. The same predicate list feeds
both the page query and the total count.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from . import schemas
from .errors import ValidationError
from .models import Event

DEFAULT_LIMIT = 50
MAX_LIMIT = 500
END_OF_DAY = time(23, 59, 59, 999000)

SORT_COLUMNS = {
    "createdAt": Event.created_at,
    "type": Event.type,
    "page": Event.page,
    "device": Event.device,
    "browser": Event.browser,
}
DEFAULT_SORT = "createdAt"
SORT_ORDERS = ("asc", "desc")
DEFAULT_SORT_ORDER = "desc"


def split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(dict.fromkeys(part.strip() for part in value.split(",") if part.strip()))


def parse_day(value: Optional[str], field_name: str) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` or an ISO timestamp (its date part is used)."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid date for {field_name}: {value!r}", field=field_name) from exc


def _contains(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass(frozen=True)
class EventFilter:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    types: Tuple[str, ...] = ()
    name: Optional[str] = None
    page: Optional[str] = None
    page_contains: Optional[str] = None
    devices: Tuple[str, ...] = ()
    browsers: Tuple[str, ...] = ()
    countries: Tuple[str, ...] = ()
    session_id: Optional[str] = None
    referrer: Optional[str] = None
    sort_by: str = DEFAULT_SORT
    sort_order: str = DEFAULT_SORT_ORDER
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_COLUMNS:
            object.__setattr__(self, "sort_by", DEFAULT_SORT)
        if self.sort_order not in SORT_ORDERS:
            object.__setattr__(self, "sort_order", DEFAULT_SORT_ORDER)
        object.__setattr__(self, "limit", max(1, min(int(self.limit), MAX_LIMIT)))
        object.__setattr__(self, "offset", max(0, int(self.offset)))

    @classmethod
    def from_query(
        cls,
        *,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        type: Optional[str] = None,
        name: Optional[str] = None,
        page: Optional[str] = None,
        page_contains: Optional[str] = None,
        device: Optional[str] = None,
        browser: Optional[str] = None,
        country: Optional[str] = None,
        session_id: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> "EventFilter":
        """Build a filter from raw query-string values; comma-separated lists are split."""
        return cls(
            start_date=parse_day(start_date, "startDate"),
            end_date=parse_day(end_date, "endDate"),
            types=split_csv(type),
            name=name or None,
            page=page or None,
            page_contains=page_contains or None,
            devices=split_csv(device),
            browsers=split_csv(browser),
            countries=split_csv(country),
            session_id=session_id or None,
            referrer=referrer or None,
            sort_by=sort_by or DEFAULT_SORT,
            sort_order=(sort_order or DEFAULT_SORT_ORDER).lower(),
            limit=limit,
            offset=offset,
        )

    def predicates(self, project_id: str) -> List:
        clauses = [Event.project_id == project_id]
        if self.start_date is not None:
            clauses.append(Event.created_at >= datetime.combine(self.start_date, time.min))
        if self.end_date is not None:
            clauses.append(Event.created_at <= datetime.combine(self.end_date, END_OF_DAY))
        if self.types:
            clauses.append(Event.type.in_(self.types))
        if self.name:
            clauses.append(Event.name.ilike(_contains(self.name), escape="\\"))
        if self.page:
            clauses.append(Event.page == self.page)
        if self.page_contains:
            clauses.append(Event.page.ilike(_contains(self.page_contains), escape="\\"))
        if self.devices:
            clauses.append(Event.device.in_(self.devices))
        if self.browsers:
            clauses.append(Event.browser.in_(self.browsers))
        if self.countries:
            clauses.append(Event.country.in_(self.countries))
        if self.session_id:
            clauses.append(Event.session_id == self.session_id)
        if self.referrer:
            clauses.append(Event.referrer.ilike(_contains(self.referrer), escape="\\"))
        return clauses

    def active(self) -> Dict[str, object]:
        """The constraints actually applied, keyed by their query parameter names."""
        applied: Dict[str, object] = {}
        if self.start_date is not None:
            applied["startDate"] = self.start_date.isoformat()
        if self.end_date is not None:
            applied["endDate"] = self.end_date.isoformat()
        for key, values in (
            ("type", self.types),
            ("device", self.devices),
            ("browser", self.browsers),
            ("country", self.countries),
        ):
            if values:
                applied[key] = list(values)
        for key, value in (
            ("name", self.name),
            ("page", self.page),
            ("pageContains", self.page_contains),
            ("sessionId", self.session_id),
            ("referrer", self.referrer),
        ):
            if value:
                applied[key] = value
        applied["sortBy"] = self.sort_by
        applied["sortOrder"] = self.sort_order
        return applied


def _distinct(db: Session, project_id: str, column) -> List[str]:
    stmt = (
        select(column)
        .where(Event.project_id == project_id, column.is_not(None))
        .distinct()
        .order_by(column.asc())
    )
    return list(db.execute(stmt).scalars())


def filter_options(db: Session, project_id: str) -> schemas.FilterOptions:
    """Distinct values seen across all of the project's events, independent of any filter."""
    return schemas.FilterOptions(
        types=_distinct(db, project_id, Event.type),
        devices=_distinct(db, project_id, Event.device),
        browsers=_distinct(db, project_id, Event.browser),
        countries=_distinct(db, project_id, Event.country),
    )


def count_events(db: Session, project_id: str, event_filter: EventFilter) -> int:
    stmt = select(func.count(Event.id)).where(*event_filter.predicates(project_id))
    return int(db.execute(stmt).scalar_one())


def find_events(db: Session, project_id: str, event_filter: EventFilter) -> Sequence[Event]:
    column = SORT_COLUMNS[event_filter.sort_by]
    if event_filter.sort_order == "asc":
        ordering = (column.asc(), Event.id.asc())
    else:
        ordering = (column.desc(), Event.id.desc())
    stmt = (
        select(Event)
        .where(*event_filter.predicates(project_id))
        .order_by(*ordering)
        .offset(event_filter.offset)
        .limit(event_filter.limit)
    )
    return db.execute(stmt).scalars().all()


def query_events(db: Session, project_id: str, event_filter: EventFilter) -> schemas.EventsPage:
    return schemas.EventsPage(
        events=[
            schemas.EventOut.model_validate(event)
            for event in find_events(db, project_id, event_filter)
        ],
        total=count_events(db, project_id, event_filter),
        limit=event_filter.limit,
        offset=event_filter.offset,
        active_filters=event_filter.active(),
        filter_options=filter_options(db, project_id),
    )


def delete_all_events(db: Session, project_id: str) -> int:
    """Remove every raw event of the project. Daily stats are left in place."""
    result = db.execute(delete(Event).where(Event.project_id == project_id))
    return int(result.rowcount or 0)
