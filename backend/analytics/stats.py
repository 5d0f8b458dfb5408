"""Period statistics for the dashboard overview.

Pageview and visitor totals, top pages and the daily chart come from the
``daily_stats`` aggregate and are bucketed by calendar date. Event totals and
the browser/device/country breakdowns are counted live from raw events by
timestamp.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import schemas
from .aggregation import day_bucket
from .models import DailyStat, Event, utcnow

PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_PERIOD = "7d"
TOP_PAGES_LIMIT = 10
BROWSER_LIMIT = 5
DEVICE_LIMIT = 5
COUNTRY_LIMIT = 10
UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    @property
    def start_date(self) -> str:
        return day_bucket(self.start)

    @property
    def end_date(self) -> str:
        return day_bucket(self.end)


def normalize_period(period: Optional[str]) -> str:
    return period if period in PERIODS else DEFAULT_PERIOD


def period_windows(period: str, now: datetime) -> Tuple[Window, Window]:
    """Current window ``[now - period, now]`` and the equal-length window before it."""
    length = PERIODS[normalize_period(period)]
    current = Window(start=now - length, end=now)
    previous = Window(start=current.start - length, end=current.start)
    return current, previous


def growth_percent(current: int, previous: int) -> int:
    """Percentage change rounded half away from zero; 100 or 0 when ``previous`` is 0."""
    if previous == 0:
        return 100 if current > 0 else 0
    change = Decimal(current - previous) * 100 / Decimal(previous)
    return int(change.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _aggregate_totals(db: Session, project_id: str, *date_range) -> Tuple[int, int]:
    stmt = select(
        func.coalesce(func.sum(DailyStat.pageviews), 0),
        func.coalesce(func.sum(DailyStat.unique_visitors), 0),
    ).where(DailyStat.project_id == project_id, *date_range)
    pageviews, visitors = db.execute(stmt).one()
    return int(pageviews), int(visitors)


def _event_count(db: Session, project_id: str, *time_range) -> int:
    stmt = select(func.count(Event.id)).where(Event.project_id == project_id, *time_range)
    return int(db.execute(stmt).scalar_one())


def _breakdown(
    db: Session, project_id: str, column, window: Window, limit: int
) -> List[Tuple[str, int]]:
    count = func.count(Event.id)
    stmt = (
        select(column, count)
        .where(
            Event.project_id == project_id,
            Event.created_at >= window.start,
            Event.created_at <= window.end,
        )
        .group_by(column)
        .order_by(count.desc(), column.is_(None), column.asc())
        .limit(limit)
    )
    return [(value or UNKNOWN_LABEL, int(total)) for value, total in db.execute(stmt)]


def compute_stats(
    db: Session, project_id: str, period: Optional[str] = None, now: Optional[datetime] = None
) -> schemas.StatsOut:
    period = normalize_period(period)
    current, previous = period_windows(period, now or utcnow())

    # Calendar-date predicates: the boundary day belongs to the current window.
    current_dates = (DailyStat.date >= current.start_date, DailyStat.date <= current.end_date)
    previous_dates = (DailyStat.date >= previous.start_date, DailyStat.date < current.start_date)

    pageviews, visitors = _aggregate_totals(db, project_id, *current_dates)
    prev_pageviews, prev_visitors = _aggregate_totals(db, project_id, *previous_dates)

    events = _event_count(
        db, project_id, Event.created_at >= current.start, Event.created_at <= current.end
    )
    prev_events = _event_count(
        db, project_id, Event.created_at >= previous.start, Event.created_at < previous.end
    )

    views = func.sum(DailyStat.pageviews)
    top_pages = db.execute(
        select(DailyStat.page, views)
        .where(DailyStat.project_id == project_id, *current_dates)
        .group_by(DailyStat.page)
        .order_by(views.desc(), DailyStat.page.asc())
        .limit(TOP_PAGES_LIMIT)
    ).all()

    daily = db.execute(
        select(DailyStat.date, views, func.sum(DailyStat.unique_visitors))
        .where(DailyStat.project_id == project_id, *current_dates)
        .group_by(DailyStat.date)
        .order_by(DailyStat.date.asc())
    ).all()

    return schemas.StatsOut(
        total_pageviews=pageviews,
        total_visitors=visitors,
        total_events=events,
        growth=schemas.Growth(
            pageviews=growth_percent(pageviews, prev_pageviews),
            visitors=growth_percent(visitors, prev_visitors),
            events=growth_percent(events, prev_events),
        ),
        top_pages=[schemas.TopPage(page=page, views=int(total)) for page, total in top_pages],
        daily_breakdown=[
            schemas.DailyPoint(date=date, pageviews=int(pv), visitors=int(uv))
            for date, pv, uv in daily
        ],
        browsers=[
            schemas.BrowserCount(browser=name, count=count)
            for name, count in _breakdown(db, project_id, Event.browser, current, BROWSER_LIMIT)
        ],
        devices=[
            schemas.DeviceCount(device=name, count=count)
            for name, count in _breakdown(db, project_id, Event.device, current, DEVICE_LIMIT)
        ],
        countries=[
            schemas.CountryCount(country=name, count=count)
            for name, count in _breakdown(db, project_id, Event.country, current, COUNTRY_LIMIT)
        ],
        period=period,
    )
