"""Daily pageview aggregation.

``daily_stats`` holds one row per (project, UTC date, page). Rows are only ever
touched by :func:`bump_daily_stat`, which relies on the database's
insert-or-update primitive so that concurrent pageviews never lose an
increment, even across processes sharing the same store.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session

from .models import PAGEVIEW, DailyStat, Event, utcnow

logger = logging.getLogger(__name__)

_table = DailyStat.__table__


def day_bucket(moment: datetime) -> str:
    """Calendar date of a naive UTC timestamp as ``YYYY-MM-DD``."""
    return moment.strftime("%Y-%m-%d")


def _upsert_statement(dialect_name: str, values: Dict[str, object]):
    # On conflict only pageviews moves; unique_visitors keeps its creation value.
    if dialect_name == "sqlite":
        stmt = sqlite.insert(_table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[_table.c.project_id, _table.c.date, _table.c.page],
            set_={"pageviews": _table.c.pageviews + 1},
        )
    if dialect_name == "postgresql":
        stmt = postgresql.insert(_table).values(**values)
        return stmt.on_conflict_do_update(
            constraint="uq_daily_stats_project_date_page",
            set_={"pageviews": _table.c.pageviews + 1},
        )
    if dialect_name in ("mysql", "mariadb"):
        stmt = mysql.insert(_table).values(**values)
        return stmt.on_duplicate_key_update(pageviews=_table.c.pageviews + 1)
    raise RuntimeError(f"Atomic daily stat upsert is not supported for dialect {dialect_name!r}")


def bump_daily_stat(
    db: Session, project_id: str, page: str, when: Optional[datetime] = None
) -> None:
    """Count one pageview of ``page`` on the UTC day of ``when`` (default: now).

    Creates the row with ``pageviews=1, unique_visitors=1`` or adds one to
    ``pageviews`` of the existing row, in a single statement. The caller owns
    the transaction.
    """
    values = {
        "project_id": project_id,
        "date": day_bucket(when or utcnow()),
        "page": page,
        "pageviews": 1,
        "unique_visitors": 1,
    }
    db.execute(_upsert_statement(db.get_bind().dialect.name, values))


def rebuild_daily_stats(db: Session, project_id: str) -> int:
    """Recompute a project's daily stats from its raw pageview events.

    Used to recover from aggregate drift. Applies the same counting rule as
    live ingestion: one visitor per (date, page) row. Returns the number of
    rows written. The caller owns the transaction.
    """
    counts: Counter[Tuple[str, str]] = Counter()
    rows = db.execute(
        select(Event.created_at, Event.page).where(
            Event.project_id == project_id, Event.type == PAGEVIEW
        )
    )
    for created_at, page in rows:
        counts[(day_bucket(created_at), page)] += 1

    db.execute(delete(DailyStat).where(DailyStat.project_id == project_id))
    db.add_all(
        DailyStat(
            project_id=project_id,
            date=date,
            page=page,
            pageviews=pageviews,
            unique_visitors=1,
        )
        for (date, page), pageviews in counts.items()
    )
    db.flush()
    logger.info("Rebuilt %d daily stat rows for project %s", len(counts), project_id)
    return len(counts)
