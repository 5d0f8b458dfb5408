"""SQLAlchemy models for projects, raw events and daily page statistics."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

PAGEVIEW = "pageview"
# Keeps the (project_id, date, page) unique index under InnoDB's 3072-byte utf8mb4 limit.
MAX_PAGE_LENGTH = 700


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=True)
    api_key = Column(String(64), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    events = relationship(
        "Event", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    daily_stats = relationship(
        "DailyStat", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class Event(Base):
    """Append-only tracking fact. Never updated once written."""

    __tablename__ = "events"
    __table_args__ = (Index("ix_events_project_created", "project_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    type = Column(String(64), index=True, nullable=False)
    name = Column(String(255), nullable=True)
    page = Column(Text, nullable=False)
    referrer = Column(Text, nullable=True)
    country = Column(String(16), nullable=True)
    device = Column(String(16), nullable=True)
    browser = Column(String(32), nullable=True)
    session_id = Column(String(128), index=True, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    project = relationship("Project", back_populates="events")


class DailyStat(Base):
    """Per project, UTC day and page counters maintained at write time."""

    __tablename__ = "daily_stats"
    __table_args__ = (
        UniqueConstraint("project_id", "date", "page", name="uq_daily_stats_project_date_page"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    date = Column(String(10), index=True, nullable=False)  # YYYY-MM-DD
    page = Column(String(MAX_PAGE_LENGTH), nullable=False)
    pageviews = Column(Integer, default=0, nullable=False)
    unique_visitors = Column(Integer, default=0, nullable=False)

    project = relationship("Project", back_populates="daily_stats")
