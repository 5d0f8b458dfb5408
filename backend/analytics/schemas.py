"""Pydantic models for request and response bodies."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .models import MAX_PAGE_LENGTH

# Column sizes for browser-supplied free text. Longer values are cut, not rejected.
MAX_TYPE_LENGTH = 64
MAX_NAME_LENGTH = 255
MAX_REFERRER_LENGTH = 2048
MAX_SESSION_ID_LENGTH = 128

_TRUNCATE_AT = {
    "type": MAX_TYPE_LENGTH,
    "name": MAX_NAME_LENGTH,
    "page": MAX_PAGE_LENGTH,
    "referrer": MAX_REFERRER_LENGTH,
    "session_id": MAX_SESSION_ID_LENGTH,
}


class TrackIn(BaseModel):
    """Body posted by the browser tracking script."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    api_key: str = Field(..., alias="apiKey", min_length=1, max_length=64)
    type: Optional[str] = Field(None, description="pageview, click or a custom type")
    name: Optional[str] = Field(None, description="Label for custom events")
    page: Optional[str] = Field(None, description="URL path, defaults to /")
    referrer: Optional[str] = None
    session_id: Optional[str] = Field(None, alias="sessionId")

    @field_validator("type", "name", "page", "referrer", "session_id", mode="before")
    @classmethod
    def _truncate(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str):
            return value.strip()[: _TRUNCATE_AT[info.field_name]]
        return value

    @field_validator("type", "name", "page", "referrer", "session_id", mode="after")
    @classmethod
    def _blank_as_missing(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class TrackOut(BaseModel):
    success: bool = True


class DeleteEventsIn(BaseModel):
    confirmation: str = ""


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: str = Field(..., serialization_alias="projectId")
    type: str
    name: Optional[str] = None
    page: str
    referrer: Optional[str] = None
    country: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    session_id: Optional[str] = Field(None, serialization_alias="sessionId")
    created_at: datetime = Field(..., serialization_alias="createdAt")


class FilterOptions(BaseModel):
    types: List[str] = Field(default_factory=list)
    devices: List[str] = Field(default_factory=list)
    browsers: List[str] = Field(default_factory=list)
    countries: List[str] = Field(default_factory=list)


class EventsPage(BaseModel):
    events: List[EventOut]
    total: int
    limit: int
    offset: int
    active_filters: Dict[str, object] = Field(..., serialization_alias="activeFilters")
    filter_options: FilterOptions = Field(..., serialization_alias="filterOptions")


class Growth(BaseModel):
    pageviews: int
    visitors: int
    events: int


class TopPage(BaseModel):
    page: str
    views: int


class DailyPoint(BaseModel):
    date: str
    pageviews: int
    visitors: int


class BrowserCount(BaseModel):
    browser: str
    count: int


class DeviceCount(BaseModel):
    device: str
    count: int


class CountryCount(BaseModel):
    country: str
    count: int


class StatsOut(BaseModel):
    total_pageviews: int = Field(..., serialization_alias="totalPageviews")
    total_visitors: int = Field(..., serialization_alias="totalVisitors")
    total_events: int = Field(..., serialization_alias="totalEvents")
    growth: Growth
    top_pages: List[TopPage] = Field(..., serialization_alias="topPages")
    daily_breakdown: List[DailyPoint] = Field(..., serialization_alias="dailyBreakdown")
    browsers: List[BrowserCount]
    devices: List[DeviceCount]
    countries: List[CountryCount]
    period: str
