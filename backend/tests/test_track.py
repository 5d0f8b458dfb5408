import logging
from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from backend.analytics import recorder, schemas
from backend.analytics.aggregation import day_bucket
from backend.analytics.errors import AuthError, StorageError, ValidationError
from backend.analytics.models import MAX_PAGE_LENGTH, DailyStat, Event, utcnow
from backend.analytics.projects import set_active

CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Mobile Safari/537.36"
)


def _event_count(db_session):
    return db_session.execute(select(func.count(Event.id))).scalar_one()


def _daily_rows(db_session):
    db_session.expire_all()
    rows = db_session.execute(select(DailyStat).order_by(DailyStat.page)).scalars()
    return [(row.date, row.page, row.pageviews, row.unique_visitors) for row in rows]


# --- payload parsing ---


def test_parse_requires_api_key():
    with pytest.raises(ValidationError) as excinfo:
        recorder.parse_track_payload({"type": "pageview"})
    assert excinfo.value.message == "API key is required"


@pytest.mark.parametrize("body", [None, [], "pageview", 42])
def test_parse_rejects_non_object_bodies(body):
    with pytest.raises(ValidationError):
        recorder.parse_track_payload(body)


def test_parse_treats_blank_fields_as_missing():
    payload = recorder.parse_track_payload({"apiKey": "la_x", "type": "", "page": "  ", "sessionId": "s1"})
    assert payload.type is None
    assert payload.page is None
    assert payload.session_id == "s1"


def test_parse_treats_whitespace_api_key_as_missing():
    with pytest.raises(ValidationError) as excinfo:
        recorder.parse_track_payload({"apiKey": "   ", "type": "pageview"})
    assert excinfo.value.message == "API key is required"
    assert excinfo.value.field == "apiKey"


def test_parse_truncates_long_free_text():
    payload = recorder.parse_track_payload(
        {
            "apiKey": "la_x",
            "type": "t" * 100,
            "name": "n" * 300,
            "page": "/" + "p" * 1000,
            "referrer": "https://example.org/?q=" + "r" * 3000,
            "sessionId": "s" * 200,
        }
    )
    assert len(payload.type) == schemas.MAX_TYPE_LENGTH
    assert len(payload.name) == schemas.MAX_NAME_LENGTH
    assert len(payload.page) == MAX_PAGE_LENGTH
    assert payload.referrer.startswith("https://example.org/?q=")
    assert len(payload.referrer) == schemas.MAX_REFERRER_LENGTH
    assert len(payload.session_id) == schemas.MAX_SESSION_ID_LENGTH


def test_parse_rejects_wrongly_typed_fields():
    with pytest.raises(ValidationError) as excinfo:
        recorder.parse_track_payload({"apiKey": "la_x", "page": 12})
    assert excinfo.value.field == "page"


def test_country_from_headers(monkeypatch):
    assert recorder.country_from_headers({"x-vercel-ip-country": "de"}) == "DE"
    assert recorder.country_from_headers({"cf-ipcountry": "FR"}) == "FR"
    assert recorder.country_from_headers({"cf-ipcountry": "XX"}) == "Unknown"
    assert recorder.country_from_headers({"cf-ipcountry": "T1"}) == "Unknown"
    assert recorder.country_from_headers({}) == "Unknown"

    monkeypatch.setenv("ANALYTICS_GEO_HEADERS", "x-country")
    assert recorder.country_from_headers({"x-country": "NL", "cf-ipcountry": "FR"}) == "NL"


# --- recording ---


def test_record_event_enriches_and_defaults(db_session, project):
    event = recorder.record_event(
        db_session,
        schemas.TrackIn(api_key=project.api_key),
        user_agent=CHROME_ANDROID,
        country="SE",
        now=datetime(2024, 2, 29, 23, 59, 59),
    )

    assert event.type == "pageview"
    assert event.page == "/"
    assert (event.device, event.browser, event.country) == ("mobile", "Chrome", "SE")
    assert _daily_rows(db_session) == [("2024-02-29", "/", 1, 1)]


def test_record_event_rejects_unknown_key_without_writing(db_session, project):
    with pytest.raises(AuthError):
        recorder.record_event(db_session, schemas.TrackIn(api_key="la_nope"), user_agent="")
    assert _event_count(db_session) == 0
    assert _daily_rows(db_session) == []


def test_failed_aggregate_rolls_back_event(db_session, project, monkeypatch):
    def broken_bump(*_args, **_kwargs):
        raise OperationalError("INSERT INTO daily_stats", {}, Exception("disk I/O error"))

    monkeypatch.setattr(recorder, "bump_daily_stat", broken_bump)

    with pytest.raises(StorageError):
        recorder.record_event(db_session, schemas.TrackIn(api_key=project.api_key), user_agent="")
    assert _event_count(db_session) == 0


# --- HTTP endpoint ---


def test_preflight_returns_empty_cors_response(client):
    response = client.options("/track")
    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"


def test_three_pageviews_and_a_click(client, db_session, project):
    for _ in range(3):
        response = client.post(
            "/track",
            json={"apiKey": project.api_key, "type": "pageview", "page": "/a"},
            headers={"user-agent": CHROME_ANDROID, "cf-ipcountry": "US"},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert response.headers["access-control-allow-origin"] == "*"

    today = day_bucket(utcnow())
    assert _daily_rows(db_session) == [(today, "/a", 3, 1)]

    response = client.post("/track", json={"apiKey": project.api_key, "type": "click", "page": "/a"})
    assert response.status_code == 200
    assert _daily_rows(db_session) == [(today, "/a", 3, 1)]
    assert _event_count(db_session) == 4

    stored = db_session.execute(select(Event).order_by(Event.id)).scalars().first()
    assert (stored.device, stored.browser, stored.country) == ("mobile", "Chrome", "US")


def test_custom_event_is_recorded_without_aggregate(client, db_session, project):
    response = client.post(
        "/track",
        json={"apiKey": project.api_key, "type": "signup", "name": "Signup button", "sessionId": "abc"},
    )
    assert response.status_code == 200

    event = db_session.execute(select(Event)).scalar_one()
    assert (event.type, event.name, event.page, event.session_id) == ("signup", "Signup button", "/", "abc")
    assert _daily_rows(db_session) == []


def test_client_cannot_supply_enrichment_fields(client, db_session, project):
    client.post(
        "/track",
        json={"apiKey": project.api_key, "country": "ZZ", "browser": "Netscape", "device": "tablet"},
        headers={"user-agent": ""},
    )
    event = db_session.execute(select(Event)).scalar_one()
    assert (event.country, event.browser, event.device) == ("Unknown", "Other", "desktop")


def test_missing_api_key_is_400(client, db_session, project):
    response = client.post("/track", json={"type": "pageview"})
    assert response.status_code == 400
    assert response.json() == {"error": "API key is required"}
    assert response.headers["access-control-allow-origin"] == "*"
    assert _event_count(db_session) == 0


def test_malformed_json_is_400(client, db_session, project):
    response = client.post(
        "/track", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert _event_count(db_session) == 0


def test_unknown_api_key_is_401(client, db_session, project):
    response = client.post("/track", json={"apiKey": "la_doesnotexist"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid API key"}
    assert _event_count(db_session) == 0


def test_deactivated_project_is_401_and_untouched(client, db_session, project):
    client.post("/track", json={"apiKey": project.api_key, "page": "/a"})
    set_active(db_session, project, False)
    db_session.commit()
    before = _daily_rows(db_session)

    response = client.post("/track", json={"apiKey": project.api_key, "page": "/a"})

    assert response.status_code == 401
    assert _event_count(db_session) == 1
    assert _daily_rows(db_session) == before


def test_storage_failure_is_500(client, db_session, project, monkeypatch):
    def broken_bump(*_args, **_kwargs):
        raise OperationalError("INSERT INTO daily_stats", {}, Exception("database is locked"))

    monkeypatch.setattr(recorder, "bump_daily_stat", broken_bump)

    response = client.post("/track", json={"apiKey": project.api_key})
    assert response.status_code == 500
    assert response.json() == {"error": "Tracking failed"}
    assert response.headers["access-control-allow-origin"] == "*"
    assert _event_count(db_session) == 0


def test_oversized_optional_fields_are_truncated_not_rejected(client, db_session, project):
    long_referrer = "https://search.example.com/results?q=" + "a" * 3000
    response = client.post(
        "/track",
        json={"apiKey": project.api_key, "type": "click", "name": "b" * 300, "referrer": long_referrer},
    )
    assert response.status_code == 200

    event = db_session.execute(select(Event)).scalar_one()
    assert event.name == "b" * 255
    assert event.referrer == long_referrer[:2048]


def test_long_pageview_path_is_counted_under_truncated_page(client, db_session, project):
    long_page = "/" + "x" * 900
    for _ in range(2):
        response = client.post("/track", json={"apiKey": project.api_key, "page": long_page})
        assert response.status_code == 200

    assert _daily_rows(db_session) == [(day_bucket(utcnow()), long_page[:MAX_PAGE_LENGTH], 2, 1)]
    assert _event_count(db_session) == 2


def test_storage_error_raised_when_database_stays_down(db_session, project, monkeypatch, caplog):
    project_id = project.id

    def broken_bump(*_args, **_kwargs):
        raise OperationalError("INSERT INTO daily_stats", {}, Exception("server has gone away"))

    def unreachable(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("server has gone away"))

    original_rollback = db_session.rollback

    def rollback_then_disconnect():
        original_rollback()
        monkeypatch.setattr(db_session, "execute", unreachable)

    monkeypatch.setattr(recorder, "bump_daily_stat", broken_bump)
    monkeypatch.setattr(db_session, "rollback", rollback_then_disconnect)
    monkeypatch.setattr(logging.getLogger("backend.analytics"), "propagate", True)

    with caplog.at_level("ERROR", logger="backend.analytics.recorder"):
        with pytest.raises(StorageError):
            recorder.record_event(db_session, schemas.TrackIn(api_key=project.api_key), user_agent="")

    assert project_id in caplog.text
