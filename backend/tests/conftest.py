import sys
from importlib import reload
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

OWNER_ID = "user-1"


@pytest.fixture
def app_module(tmp_path, monkeypatch):
    db_path = tmp_path / "analytics.db"
    monkeypatch.setenv("ANALYTICS_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("ANALYTICS_DASHBOARD_RATE_LIMIT", "1000")
    monkeypatch.setenv("ANALYTICS_DASHBOARD_RATE_WINDOW", "60")

    from backend.analytics import database

    reload(database)

    from backend.analytics import main

    reload(main)
    main.reset_application_state()

    yield main

    main.app.dependency_overrides.clear()
    main.reset_application_state()
    database.engine.dispose()


@pytest.fixture
def session_factory(app_module):
    from backend.analytics import database

    return database.SessionLocal


@pytest.fixture
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def project(db_session):
    from backend.analytics.projects import create_project

    created = create_project(db_session, OWNER_ID, "Marketing site", "https://example.com/")
    db_session.commit()
    return created


@pytest.fixture
def client(app_module):
    from fastapi.testclient import TestClient

    from backend.analytics.auth import get_current_user_id

    app_module.app.dependency_overrides[get_current_user_id] = lambda: OWNER_ID
    return TestClient(app_module.app)
