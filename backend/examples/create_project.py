"""Create a tracked project directly in the database and print its API key."""
from __future__ import annotations

import argparse

from backend.analytics.database import engine, session_scope
from backend.analytics.models import Base
from backend.analytics.projects import create_project


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an analytics project")
    parser.add_argument("--user-id", required=True, help="Owning user id (the dashboard token subject)")
    parser.add_argument("--name", required=True)
    parser.add_argument("--domain", required=True)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        project = create_project(db, args.user_id, args.name, args.domain)
        print("Project id:", project.id)
        print("API key:", project.api_key)


if __name__ == "__main__":
    main()
