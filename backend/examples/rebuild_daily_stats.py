"""Recompute a project's daily stats from its raw pageview events."""
from __future__ import annotations

import argparse

from backend.analytics.aggregation import rebuild_daily_stats
from backend.analytics.database import session_scope
from backend.analytics.logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("project_id", nargs="+", help="Project id(s) to rebuild")
    args = parser.parse_args()

    setup_logging()
    for project_id in args.project_id:
        with session_scope() as db:
            rows = rebuild_daily_stats(db, project_id)
        print(f"{project_id}: {rows} daily stat rows")


if __name__ == "__main__":
    main()
