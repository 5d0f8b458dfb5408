"""Example client that posts a tracking event the way the browser snippet does."""
from __future__ import annotations

import argparse
import os
import uuid

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a sample tracking event")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("ANALYTICS_API_URL", "http://127.0.0.1:8000"),
        help="Analytics API base URL (default: %(default)s or ANALYTICS_API_URL)",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("ANALYTICS_API_KEY"),
        help="Project API key (ANALYTICS_API_KEY)",
    )
    parser.add_argument("--type", default="pageview", help="Event type (default: %(default)s)")
    parser.add_argument("--name", default=None, help="Custom event label")
    parser.add_argument("--page", default="/", help="Page path (default: %(default)s)")
    parser.add_argument("--referrer", default=None)
    parser.add_argument("--session-id", default=None, help="Defaults to a random id")
    args = parser.parse_args()
    if not args.api_key:
        parser.error("An API key must be supplied via --api-key or ANALYTICS_API_KEY")
    return args


def main() -> None:
    args = parse_args()
    payload = {
        "apiKey": args.api_key,
        "type": args.type,
        "page": args.page,
        "sessionId": args.session_id or uuid.uuid4().hex,
    }
    if args.name:
        payload["name"] = args.name
    if args.referrer:
        payload["referrer"] = args.referrer

    headers = {
        "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    }
    response = requests.post(f"{args.api_url}/track", headers=headers, json=payload, timeout=10)
    print(response.status_code, response.json())
    response.raise_for_status()


if __name__ == "__main__":
    main()
