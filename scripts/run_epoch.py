#!/usr/bin/env python3
"""
Trigger one economy cycle on a running backend.

Reads the bearer secret from ECONOMY_EPOCH_SECRET (or CRON_SECRET).

Usage:
    python scripts/run_epoch.py [--backend-url http://localhost:8000] [--init] [--no-narrative]
"""

import argparse
import json
import os
import sys

import requests


def _secret() -> str:
    return (os.environ.get("ECONOMY_EPOCH_SECRET") or os.environ.get("CRON_SECRET") or "").strip()


def _call(session: requests.Session, method: str, url: str, **kwargs) -> dict:
    r = session.request(method, url, timeout=120, **kwargs)
    try:
        data = r.json()
    except ValueError:
        data = {"error": "bad_response", "message": r.text[:200]}
    if r.status_code >= 400:
        raise RuntimeError(f"{method} {url} -> {r.status_code}: {data.get('error')}: {data.get('message', '')}")
    return data


def main():
    parser = argparse.ArgumentParser(description="Run one economy epoch cycle")
    parser.add_argument(
        "--backend-url",
        default=os.environ.get("BACKEND_URL", "http://localhost:8000"),
        help="Backend URL (default: $BACKEND_URL or http://localhost:8000)",
    )
    parser.add_argument("--init", action="store_true", help="Create missing agents first")
    parser.add_argument("--no-narrative", action="store_true", help="Skip diaries and social posts")
    parser.add_argument("--no-settle", action="store_true", help="Skip prediction settlement")
    parser.add_argument("--event", default=None, help="Force an event (normal, boom, recession, opportunity, crisis)")
    args = parser.parse_args()

    secret = _secret()
    if not secret:
        print("Set ECONOMY_EPOCH_SECRET or CRON_SECRET", file=sys.stderr)
        sys.exit(1)

    base = args.backend_url.rstrip("/")
    session = requests.Session()
    session.headers["Authorization"] = f"Bearer {secret}"
    body = {"narrative": not args.no_narrative, "settle": not args.no_settle, "event": args.event}

    try:
        if args.init:
            init = _call(session, "POST", f"{base}/economy/init")
            print(f"Agents ready: {len(init.get('agents', []))}", file=sys.stderr)
        out = _call(session, "POST", f"{base}/cron/epoch", json=body)
    except (requests.RequestException, RuntimeError) as e:
        print(f"Epoch run failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(out, indent=2))
    if out.get("errors"):
        print(f"{len(out['errors'])} downstream errors", file=sys.stderr)


if __name__ == "__main__":
    main()
