#!/usr/bin/env python3
"""CLI script to drain pending transcript jobs once.

Usage:
    python scripts/run_worker.py --limit 5
    python scripts/run_worker.py --remote https://api.example.com --limit 5

Local mode connects to the database using DATABASE_URL from environment or
.env file and runs one worker batch in-process (stale jobs are reset
first). Remote mode calls the deployed /api/v1/process/worker endpoint
with WORKER_SECRET, which is what a cron trigger does.

Exit code 0 when every processed job succeeded, 1 otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from types import SimpleNamespace

# Ensure project root is on sys.path so we can import src.dealflow
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

TIMEOUT = 300.0


async def run_local(limit: int) -> bool:
    """Run one batch against the database directly."""
    from src.dealflow.api.middleware.logging import configure_structlog
    from src.dealflow.config import get_settings
    from src.dealflow.core.database import close_db
    from src.dealflow.jobs.schemas import Trigger
    from src.dealflow.main import build_pipeline_services

    configure_structlog()
    settings = get_settings()
    state = SimpleNamespace()
    build_pipeline_services(state, settings)

    try:
        report = await state.worker_pool.run_batch(limit=limit, trigger=Trigger.WORKER)
    finally:
        await close_db()

    print(f"Recovered stale jobs: {report.recovered_stale}")
    print(f"Processed:            {report.processed}")
    for result in report.results:
        status = "skipped" if result.skipped else ("ok" if result.success else "FAILED")
        detail = result.memo_id or result.error or ""
        print(f"  {result.job_id}  {status:<8} {detail}")
    return all(r.success for r in report.results)


def run_remote(base_url: str, limit: int) -> bool:
    """Trigger one batch on a deployed instance."""
    import httpx

    secret = os.environ.get("WORKER_SECRET", "")
    if not secret:
        print("WORKER_SECRET is not set", file=sys.stderr)
        return False

    url = base_url.rstrip("/") + "/api/v1/process/worker"
    try:
        response = httpx.post(
            url,
            params={"limit": limit},
            headers={"Authorization": f"Bearer {secret}"},
            timeout=TIMEOUT,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        print(f"Worker trigger failed: {exc}", file=sys.stderr)
        return False

    data = response.json()
    print(f"Recovered stale jobs: {data.get('recoveredStale', 0)}")
    print(f"Processed:            {data.get('processed', 0)}")
    return all(r.get("success") for r in data.get("results", []))


def main() -> None:
    parser = argparse.ArgumentParser(description="Drain pending transcript jobs once")
    parser.add_argument("--limit", type=int, default=3, help="Jobs per batch (1-10)")
    parser.add_argument(
        "--remote",
        default=None,
        help="Base URL of a deployed instance; omit to run in-process",
    )
    args = parser.parse_args()
    limit = min(max(args.limit, 1), 10)

    if args.remote:
        ok = run_remote(args.remote, limit)
    else:
        ok = asyncio.run(run_local(limit))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
