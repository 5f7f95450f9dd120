#!/usr/bin/env python
"""CLI utility to re-dispatch generation jobs stuck in ``pending``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

from planner_core.core.database import session_scope
from planner_core.dispatch import DispatchOutcome, get_generation_dispatcher
from planner_core.models.base import utcnow
from planner_core.services.job_store import TicketGenerationJobStore


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-dispatch ticket generation jobs left in pending.")
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=10,
        help="Only jobs whose last update is older than this many minutes.",
    )
    parser.add_argument("--limit", type=int, default=100, help="Maximum number of jobs to dispatch.")
    parser.add_argument("--dry-run", action="store_true", help="List the jobs without dispatching them.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


async def redispatch(older_than_minutes: int, limit: int, dry_run: bool) -> int:
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    with session_scope() as session:
        job_ids = [job.id for job in TicketGenerationJobStore(session).find_stale_pending(cutoff, limit=limit)]

    logging.info("Found %s stale pending job(s)", len(job_ids))
    if dry_run:
        for job_id in job_ids:
            logging.info("Would dispatch job %s", job_id)
        return 0

    dispatcher = get_generation_dispatcher()
    failures = 0
    for job_id in job_ids:
        result = await dispatcher.dispatch(job_id)
        logging.info("Job %s: %s after %s attempt(s)", job_id, result.outcome.value, result.attempts)
        if result.outcome in (DispatchOutcome.REJECTED, DispatchOutcome.EXHAUSTED):
            failures += 1
    return 1 if failures else 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(redispatch(args.older_than_minutes, args.limit, args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
