"""CLI utility to fail over jobs stuck in processing for SQL storage."""

from __future__ import annotations

import argparse
import logging
import os

from grantflow.server.engine import JobQueueEngine
from grantflow.storage.sql_storage import SqlStorage


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover stuck grantflow jobs")
    parser.add_argument(
        "--database-url",
        default=os.getenv("GRANTFLOW_DATABASE_URL"),
        required=os.getenv("GRANTFLOW_DATABASE_URL") is None,
        help="SQLAlchemy connection URL (e.g., sqlite:///grantflow.db)",
    )
    parser.add_argument(
        "--max-age-seconds",
        type=int,
        default=300,
        help="Treat jobs processing longer than this many seconds as abandoned.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of jobs to recover.",
    )
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    args = build_arg_parser().parse_args()
    engine = JobQueueEngine(SqlStorage(connection_url=args.database_url))
    recovered = engine.recover_stuck_jobs(
        max_age_seconds=args.max_age_seconds,
        limit=args.limit,
    )
    if not recovered:
        print("No stuck jobs recovered.")
        return
    print(f"Recovered {len(recovered)} stuck jobs (now retrying or failed):")
    for job_id in recovered:
        print(f"- {job_id}")


if __name__ == "__main__":
    main()
