"""Example of how to run the grantflow status API."""
from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from grantflow.client import Client
from grantflow.config import EngineSettings
from grantflow.dashboard import create_dashboard_app
from grantflow.storage.memory_storage import MemoryStorage
from grantflow.storage.sql_storage import SqlStorage


def create_client(storage: str, database_url: str | None) -> Client:
    storage = storage.strip().lower()
    settings = EngineSettings.from_env()
    if storage == "memory":
        return Client(MemoryStorage(), settings=settings)
    if storage != "sql":
        raise ValueError("storage must be 'sql' or 'memory'")
    if not database_url:
        raise ValueError("the sql backend needs --database-url or GRANTFLOW_DATABASE_URL")
    return Client(SqlStorage(connection_url=database_url), settings=settings)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the grantflow status API")
    parser.add_argument(
        "--storage",
        choices=["sql", "memory"],
        default=os.getenv("GRANTFLOW_STORAGE", "memory"),
        help="Storage backend to use (env: GRANTFLOW_STORAGE).",
    )
    parser.add_argument(
        "--database-url",
        default=os.getenv("GRANTFLOW_DATABASE_URL"),
        help="SQLAlchemy URL for the sql backend (env: GRANTFLOW_DATABASE_URL).",
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--no-engine",
        action="store_true",
        help="Serve status only; do not poll for jobs in this process.",
    )
    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    args = build_arg_parser().parse_args()
    client = create_client(args.storage, args.database_url)
    if not args.no_engine:
        client.engine.start()
    app = create_dashboard_app(client, debug=True)
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        if client.engine.is_running():
            client.engine.stop()
