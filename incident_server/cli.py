"""
File: cli.py
Purpose: Console entrypoints.

  incident-server        run the HTTP server (uvicorn)
  incident-server-sync   run one corpus sync pass and print the result as JSON
  incident-server-seed   batch-create incidents from a JSON file (list of objects)
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from .config import settings
from .db import close_db_pool, ensure_schema, init_db_pool
from .logging_setup import configure_logging
from .wiring import Services, build_services

log = logging.getLogger("incident-server.cli")


@asynccontextmanager
async def open_services() -> AsyncIterator[Services]:
    use_pg = settings.STORE_BACKEND == "postgres"
    if use_pg:
        await init_db_pool()
        await ensure_schema()
    services = build_services(settings)
    try:
        yield services
    finally:
        await services.aclose()
        if use_pg:
            await close_db_pool()


def serve(argv: Optional[List[str]] = None) -> None:
    """Run the HTTP server."""
    import uvicorn

    parser = argparse.ArgumentParser(prog="incident-server", description=serve.__doc__)
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=settings.PORT)
    args = parser.parse_args(argv)
    uvicorn.run("incident_server.main:app", host=args.host, port=args.port)


async def _run_sync() -> dict:
    async with open_services() as services:
        result = await services.pipeline.run()
    return result.to_dict()


def sync(argv: Optional[List[str]] = None) -> int:
    """Run one corpus sync pass."""
    parser = argparse.ArgumentParser(prog="incident-server-sync", description=sync.__doc__)
    parser.parse_args(argv)
    configure_logging()
    try:
        result = asyncio.run(_run_sync())
    except Exception as e:
        log.error(f"Sync failed: {e}")
        return 1
    print(json.dumps(result, indent=2))
    return 0


async def _run_seed(items: list) -> dict:
    async with open_services() as services:
        return await services.lifecycle.batch_create(items)


def seed(argv: Optional[List[str]] = None) -> int:
    """Batch-create incidents from a JSON file."""
    parser = argparse.ArgumentParser(prog="incident-server-seed", description=seed.__doc__)
    parser.add_argument("path", type=Path, help="JSON file holding a list of incident objects")
    args = parser.parse_args(argv)
    configure_logging()

    items = json.loads(args.path.read_text(encoding="utf-8"))
    if not isinstance(items, list):
        print("Seed file must contain a JSON list", file=sys.stderr)
        return 2
    summary = asyncio.run(_run_seed(items))
    print(json.dumps(summary, indent=2))
    return 0 if summary["failed"] == 0 else 1
