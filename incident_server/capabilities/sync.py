"""
Corpus sync capabilities: run the sync pipeline on demand, optionally followed
by an ingestion job.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from ..registry import Capability, InvocationContext
from ..services.ingestion import IngestionClient, IngestionError
from ..sync import SyncPipeline

log = logging.getLogger("incident-server.capabilities.sync")


class ForceSync(Capability):
    name = "force_sync"
    description = "Sync CLOSED incidents to the knowledge corpus now instead of waiting for the schedule."
    input_schema = {
        "type": "object",
        "properties": {
            "wait_for_completion": {
                "type": "boolean",
                "default": True,
                "description": "Return the sync result (true) or start it in the background (false)",
            },
        },
    }

    def __init__(self, pipeline: SyncPipeline):
        self.pipeline = pipeline
        self._background: Set[asyncio.Task] = set()

    def _on_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error(f"Background sync failed: {task.exception()}")

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        if arguments.get("wait_for_completion", True):
            result = await self.pipeline.run()
            return {"status": "completed", **result.to_dict()}
        task = asyncio.create_task(self.pipeline.run())
        self._background.add(task)
        task.add_done_callback(self._on_done)
        return {"status": "started", "message": "Sync started in background"}


class SyncAndIngest(Capability):
    name = "sync_and_ingest"
    description = "Sync CLOSED incidents to the corpus and start an ingestion job so they become searchable."
    input_schema = {"type": "object", "properties": {}}

    def __init__(self, pipeline: SyncPipeline, ingestion: Optional[IngestionClient]):
        self.pipeline = pipeline
        self.ingestion = ingestion

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        try:
            result = await self.pipeline.run()
        except Exception as e:
            log.error(f"sync_and_ingest: sync failed: {e}")
            return {"status": "error", "step": "sync", "error": str(e)}

        sync = result.to_dict()
        if result.successfully_synced == 0:
            return {"status": "success", "message": "No new incidents to ingest", "sync": sync, "ingestion": None}
        if self.ingestion is None:
            return {"status": "partial_success", "sync": sync, "ingestion": None, "error": "Ingestion not configured"}

        try:
            job = await self.ingestion.start_job(f"{result.successfully_synced} incidents synced")
        except IngestionError as e:
            log.error(f"sync_and_ingest: ingestion failed: {e}")
            return {"status": "partial_success", "sync": sync, "ingestion": None, "error": str(e)}
        return {"status": "success", "sync": sync, "ingestion": job}
