"""
File: sync.py
Purpose: Batch pipeline that copies CLOSED incidents into the corpus staging store.

One pass:
1. Fetch up to batch_size CLOSED incidents whose sync_status is not synced
2. Skip records that already used up max_attempts (left untouched)
3. Transform + write each remaining record; a failure only affects that record
4. Write back sync_status (success resets attempts, failure increments them)
5. Emit aggregate metrics, best effort, even when the pass aborts

Retry happens across passes through the persisted attempts counter; there is
no in-process backoff.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from .corpus import ObjectStore, build_corpus_document, corpus_key, document_metadata
from .models import Incident, IncidentStatus, SyncStatus, format_ts, utcnow
from .store import IncidentStore

log = logging.getLogger("incident-server.sync")


class MetricsSink(Protocol):
    async def emit(self, metrics: Dict[str, Any]) -> None: ...


@dataclass
class SyncResult:
    total_found: int = 0
    successfully_synced: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncPipeline:
    """Main corpus sync pipeline."""

    def __init__(
        self,
        store: IncidentStore,
        object_store: ObjectStore,
        metrics: Optional[MetricsSink] = None,
        *,
        batch_size: int = 50,
        max_attempts: int = 3,
        prefix: str = "incidents/closed/",
        clock: Callable = utcnow,
    ):
        self.store = store
        self.object_store = object_store
        self.metrics = metrics
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.prefix = prefix
        self.clock = clock

    async def run(self) -> SyncResult:
        """
        Run one pass.

        Returns:
            Aggregate counts; ``total_found == successfully_synced + failed + skipped``

        Raises:
            Whatever the store raises when the candidate batch cannot be fetched,
            after metrics have been emitted.
        """
        started = time.monotonic()
        result = SyncResult()
        try:
            page = await self.store.query_by_status(
                IncidentStatus.CLOSED, unsynced_only=True, limit=self.batch_size
            )
            result.total_found = len(page.items)
            log.info(f"Sync pass found {result.total_found} closed incidents")
            for incident in page.items:
                await self._sync_one(incident, result)
        except Exception as e:
            log.error(f"Sync pass aborted: {e}")
            raise
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            await self._emit_metrics(result)

        log.info(
            "Sync pass complete",
            extra={
                "found": result.total_found,
                "synced": result.successfully_synced,
                "failed": result.failed,
                "skipped": result.skipped,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _sync_one(self, incident: Incident, result: SyncResult) -> None:
        status = incident.sync_status
        if status.attempts >= self.max_attempts:
            result.skipped += 1
            log.warning(
                f"Skipping {incident.incident_id}: {status.attempts} sync attempts (max {self.max_attempts})"
            )
            return

        now = format_ts(self.clock())
        try:
            document = build_corpus_document(incident, synced_at=now)
            await self.object_store.put_document(
                corpus_key(self.prefix, incident.incident_id),
                document,
                document_metadata(incident, now),
            )
        except Exception as e:
            result.failed += 1
            result.errors.append({"incident_id": incident.incident_id, "error": str(e)})
            log.error(f"Failed to sync {incident.incident_id}: {e}")
            await self._write_status(
                incident.incident_id,
                SyncStatus(synced=False, attempts=status.attempts + 1, last_error=str(e), last_attempt=now),
            )
            return

        result.successfully_synced += 1
        await self._write_status(incident.incident_id, SyncStatus(synced=True, attempts=0, synced_at=now))

    async def _write_status(self, incident_id: str, sync_status: SyncStatus) -> None:
        """Persist sync_status; a failed write is logged and the pass continues."""
        try:
            await self.store.update_sync_status(incident_id, sync_status)
        except Exception:
            log.exception(f"Failed to update sync status for {incident_id}")

    async def _emit_metrics(self, result: SyncResult) -> None:
        if self.metrics is None:
            return
        try:
            await self.metrics.emit({
                "found": result.total_found,
                "synced": result.successfully_synced,
                "failed": result.failed,
                "skipped": result.skipped,
                "duration_ms": result.duration_ms,
            })
        except Exception as e:
            log.warning(f"Failed to emit sync metrics: {e}")
