"""
File: repository.py
Purpose: Postgres-backed incident store. Each record is kept as a JSONB document
         next to the indexed columns the range queries need.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json

from .db import TABLE, get_conn
from .errors import DuplicateIncident
from .instrumentation import STORE_TIME
from .models import Incident, IncidentStatus, SyncStatus
from .store import Page, page_key

_COLUMNS = "doc"


def _row_values(incident: Incident) -> Tuple[Any, ...]:
    return (
        incident.incident_id,
        incident.source_key,
        incident.status.value,
        incident.assigned_to,
        incident.created_at,
        incident.status_priority_created,
        incident.priority_created,
        incident.sync_status.synced,
        Json(incident.model_dump(mode="json")),
    )


class PostgresIncidentStore:
    """Blocking psycopg2 calls run in worker threads behind async methods."""

    async def get(self, incident_id: str) -> Optional[Incident]:
        return await asyncio.to_thread(self._get_sync, incident_id)

    async def put(self, incident: Incident) -> None:
        await asyncio.to_thread(self._put_sync, incident)

    async def find_by_source_key(self, source_key: str) -> Optional[Incident]:
        return await asyncio.to_thread(self._find_by_source_key_sync, source_key)

    async def query_by_assignee(self, assigned_to, *, status_prefix=None, limit, start_after=None) -> Page:
        where = ["assigned_to = %s"]
        params: List[Any] = [assigned_to]
        if status_prefix:
            where.append("starts_with(status_priority_created, %s)")
            params.append(status_prefix)
        return await asyncio.to_thread(self._query_sync, "query_assignee", where, params, limit, start_after)

    async def query_by_status(
        self, status, *, priority_prefix=None, unsynced_only=False, limit, start_after=None
    ) -> Page:
        where = ["status = %s"]
        params: List[Any] = [IncidentStatus(status).value]
        if priority_prefix:
            where.append("starts_with(priority_created, %s)")
            params.append(priority_prefix)
        if unsynced_only:
            where.append("NOT synced")
        return await asyncio.to_thread(self._query_sync, "query_status", where, params, limit, start_after)

    async def update_sync_status(self, incident_id: str, sync_status: SyncStatus) -> None:
        await asyncio.to_thread(self._update_sync_status_sync, incident_id, sync_status)

    # ----------------------- SYNC implementations -----------------------

    def _get_sync(self, incident_id: str) -> Optional[Incident]:
        sql = f"SELECT {_COLUMNS} FROM {TABLE} WHERE incident_id = %s;"
        with STORE_TIME.labels(op="get").time():
            with get_conn() as conn, conn.cursor() as cur:
                cur.execute(sql, (incident_id,))
                row = cur.fetchone()
        return Incident.model_validate(row[0]) if row else None

    def _find_by_source_key_sync(self, source_key: str) -> Optional[Incident]:
        sql = f"SELECT {_COLUMNS} FROM {TABLE} WHERE source_key = %s;"
        with STORE_TIME.labels(op="find_source_key").time():
            with get_conn() as conn, conn.cursor() as cur:
                cur.execute(sql, (source_key,))
                row = cur.fetchone()
        return Incident.model_validate(row[0]) if row else None

    def _put_sync(self, incident: Incident) -> None:
        sql = f"""
        INSERT INTO {TABLE} (incident_id, source_key, status, assigned_to, created_at,
                             status_priority_created, priority_created, synced, doc)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (incident_id) DO UPDATE
          SET source_key              = EXCLUDED.source_key,
              status                  = EXCLUDED.status,
              assigned_to             = EXCLUDED.assigned_to,
              created_at              = EXCLUDED.created_at,
              status_priority_created = EXCLUDED.status_priority_created,
              priority_created        = EXCLUDED.priority_created,
              synced                  = EXCLUDED.synced,
              doc                     = EXCLUDED.doc;
        """
        with STORE_TIME.labels(op="put").time():
            with get_conn() as conn, conn.cursor() as cur:
                try:
                    cur.execute(sql, _row_values(incident))
                    conn.commit()
                except pg_errors.UniqueViolation as e:
                    conn.rollback()
                    raise DuplicateIncident(
                        f"Incident with external_id {incident.external_id} already exists"
                    ) from e

    def _query_sync(
        self,
        op: str,
        where: List[str],
        params: List[Any],
        limit: int,
        start_after: Optional[Dict[str, str]],
    ) -> Page:
        if start_after:
            where = where + ["(created_at, incident_id) < (%s, %s)"]
            params = params + [start_after.get("created_at", ""), start_after.get("incident_id", "")]
        sql = f"""
        SELECT {_COLUMNS} FROM {TABLE}
        WHERE {" AND ".join(where)}
        ORDER BY created_at DESC, incident_id DESC
        LIMIT %s;
        """
        with STORE_TIME.labels(op=op).time():
            with get_conn() as conn, conn.cursor() as cur:
                cur.execute(sql, params + [int(limit) + 1])
                rows = cur.fetchall()
        items = [Incident.model_validate(r[0]) for r in rows[:limit]]
        last_key = page_key(items[-1]) if len(rows) > limit and items else None
        return Page(items=items, last_key=last_key)

    def _update_sync_status_sync(self, incident_id: str, sync_status: SyncStatus) -> None:
        sql = f"""
        UPDATE {TABLE}
           SET doc = jsonb_set(doc, '{{sync_status}}', %s::jsonb),
               synced = %s
         WHERE incident_id = %s;
        """
        with STORE_TIME.labels(op="update_sync_status").time():
            with get_conn() as conn, conn.cursor() as cur:
                cur.execute(sql, (Json(sync_status.model_dump(mode="json")), sync_status.synced, incident_id))
                conn.commit()
