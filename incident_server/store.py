"""
File: store.py
Purpose: Persistence collaborator contract for incidents plus an in-memory implementation.

Queries return most-recently-created first (ties broken by incident_id) and
page with an opaque ``last_key`` that the caller hands back as ``start_after``.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import DuplicateIncident
from .instrumentation import STORE_TIME
from .models import Incident, IncidentStatus, SyncStatus


@dataclass
class Page:
    items: List[Incident]
    last_key: Optional[Dict[str, str]] = None


class IncidentStore(Protocol):
    async def get(self, incident_id: str) -> Optional[Incident]: ...

    async def put(self, incident: Incident) -> None:
        """Write the full record, overwriting any previous version."""

    async def find_by_source_key(self, source_key: str) -> Optional[Incident]: ...

    async def query_by_assignee(
        self,
        assigned_to: str,
        *,
        status_prefix: Optional[str] = None,
        limit: int,
        start_after: Optional[Dict[str, str]] = None,
    ) -> Page: ...

    async def query_by_status(
        self,
        status: IncidentStatus,
        *,
        priority_prefix: Optional[str] = None,
        unsynced_only: bool = False,
        limit: int,
        start_after: Optional[Dict[str, str]] = None,
    ) -> Page: ...

    async def update_sync_status(self, incident_id: str, sync_status: SyncStatus) -> None:
        """Overwrite only the sync_status sub-field of a record."""


def order_key(incident: Incident) -> Tuple[str, str]:
    return (incident.created_at, incident.incident_id)


def page_key(incident: Incident) -> Dict[str, str]:
    return {"created_at": incident.created_at, "incident_id": incident.incident_id}


class InMemoryIncidentStore:
    """Dict-backed store for local runs and tests. Holds deep copies of records."""

    def __init__(self):
        self._rows: Dict[str, Incident] = {}

    def __len__(self) -> int:
        return len(self._rows)

    async def get(self, incident_id: str) -> Optional[Incident]:
        row = self._rows.get(incident_id)
        return row.model_copy(deep=True) if row else None

    async def put(self, incident: Incident) -> None:
        with STORE_TIME.labels(op="put").time():
            for other in self._rows.values():
                if other.source_key == incident.source_key and other.incident_id != incident.incident_id:
                    raise DuplicateIncident(
                        f"Incident with external_id {incident.external_id} already exists"
                    )
            self._rows[incident.incident_id] = incident.model_copy(deep=True)

    async def find_by_source_key(self, source_key: str) -> Optional[Incident]:
        for row in self._rows.values():
            if row.source_key == source_key:
                return row.model_copy(deep=True)
        return None

    async def query_by_assignee(self, assigned_to, *, status_prefix=None, limit, start_after=None) -> Page:
        rows = [
            r for r in self._rows.values()
            if r.assigned_to == assigned_to
            and (not status_prefix or r.status_priority_created.startswith(status_prefix))
        ]
        return self._paginate(rows, limit, start_after)

    async def query_by_status(
        self, status, *, priority_prefix=None, unsynced_only=False, limit, start_after=None
    ) -> Page:
        status = IncidentStatus(status)
        rows = [
            r for r in self._rows.values()
            if r.status == status
            and (not priority_prefix or r.priority_created.startswith(priority_prefix))
            and not (unsynced_only and r.sync_status.synced)
        ]
        return self._paginate(rows, limit, start_after)

    async def update_sync_status(self, incident_id: str, sync_status: SyncStatus) -> None:
        row = self._rows.get(incident_id)
        if row is not None:
            row.sync_status = sync_status.model_copy(deep=True)

    def _paginate(self, rows: List[Incident], limit: int, start_after: Optional[Dict[str, str]]) -> Page:
        rows.sort(key=order_key, reverse=True)
        if start_after:
            cursor = (start_after.get("created_at", ""), start_after.get("incident_id", ""))
            rows = [r for r in rows if order_key(r) < cursor]
        items = [r.model_copy(deep=True) for r in rows[:limit]]
        last_key = page_key(items[-1]) if len(rows) > limit and items else None
        return Page(items=items, last_key=last_key)
