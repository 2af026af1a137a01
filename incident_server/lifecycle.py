"""
File: lifecycle.py
Purpose: Incident lifecycle manager. Owns state transitions, keeps derived keys
         consistent with the record, and resets corpus-sync state whenever a
         record (re)enters RESOLVED or CLOSED.

Updates are unsynchronized read-modify-write: two concurrent mutations of the
same incident race and the later write wins in full. There is no version check.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import DuplicateIncident, IncidentNotFound, PreconditionFailed, ValidationFailed
from .models import (
    DEFAULT_PRIORITY,
    DEFAULT_SEVERITY,
    INITIAL_STATUSES,
    KEY_SEP,
    PROMOTABLE_STATUSES,
    RESOLVED_STATUSES,
    Analysis,
    Environment,
    Incident,
    IncidentStatus,
    Priority,
    Resolution,
    ResolutionType,
    Severity,
    Solution,
    SyncStatus,
    WorkLog,
    WorkNote,
    format_ts,
    generate_incident_id,
    utcnow,
)
from .schemas.incidents import (
    CloseRequest,
    NewIncident,
    ProgressUpdate,
    ResolveRequest,
    SearchFilter,
    SolutionUpdate,
)
from .store import IncidentStore

log = logging.getLogger("incident-server.lifecycle")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50

_REQUIRED_FIELDS = (
    ("title", "Title is required"),
    ("description", "Description is required"),
    ("external_id", "External ID is required"),
    ("source_system", "Source system is required"),
    ("category", "Category is required"),
)

M = TypeVar("M", bound=BaseModel)
E = TypeVar("E", bound=Enum)


@dataclass
class SearchResult:
    items: List[Incident]
    next_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incidents": [i.to_summary() for i in self.items],
            "count": len(self.items),
            "next_token": self.next_token,
        }


# =============================================================================
# Helpers
# =============================================================================

def _coerce(model: Type[M], data: Union[M, Mapping[str, Any]]) -> M:
    """Accept either a parsed model or a raw mapping; report schema errors as validation failures."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        ) from e


def _enum_value(enum: Type[E], raw: Optional[str], label: str, errors: List[str], default: Optional[E] = None) -> Optional[E]:
    if raw is None or raw == "":
        return default
    try:
        return enum(raw.strip().upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum)
        errors.append(f"Invalid {label}: {raw} (expected one of {allowed})")
        return default


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


_TOKEN_FIELDS = ("created_at", "incident_id")


def encode_token(last_key: Optional[Dict[str, str]]) -> Optional[str]:
    if not last_key:
        return None
    raw = json.dumps(last_key, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: Optional[str]) -> Optional[Dict[str, str]]:
    if not token:
        return None
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise ValidationFailed(["Invalid next_token"]) from e
    if not isinstance(data, dict) or not all(isinstance(data.get(k), str) for k in _TOKEN_FIELDS):
        raise ValidationFailed(["Invalid next_token"])
    return {k: data[k] for k in _TOKEN_FIELDS}


def _merge_solution(current: Optional[Solution], update: Optional[SolutionUpdate]) -> Optional[Solution]:
    if update is None:
        return current
    merged = current.model_copy(deep=True) if current else Solution()
    if update.description:
        merged.description = update.description
    if update.steps:
        merged.steps.extend(update.steps)
    if update.code_changes:
        merged.code_changes.extend(update.code_changes)
    if update.commands_executed:
        merged.commands_executed.extend(update.commands_executed)
    if update.tests_performed:
        merged.tests_performed.extend(update.tests_performed)
    return merged


# =============================================================================
# Lifecycle manager
# =============================================================================

class IncidentLifecycleManager:
    """Create, progress, resolve, close and search incidents."""

    def __init__(self, store: IncidentStore, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def _now(self) -> str:
        return format_ts(self.clock())

    async def _persist(self, incident: Incident) -> Incident:
        incident.refresh_keys()
        await self.store.put(incident)
        return incident

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _build(self, data: Union[NewIncident, Mapping[str, Any]]) -> Incident:
        """Validate input, collecting every violation, and build the new record."""
        req = _coerce(NewIncident, data)
        errors = [msg for field, msg in _REQUIRED_FIELDS if _blank(getattr(req, field))]

        severity = _enum_value(Severity, req.severity, "severity", errors, DEFAULT_SEVERITY)
        priority = _enum_value(Priority, req.priority, "priority", errors, DEFAULT_PRIORITY)
        environment = _enum_value(Environment, req.environment, "environment", errors)
        status = _enum_value(IncidentStatus, req.status, "status", errors, IncidentStatus.NEW)
        if status not in INITIAL_STATUSES:
            errors.append(f"Invalid initial status: {status.value}")
        if errors:
            raise ValidationFailed(errors)

        now_dt = self.clock()
        now = format_ts(now_dt)
        incident = Incident(
            incident_id=generate_incident_id(now_dt),
            external_id=req.external_id.strip(),
            source_system=req.source_system.strip(),
            source_url=req.source_url,
            title=req.title.strip(),
            description=req.description,
            status=status,
            severity=severity,
            priority=priority,
            category=req.category.strip(),
            assigned_to=req.assigned_to,
            assigned_at=now if req.assigned_to else None,
            team=req.team,
            due_date=req.due_date,
            affected_systems=list(req.affected_systems),
            environment=environment,
            error_message=req.error_message,
            tags=list(req.tags),
            attachments=list(req.attachments),
            created_at=now,
            updated_at=now,
            sync_status=SyncStatus(),
        )
        incident.refresh_keys()
        return incident

    async def create(self, data: Union[NewIncident, Mapping[str, Any]]) -> Incident:
        incident = self._build(data)
        existing = await self.store.find_by_source_key(incident.source_key)
        if existing is not None:
            log.warning(
                "Duplicate incident rejected",
                extra={"external_id": incident.external_id, "incident_id": existing.incident_id},
            )
            raise DuplicateIncident(f"Incident with external_id {incident.external_id} already exists")
        await self.store.put(incident)
        log.info("Incident created", extra={"incident_id": incident.incident_id, "source_key": incident.source_key})
        return incident

    async def batch_create(self, items: Iterable[Union[NewIncident, Mapping[str, Any]]]) -> Dict[str, Any]:
        """Create each item independently; one bad item never stops the rest."""
        created: List[str] = []
        errors: List[Dict[str, Any]] = []
        for index, item in enumerate(items):
            try:
                incident = await self.create(item)
                created.append(incident.incident_id)
            except (ValidationFailed, DuplicateIncident) as e:
                external_id = item.get("external_id") if isinstance(item, Mapping) else getattr(item, "external_id", None)
                errors.append({"index": index, "external_id": external_id, "error": e.message})
        log.info(f"Batch create finished: {len(created)} created, {len(errors)} failed")
        return {"created": len(created), "failed": len(errors), "incident_ids": created, "errors": errors}

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get(self, incident_id: str) -> Incident:
        incident = await self.store.get(incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)
        return incident

    async def find(self, incident_id: str) -> Optional[Incident]:
        return await self.store.get(incident_id)

    async def search(self, data: Union[SearchFilter, Mapping[str, Any]]) -> SearchResult:
        """Assignee mode narrows by status; status mode narrows by priority."""
        flt = _coerce(SearchFilter, data)
        limit = min(max(flt.limit or DEFAULT_PAGE_SIZE, 1), MAX_PAGE_SIZE)
        start_after = decode_token(flt.next_token)
        errors: List[str] = []
        status = _enum_value(IncidentStatus, flt.status, "status", errors)
        priority = _enum_value(Priority, flt.priority, "priority", errors)
        if not flt.assigned_to and status is None and not errors:
            errors.append("assigned_to or status is required")
        if errors:
            raise ValidationFailed(errors)

        if flt.assigned_to:
            prefix = f"{status.value}{KEY_SEP}" if status else None
            page = await self.store.query_by_assignee(
                flt.assigned_to, status_prefix=prefix, limit=limit, start_after=start_after
            )
        else:
            prefix = f"{priority.value}{KEY_SEP}" if priority else None
            page = await self.store.query_by_status(
                status, priority_prefix=prefix, limit=limit, start_after=start_after
            )
        return SearchResult(items=page.items, next_token=encode_token(page.last_key))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def update(self, incident_id: str, data: Union[ProgressUpdate, Mapping[str, Any]]) -> Incident:
        progress = _coerce(ProgressUpdate, data)
        incident = await self.get(incident_id)
        now = self._now()

        work_log = incident.work_log.model_copy(deep=True) if incident.work_log else WorkLog(started_at=now)
        work_log.last_updated = now
        for field in ("developer", "session_id", "workspace"):
            value = getattr(progress, field)
            if value:
                setattr(work_log, field, value)
        if progress.analysis is not None:
            current = work_log.analysis.model_dump() if work_log.analysis else {}
            current.update(progress.analysis.model_dump(exclude_none=True))
            work_log.analysis = Analysis.model_validate(current)
        work_log.solution = _merge_solution(work_log.solution, progress.solution)
        if progress.note:
            work_log.notes.append(WorkNote(at=now, developer=progress.developer, text=progress.note))
        incident.work_log = work_log

        previous = incident.status
        if incident.status in PROMOTABLE_STATUSES:
            incident.status = IncidentStatus.IN_PROGRESS
        elif incident.status == IncidentStatus.CLOSED:
            # the corpus copy is built from the work log
            incident.sync_status = SyncStatus()
        incident.updated_at = now
        await self._persist(incident)
        log.info(
            "Incident updated",
            extra={"incident_id": incident_id, "from_status": previous.value, "status": incident.status.value},
        )
        return incident

    async def resolve(self, data: Union[ResolveRequest, Mapping[str, Any]]) -> Incident:
        req = _coerce(ResolveRequest, data)
        errors: List[str] = []
        resolution_type = _enum_value(ResolutionType, req.resolution_type, "resolution_type", errors)
        if resolution_type is None and not errors:
            errors.append("Resolution type is required")
        if _blank(req.resolved_by):
            errors.append("Resolver is required")
        if _blank(req.description):
            errors.append("Resolution description is required")
        if errors:
            raise ValidationFailed(errors)

        incident = await self.get(req.incident_id)
        if incident.status in RESOLVED_STATUSES:
            raise PreconditionFailed(
                f"Incident is already {incident.status.value}; resolution can only be recorded once"
            )

        now = self._now()
        incident.resolution = Resolution(
            resolved_by=req.resolved_by,
            resolved_at=now,
            resolution_type=resolution_type,
            description=req.description,
            root_cause=req.root_cause,
            preventive_actions=req.preventive_actions,
        )
        if req.solution is not None:
            work_log = incident.work_log.model_copy(deep=True) if incident.work_log else WorkLog(started_at=now)
            work_log.solution = _merge_solution(work_log.solution, req.solution)
            work_log.last_updated = now
            incident.work_log = work_log
        incident.status = IncidentStatus.RESOLVED
        incident.resolved_at = now
        incident.updated_at = now
        incident.sync_status = SyncStatus()
        await self._persist(incident)
        log.info(
            "Incident resolved",
            extra={"incident_id": incident.incident_id, "resolution_type": resolution_type.value},
        )
        return incident

    async def close(self, data: Union[CloseRequest, Mapping[str, Any]]) -> Incident:
        req = _coerce(CloseRequest, data)
        incident = await self.get(req.incident_id)
        if incident.status != IncidentStatus.RESOLVED:
            raise PreconditionFailed(
                f"Incident must be RESOLVED before closing. Current status: {incident.status.value}"
            )

        now = self._now()
        incident.status = IncidentStatus.CLOSED
        incident.closed_by = req.closed_by
        incident.closed_at = now
        incident.closure_notes = req.notes
        incident.updated_at = now
        incident.sync_status = SyncStatus()
        await self._persist(incident)
        log.info("Incident closed", extra={"incident_id": incident.incident_id})
        return incident
