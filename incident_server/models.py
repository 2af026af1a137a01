"""
File: models.py
Purpose: Incident entity, its enumerations and sub-records, derived lookup keys,
         identifier generation and timestamp helpers.

Timestamps are stored as fixed-width UTC strings (``YYYY-MM-DDTHH:MM:SS.ffffffZ``)
so the derived composite keys sort lexicographically in creation order.
"""

import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

KEY_SEP = "#"
TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_ID_ALPHABET = string.ascii_uppercase + string.digits


class IncidentStatus(str, Enum):
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class Environment(str, Enum):
    PRODUCTION = "PRODUCTION"
    STAGING = "STAGING"
    DEVELOPMENT = "DEVELOPMENT"


class ResolutionType(str, Enum):
    FIXED = "FIXED"
    WORKAROUND = "WORKAROUND"
    NOT_REPRODUCIBLE = "NOT_REPRODUCIBLE"


# Statuses a record may be created in
INITIAL_STATUSES = (IncidentStatus.NEW, IncidentStatus.ASSIGNED, IncidentStatus.IN_PROGRESS)
# Statuses promoted to IN_PROGRESS by the first progress update
PROMOTABLE_STATUSES = (IncidentStatus.NEW, IncidentStatus.ASSIGNED)
RESOLVED_STATUSES = (IncidentStatus.RESOLVED, IncidentStatus.CLOSED)

DEFAULT_SEVERITY = Severity.MEDIUM
DEFAULT_PRIORITY = Priority.P3


# =============================================================================
# Time helpers
# =============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """Render a datetime as a fixed-width UTC timestamp string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TS_FORMAT)


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; return None when missing or unparsable."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def resolution_time_minutes(created_at: Optional[str], resolved_at: Optional[str]) -> Optional[int]:
    """Whole minutes between creation and resolution, or None if either end is unknown."""
    start, end = parse_ts(created_at), parse_ts(resolved_at)
    if start is None or end is None:
        return None
    return int((end - start).total_seconds() // 60)


def generate_incident_id(now: Optional[datetime] = None) -> str:
    """Return ``INC-<epoch millis>-<6 uppercase alphanumerics>``."""
    now = now or utcnow()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"INC-{millis}-{suffix}"


# =============================================================================
# Sub-records
# =============================================================================

class SyncStatus(BaseModel):
    """Corpus-sync progress, independent of lifecycle status."""
    synced: bool = False
    attempts: int = 0
    synced_at: Optional[str] = None
    last_error: Optional[str] = None
    last_attempt: Optional[str] = None


class Resolution(BaseModel):
    resolved_by: str
    resolved_at: str
    resolution_type: ResolutionType
    description: str
    root_cause: Optional[str] = None
    preventive_actions: Optional[List[str]] = None


class CodeChange(BaseModel):
    file: str
    description: Optional[str] = None
    diff: Optional[str] = None


class Analysis(BaseModel):
    root_cause: Optional[str] = None
    diagnosis: Optional[str] = None
    similar_incidents_count: Optional[int] = None


class Solution(BaseModel):
    description: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    code_changes: List[CodeChange] = Field(default_factory=list)
    commands_executed: List[str] = Field(default_factory=list)
    tests_performed: List[str] = Field(default_factory=list)


class WorkNote(BaseModel):
    at: str
    developer: Optional[str] = None
    text: str


class WorkLog(BaseModel):
    """Analyst working notes accumulated by progress updates."""
    started_at: Optional[str] = None
    last_updated: Optional[str] = None
    developer: Optional[str] = None
    session_id: Optional[str] = None
    workspace: Optional[str] = None
    analysis: Optional[Analysis] = None
    solution: Optional[Solution] = None
    notes: List[WorkNote] = Field(default_factory=list)


# =============================================================================
# Incident
# =============================================================================

class Incident(BaseModel):
    incident_id: str
    external_id: str
    source_system: str
    source_url: Optional[str] = None

    title: str
    description: str
    status: IncidentStatus = IncidentStatus.NEW
    severity: Severity = DEFAULT_SEVERITY
    priority: Priority = DEFAULT_PRIORITY
    category: str

    assigned_to: Optional[str] = None
    assigned_at: Optional[str] = None
    team: Optional[str] = None
    due_date: Optional[str] = None

    affected_systems: List[str] = Field(default_factory=list)
    environment: Optional[Environment] = None
    error_message: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)

    created_at: str
    updated_at: str
    resolved_at: Optional[str] = None

    work_log: Optional[WorkLog] = None
    resolution: Optional[Resolution] = None
    closed_by: Optional[str] = None
    closed_at: Optional[str] = None
    closure_notes: Optional[str] = None

    sync_status: SyncStatus = Field(default_factory=SyncStatus)
    last_sync_at: Optional[str] = None

    # Derived composite keys; only meaningful to the persistence layer
    status_priority_created: str = ""
    priority_created: str = ""
    source_key: str = ""

    def refresh_keys(self) -> None:
        """Recompute derived keys from status, priority, created_at and the natural key."""
        self.status_priority_created = KEY_SEP.join(
            [self.status.value, self.priority.value, self.created_at]
        )
        self.priority_created = KEY_SEP.join([self.priority.value, self.created_at])
        self.source_key = source_key(self.source_system, self.external_id)

    def to_summary(self) -> Dict[str, Any]:
        """Lightweight listing view."""
        return {
            "incident_id": self.incident_id,
            "external_id": self.external_id,
            "source_system": self.source_system,
            "title": self.title,
            "status": self.status.value,
            "severity": self.severity.value,
            "priority": self.priority.value,
            "category": self.category,
            "assigned_to": self.assigned_to,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _escape_key_part(value: str) -> str:
    return value.replace("\\", "\\\\").replace(KEY_SEP, "\\" + KEY_SEP)


def source_key(source_system: str, external_id: str) -> str:
    """Natural key; separators inside either part are escaped so distinct pairs never collide."""
    return KEY_SEP.join([_escape_key_part(source_system), _escape_key_part(external_id)])
