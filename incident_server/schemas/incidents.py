"""
File: schemas/incidents.py
Purpose: Input models for lifecycle operations and the capabilities that wrap them.

Enumerated fields are accepted as plain strings here; the lifecycle manager
checks them so every violation can be reported at once.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models import Analysis, CodeChange


class NewIncident(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    external_id: Optional[str] = None
    source_system: Optional[str] = None
    category: Optional[str] = None
    source_url: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    team: Optional[str] = None
    due_date: Optional[str] = None
    affected_systems: List[str] = Field(default_factory=list)
    environment: Optional[str] = None
    error_message: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class SolutionUpdate(BaseModel):
    description: Optional[str] = None
    steps: Optional[List[str]] = None
    code_changes: Optional[List[CodeChange]] = None
    commands_executed: Optional[List[str]] = None
    tests_performed: Optional[List[str]] = None


class ProgressUpdate(BaseModel):
    """Progress reported by a developer; merged into the incident work log."""
    model_config = ConfigDict(extra="ignore")

    developer: Optional[str] = None
    session_id: Optional[str] = None
    workspace: Optional[str] = None
    note: Optional[str] = None
    analysis: Optional[Analysis] = None
    solution: Optional[SolutionUpdate] = None


class ResolveRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    incident_id: str
    resolved_by: str
    resolution_type: str
    description: str
    root_cause: Optional[str] = None
    preventive_actions: Optional[List[str]] = None
    solution: Optional[SolutionUpdate] = None


class CloseRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    incident_id: str
    closed_by: Optional[str] = None
    notes: Optional[str] = None


class SearchFilter(BaseModel):
    """Either assignee mode (``assigned_to``, narrowed by ``status``) or status
    mode (``status``, narrowed by ``priority``)."""
    model_config = ConfigDict(extra="ignore")

    assigned_to: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    limit: Optional[int] = None
    next_token: Optional[str] = None
