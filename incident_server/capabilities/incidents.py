"""
Incident lifecycle capabilities.

Thin adapters: parse arguments, call the lifecycle manager, return JSON-ready dicts.
Lifecycle errors propagate and are reported by the dispatcher.
"""

from typing import Any, Dict

from ..lifecycle import IncidentLifecycleManager
from ..registry import Capability, InvocationContext

_STATUS_ENUM = ["NEW", "ASSIGNED", "IN_PROGRESS", "RESOLVED", "CLOSED"]
_PRIORITY_ENUM = ["P1", "P2", "P3", "P4"]

_SOLUTION_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "steps": {"type": "array", "items": {"type": "string"}},
        "code_changes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "file": {"type": "string"},
                    "description": {"type": "string"},
                    "diff": {"type": "string"},
                },
                "required": ["file"],
            },
        },
        "commands_executed": {"type": "array", "items": {"type": "string"}},
        "tests_performed": {"type": "array", "items": {"type": "string"}},
    },
}


class _LifecycleCapability(Capability):
    def __init__(self, lifecycle: IncidentLifecycleManager):
        self.lifecycle = lifecycle


class GetIncident(_LifecycleCapability):
    name = "get_incident"
    description = "Get the full record of one incident by its incident_id."
    input_schema = {
        "type": "object",
        "properties": {
            "incident_id": {"type": "string", "description": "Incident identifier (INC-...)"},
        },
        "required": ["incident_id"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        incident = await self.lifecycle.find(str(arguments["incident_id"]))
        if incident is None:
            return {"found": False, "incident_id": arguments["incident_id"]}
        return {"found": True, "incident": incident.model_dump(mode="json")}


class CreateIncident(_LifecycleCapability):
    name = "create_incident"
    description = "Register a new incident coming from an external ticketing system."
    input_schema = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "description": {"type": "string"},
            "external_id": {"type": "string", "description": "Ticket id in the source system"},
            "source_system": {"type": "string", "description": "e.g. JIRA, REMEDY, SERVICENOW"},
            "category": {"type": "string"},
            "severity": {"type": "string", "enum": ["CRITICAL", "HIGH", "MEDIUM", "LOW"]},
            "priority": {"type": "string", "enum": _PRIORITY_ENUM},
            "assigned_to": {"type": "string"},
            "team": {"type": "string"},
            "source_url": {"type": "string"},
            "environment": {"type": "string", "enum": ["PRODUCTION", "STAGING", "DEVELOPMENT"]},
            "error_message": {"type": "string"},
            "affected_systems": {"type": "array", "items": {"type": "string"}},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["title", "description", "external_id", "source_system", "category"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        incident = await self.lifecycle.create(arguments)
        return {"success": True, "incident": incident.model_dump(mode="json")}


class SearchMyIncidents(_LifecycleCapability):
    name = "search_my_incidents"
    description = (
        "List incidents assigned to a developer, most recent first. "
        "Defaults to the calling user when assigned_to is omitted."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "assigned_to": {"type": "string"},
            "status": {"type": "string", "enum": _STATUS_ENUM},
            "limit": {"type": "integer", "default": 20, "description": "Max 50"},
            "next_token": {"type": "string"},
        },
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        assigned_to = arguments.get("assigned_to") or context.user_id
        if not assigned_to:
            raise ValueError("assigned_to is required when the caller is anonymous")
        result = await self.lifecycle.search({**arguments, "assigned_to": assigned_to})
        return result.to_dict()


class SearchIncidentsByStatus(_LifecycleCapability):
    name = "search_incidents_by_status"
    description = "List incidents in a given status, optionally narrowed by priority, most recent first."
    input_schema = {
        "type": "object",
        "properties": {
            "status": {"type": "string", "enum": _STATUS_ENUM},
            "priority": {"type": "string", "enum": _PRIORITY_ENUM},
            "limit": {"type": "integer", "default": 20, "description": "Max 50"},
            "next_token": {"type": "string"},
        },
        "required": ["status"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        filters = {k: v for k, v in arguments.items() if k != "assigned_to"}
        result = await self.lifecycle.search(filters)
        return result.to_dict()


class UpdateIncident(_LifecycleCapability):
    name = "update_incident"
    description = (
        "Record investigation progress (analysis, solution, notes). "
        "Moves NEW or ASSIGNED incidents to IN_PROGRESS."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "incident_id": {"type": "string"},
            "developer": {"type": "string"},
            "session_id": {"type": "string"},
            "workspace": {"type": "string"},
            "note": {"type": "string"},
            "analysis": {
                "type": "object",
                "properties": {
                    "root_cause": {"type": "string"},
                    "diagnosis": {"type": "string"},
                    "similar_incidents_count": {"type": "integer"},
                },
            },
            "solution": _SOLUTION_SCHEMA,
        },
        "required": ["incident_id"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        progress = {k: v for k, v in arguments.items() if k != "incident_id"}
        progress.setdefault("developer", context.user_id)
        incident = await self.lifecycle.update(str(arguments["incident_id"]), progress)
        return {"success": True, "incident": incident.model_dump(mode="json")}


class ResolveIncident(_LifecycleCapability):
    name = "resolve_incident"
    description = "Mark an incident RESOLVED and record how it was resolved."
    input_schema = {
        "type": "object",
        "properties": {
            "incident_id": {"type": "string"},
            "resolved_by": {"type": "string", "description": "Defaults to the calling user"},
            "resolution_type": {"type": "string", "enum": ["FIXED", "WORKAROUND", "NOT_REPRODUCIBLE"]},
            "description": {"type": "string"},
            "root_cause": {"type": "string"},
            "preventive_actions": {"type": "array", "items": {"type": "string"}},
            "solution": _SOLUTION_SCHEMA,
        },
        "required": ["incident_id", "resolution_type", "description"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        request = dict(arguments)
        if not request.get("resolved_by"):
            request["resolved_by"] = context.user_id or context.principal or ""
        incident = await self.lifecycle.resolve(request)
        return {"success": True, "incident": incident.model_dump(mode="json")}


class CloseIncident(_LifecycleCapability):
    name = "close_incident"
    description = "Close a RESOLVED incident. Closed incidents are synced to the knowledge corpus."
    input_schema = {
        "type": "object",
        "properties": {
            "incident_id": {"type": "string"},
            "closed_by": {"type": "string"},
            "notes": {"type": "string"},
        },
        "required": ["incident_id"],
    }

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        request = dict(arguments)
        request.setdefault("closed_by", context.user_id)
        incident = await self.lifecycle.close(request)
        return {"success": True, "incident": incident.model_dump(mode="json")}
