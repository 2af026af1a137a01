"""
File: errors.py
Purpose: Domain error taxonomy raised by the incident lifecycle manager.

Each error carries a stable string ``code``. The dispatcher collapses all of
them into a single tool-execution failure and keeps only the message.
"""

from typing import Iterable, List


class IncidentError(Exception):
    """Base class for lifecycle failures."""

    code = "INCIDENT_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(IncidentError):
    """One or more input violations; all of them are reported together."""

    code = "VALIDATION_FAILED"

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class DuplicateIncident(IncidentError):
    code = "DUPLICATE"


class IncidentNotFound(IncidentError):
    code = "NOT_FOUND"

    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class PreconditionFailed(IncidentError):
    code = "PRECONDITION_FAILED"
