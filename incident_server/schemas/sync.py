"""
File: schemas/sync.py
Purpose: Response model for the sync pipeline trigger.
"""

from typing import List

from pydantic import BaseModel


class SyncError(BaseModel):
    incident_id: str
    error: str


class SyncResponse(BaseModel):
    total_found: int
    successfully_synced: int
    failed: int
    skipped: int
    errors: List[SyncError] = []
    duration_ms: int
