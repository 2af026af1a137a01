"""
File: corpus.py
Purpose: Flatten closed incidents into corpus documents and stage them in object storage.

Object stores:
  - BlobObjectStore: Azure Blob Storage container (production)
  - FileObjectStore: local directory, used when no blob connection is configured
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from .models import Incident, resolution_time_minutes

log = logging.getLogger("incident-server.corpus")

NOT_SPECIFIED = "Not specified"


def corpus_key(prefix: str, incident_id: str) -> str:
    return f"{prefix}{incident_id}.json"


def build_corpus_document(incident: Incident, synced_at: str) -> Dict[str, Any]:
    """
    Flatten an incident into the document consumed by the corpus.

    Resolution fields come from the structured resolution first, then from the
    analyst work log, then fall back to a "Not specified" placeholder.
    """
    resolution = incident.resolution
    work_log = incident.work_log
    analysis = work_log.analysis if work_log else None
    solution = work_log.solution if work_log else None

    root_cause = (
        (resolution.root_cause if resolution else None)
        or (analysis.root_cause if analysis else None)
        or NOT_SPECIFIED
    )
    resolution_text = (
        (resolution.description if resolution else None)
        or (solution.description if solution else None)
        or NOT_SPECIFIED
    )
    resolved_at = (resolution.resolved_at if resolution else None) or incident.resolved_at

    return {
        "incident_id": incident.incident_id,
        "external_id": incident.external_id,
        "source_system": incident.source_system,
        "source_url": incident.source_url,
        "title": incident.title,
        "description": incident.description,
        "category": incident.category,
        "severity": incident.severity.value,
        "priority": incident.priority.value,
        "affected_systems": list(incident.affected_systems),
        "environment": incident.environment.value if incident.environment else None,
        "error_message": incident.error_message,
        "root_cause": root_cause,
        "resolution": resolution_text,
        "resolution_type": resolution.resolution_type.value if resolution else NOT_SPECIFIED,
        "resolution_steps": list(solution.steps) if solution else [],
        "code_changes": [c.model_dump() for c in solution.code_changes] if solution else [],
        "preventive_actions": list(resolution.preventive_actions or []) if resolution else [],
        "resolved_by": (resolution.resolved_by if resolution else None)
        or (work_log.developer if work_log else None)
        or NOT_SPECIFIED,
        "resolved_at": resolved_at,
        "resolution_time_minutes": resolution_time_minutes(incident.created_at, resolved_at),
        "tags": list(incident.tags),
        "synced_at": synced_at,
    }


def document_metadata(incident: Incident, synced_at: str) -> Dict[str, str]:
    """Blob metadata; values must be plain ASCII strings."""
    return {
        "incident_id": incident.incident_id,
        "synced_at": synced_at,
        "source": "batch-sync",
        "status": incident.status.value.lower(),
        "category": incident.category.encode("ascii", "ignore").decode("ascii"),
        "severity": incident.severity.value,
    }


class ObjectStore(Protocol):
    async def put_document(self, key: str, document: Dict[str, Any], metadata: Dict[str, str]) -> None: ...

    async def close(self) -> None: ...


class BlobObjectStore:
    """Async Azure Blob writer; the client is opened lazily and reused."""

    def __init__(self, connection_string: str, container: str):
        self.connection_string = connection_string
        self.container_name = container
        self._client: Optional[BlobServiceClient] = None

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _ensure_client(self) -> BlobServiceClient:
        if self._client is None:
            self._client = BlobServiceClient.from_connection_string(self.connection_string)
        return self._client

    async def put_document(self, key: str, document: Dict[str, Any], metadata: Dict[str, str]) -> None:
        container = self._ensure_client().get_container_client(self.container_name)
        body = json.dumps(document, indent=2, default=str).encode("utf-8")
        await container.upload_blob(
            name=key,
            data=body,
            overwrite=True,
            metadata=metadata,
            content_settings=ContentSettings(content_type="application/json"),
        )
        log.debug(f"Uploaded {key} ({len(body)} bytes)")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class FileObjectStore:
    """Writes documents under a base directory, metadata in a sidecar file."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def _write(self, key: str, document: Dict[str, Any], metadata: Dict[str, str]) -> None:
        path = self.base_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, indent=2, default=str), encoding="utf-8")
        path.with_name(path.name + ".metadata").write_text(json.dumps(metadata), encoding="utf-8")

    async def put_document(self, key: str, document: Dict[str, Any], metadata: Dict[str, str]) -> None:
        await asyncio.to_thread(self._write, key, document, metadata)

    async def close(self) -> None:
        return None
