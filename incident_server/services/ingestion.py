"""
File: services/ingestion.py
Purpose: Corpus ingestion client: asks the corpus to (re)index the staged documents.
"""

import logging
from typing import Any, Dict

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

log = logging.getLogger("incident-server.ingestion")


class IngestionError(Exception):
    """Raised when an ingestion job cannot be started."""


class IngestionClient:
    def __init__(
        self, http: httpx.AsyncClient, base_url: str, data_source: str, token: str = "", attempts: int = 2
    ):
        self.http = http
        self.base_url = (base_url or "").rstrip("/")
        self.data_source = data_source
        self.token = token
        self.attempts = max(1, attempts)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.3, min=0.3, max=2),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                resp = await self.http.post(f"{self.base_url}/v1/ingest/jobs", json=payload, headers=headers)
                resp.raise_for_status()
                return resp.json()

    async def start_job(self, description: str) -> Dict[str, Any]:
        """Start an ingestion job and return ``{"job_id", "status"}``."""
        if not self.base_url:
            raise IngestionError("INGEST_URL not configured")
        try:
            data = await self._post({"data_source": self.data_source, "description": description})
        except httpx.HTTPError as e:
            raise IngestionError(f"ingestion job failed to start: {e}") from e
        log.info(f"Ingestion job started: {data.get('job_id')}")
        return {"job_id": data.get("job_id"), "status": data.get("status", "STARTING")}
