"""
File: services/retrieval.py
Purpose: Semantic retrieval client: text query -> similar corpus documents.
"""

import logging
from typing import Any, Dict, List

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

log = logging.getLogger("incident-server.retrieval")


class RetrievalError(Exception):
    """Raised when the retrieval service cannot answer."""


class RetrievalClient:
    """Calls ``POST {base_url}/v1/search`` with ``{"query", "top_k"}``."""

    def __init__(
        self, http: httpx.AsyncClient, base_url: str, token: str = "", top_k: int = 5, attempts: int = 2
    ):
        self.http = http
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.top_k = top_k
        self.attempts = max(1, attempts)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.3, min=0.3, max=2),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                resp = await self.http.post(f"{self.base_url}/v1/search", json=payload, headers=self._headers())
                resp.raise_for_status()
                return resp.json()

    async def search(self, query: str, top_k: int = 0) -> List[Dict[str, Any]]:
        if not self.base_url:
            raise RetrievalError("RETRIEVAL_URL not configured")
        try:
            data = await self._post({"query": query, "top_k": top_k or self.top_k})
        except httpx.HTTPError as e:
            raise RetrievalError(f"retrieval failed: {e}") from e
        results = data.get("results", []) if isinstance(data, dict) else []
        log.info(f"Retrieved {len(results)} similar documents")
        return results
