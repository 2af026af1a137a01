"""
File: services/llm_client.py
Purpose: Generative-analysis client for an OpenAI-compatible chat endpoint.

Two uses:
  - optimize_query: rewrite an incident description into a retrieval query
  - analyze_incident: diagnose an incident against similar past incidents,
    returning a JSON verdict
"""

import json
import logging
import re
from typing import Any, Dict, List, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

log = logging.getLogger("incident-server.llm")

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class AnalysisError(Exception):
    """Raised when the LLM endpoint is unreachable or returns garbage."""


def _optimize_prompt(description: str, error_message: str) -> str:
    parts = [
        "Rewrite the following incident into a short search query for a knowledge base "
        "of past incidents. Keep error codes, component names and key symptoms. "
        "Reply with the query only.",
        f"Incident: {description}",
    ]
    if error_message:
        parts.append(f"Error message: {error_message}")
    return "\n\n".join(parts)


def _analysis_prompt(description: str, error_message: str, similar: List[Dict[str, Any]]) -> str:
    context = "\n\n".join(
        f"[{i + 1}] {s.get('title') or s.get('incident_id') or 'incident'}\n"
        f"Root cause: {s.get('root_cause', 'n/a')}\nResolution: {s.get('resolution', 'n/a')}"
        for i, s in enumerate(similar)
    ) or "No similar incidents were found."
    return (
        "You are a senior SRE assistant. Diagnose the current incident using the similar past incidents.\n"
        "Answer with a JSON object with keys: diagnosis (string), root_cause (string), "
        "recommended_actions (list of strings), confidence_score (number 0-1), reasoning (string).\n\n"
        f"Current incident:\n{description}\n"
        f"Error message: {error_message or 'n/a'}\n\n"
        f"Similar incidents:\n{context}"
    )


def parse_analysis(text: str) -> Dict[str, Any]:
    """Parse the model's JSON verdict; free text becomes a low-confidence diagnosis."""
    cleaned = _FENCE.sub("", (text or "").strip())
    try:
        data = json.loads(cleaned)
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return {
            "diagnosis": cleaned,
            "root_cause": "",
            "recommended_actions": [],
            "confidence_score": 0.0,
            "reasoning": "Model response was not valid JSON",
        }
    actions = data.get("recommended_actions") or []
    try:
        confidence = float(data.get("confidence_score") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    return {
        "diagnosis": str(data.get("diagnosis") or ""),
        "root_cause": str(data.get("root_cause") or ""),
        "recommended_actions": [str(a) for a in actions] if isinstance(actions, list) else [str(actions)],
        "confidence_score": max(0.0, min(confidence, 1.0)),
        "reasoning": str(data.get("reasoning") or ""),
    }


class LLMClient:
    """Calls ``{base_url}/v1/chat/completions``."""

    def __init__(
        self, http: httpx.AsyncClient, base_url: str, model: str, api_key: str = "", attempts: int = 2
    ):
        self.http = http
        self.base_url = (base_url or "").rstrip("/")
        self.model = model
        self.api_key = api_key
        self.attempts = max(1, attempts)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.3, min=0.3, max=2),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                resp = await self.http.post(f"{self.base_url}/v1/chat/completions", json=payload, headers=headers)
                resp.raise_for_status()
                return resp.json()

    async def chat(self, prompt: str, temperature: float = 0.2, max_tokens: int = 512) -> Tuple[str, int]:
        """Return (content, total tokens used)."""
        if not self.base_url:
            raise AnalysisError("LLM_BASE_URL not configured")
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            data = await self._post(payload)
            content = (data["choices"][0]["message"]["content"] or "").strip()
        except httpx.HTTPError as e:
            raise AnalysisError(f"LLM HTTP error: {e}") from e
        except (KeyError, IndexError, TypeError) as e:
            raise AnalysisError(f"Unexpected LLM response shape: {e}") from e
        tokens = int((data.get("usage") or {}).get("total_tokens") or 0)
        return content, tokens

    async def optimize_query(self, description: str, error_message: str = "") -> Tuple[str, int]:
        text, tokens = await self.chat(_optimize_prompt(description, error_message), temperature=0.0, max_tokens=128)
        return text.strip().strip('"') or description, tokens

    async def analyze_incident(
        self, description: str, error_message: str, similar: List[Dict[str, Any]]
    ) -> Tuple[Dict[str, Any], int]:
        text, tokens = await self.chat(_analysis_prompt(description, error_message, similar), max_tokens=1024)
        return parse_analysis(text), tokens
