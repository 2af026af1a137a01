"""
Similar-incident search: query optimization -> corpus retrieval -> LLM analysis.
"""

import logging
import time
from typing import Any, Dict

from ..registry import Capability, InvocationContext
from ..services.llm_client import AnalysisError, LLMClient
from ..services.retrieval import RetrievalClient

log = logging.getLogger("incident-server.capabilities.similar")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SearchSimilarIncidents(Capability):
    name = "search_similar_incidents"
    description = (
        "Find past incidents similar to the one described and return an AI diagnosis "
        "with root cause, recommended actions and a confidence score."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "description": {"type": "string", "description": "What is happening, in natural language"},
            "error_message": {"type": "string"},
            "top_k": {"type": "integer", "default": 5},
            "optimize_query": {"type": "boolean", "default": True},
        },
        "required": ["description"],
    }

    def __init__(self, retrieval: RetrievalClient, llm: LLMClient):
        self.retrieval = retrieval
        self.llm = llm

    async def execute(self, arguments: Dict[str, Any], context: InvocationContext) -> Dict[str, Any]:
        description = str(arguments["description"])
        error_message = str(arguments.get("error_message") or "")
        top_k = int(arguments.get("top_k") or 5)
        tokens = 0
        started = time.monotonic()

        query = description
        if arguments.get("optimize_query", True):
            try:
                query, used = await self.llm.optimize_query(description, error_message)
                tokens += used
            except AnalysisError as e:
                # Fall back to the raw description
                log.warning(f"Query optimization failed: {e}")
                query = description
        optimize_ms = _elapsed_ms(started)

        step = time.monotonic()
        similar = await self.retrieval.search(query, top_k=top_k)
        retrieval_ms = _elapsed_ms(step)

        step = time.monotonic()
        analysis, used = await self.llm.analyze_incident(description, error_message, similar)
        tokens += used
        analysis_ms = _elapsed_ms(step)

        return {
            **analysis,
            "similar_incidents": similar,
            "metadata": {
                "query": query,
                "similar_count": len(similar),
                "query_optimization_ms": optimize_ms,
                "retrieval_ms": retrieval_ms,
                "analysis_ms": analysis_ms,
                "total_ms": _elapsed_ms(started),
                "tokens_used": tokens,
            },
        }
