"""
File: tests/test_services.py
Purpose: Downstream HTTP clients against httpx mock transports.
"""

import json

import httpx
import pytest

from conftest import FakeObjectStore
from incident_server.config import Settings
from incident_server.services.ingestion import IngestionClient, IngestionError
from incident_server.services.llm_client import AnalysisError, LLMClient, parse_analysis
from incident_server.services.retrieval import RetrievalClient, RetrievalError
from incident_server.store import InMemoryIncidentStore
from incident_server.wiring import build_services


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retrieval_search_posts_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"results": [{"incident_id": "INC-1"}]})

    async with _client(handler) as http:
        client = RetrievalClient(http, "http://kb:8000/", token="t0k", top_k=5)
        results = await client.search("pool exhausted", top_k=3)

    assert results == [{"incident_id": "INC-1"}]
    assert seen["url"] == "http://kb:8000/v1/search"
    assert seen["auth"] == "Bearer t0k"
    assert seen["body"] == {"query": "pool exhausted", "top_k": 3}


@pytest.mark.asyncio
async def test_retrieval_retries_transport_errors_then_fails():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as http:
        client = RetrievalClient(http, "http://kb:8000")
        with pytest.raises(RetrievalError):
            await client.search("q")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retrieval_not_configured():
    async with _client(lambda r: httpx.Response(200)) as http:
        with pytest.raises(RetrievalError):
            await RetrievalClient(http, "").search("q")


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_llm_analyze_parses_fenced_json():
    verdict = {
        "diagnosis": "pool exhausted",
        "root_cause": "leak",
        "recommended_actions": ["restart"],
        "confidence_score": 1.7,
        "reasoning": "matches INC-1",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        content = "```json\n" + json.dumps(verdict) + "\n```"
        return httpx.Response(200, json={
            "choices": [{"message": {"content": content}}],
            "usage": {"total_tokens": 321},
        })

    async with _client(handler) as http:
        llm = LLMClient(http, "http://llm:11434", "qwen2.5:7b")
        analysis, tokens = await llm.analyze_incident("checkout 500s", "", [{"title": "DB pool"}])

    assert tokens == 321
    assert analysis["diagnosis"] == "pool exhausted"
    assert analysis["confidence_score"] == 1.0


@pytest.mark.asyncio
async def test_llm_http_error_is_analysis_error():
    async with _client(lambda r: httpx.Response(503, text="overloaded")) as http:
        llm = LLMClient(http, "http://llm:11434", "m")
        with pytest.raises(AnalysisError):
            await llm.optimize_query("checkout 500s")


def test_parse_analysis_free_text():
    parsed = parse_analysis("I think the database is down")
    assert parsed["diagnosis"] == "I think the database is down"
    assert parsed["confidence_score"] == 0.0
    assert parsed["recommended_actions"] == []


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ingestion_start_job():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/ingest/jobs"
        assert json.loads(request.content)["data_source"] == "incident-corpus"
        return httpx.Response(202, json={"job_id": "j-1", "status": "STARTING"})

    async with _client(handler) as http:
        job = await IngestionClient(http, "http://kb:8000", "incident-corpus").start_job("3 incidents synced")
    assert job == {"job_id": "j-1", "status": "STARTING"}


@pytest.mark.asyncio
async def test_ingestion_http_error():
    async with _client(lambda r: httpx.Response(500)) as http:
        with pytest.raises(IngestionError):
            await IngestionClient(http, "http://kb:8000", "ds").start_job("x")


# ---------------------------------------------------------------------------
# Retry budget
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_retry_budget_follows_attempts():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"results": []})

    async with _client(handler) as http:
        assert await RetrievalClient(http, "http://kb:8000", attempts=3).search("q") == []
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_single_attempt_does_not_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as http:
        with pytest.raises(IngestionError):
            await IngestionClient(http, "http://kb:8000", "ds", attempts=1).start_job("x")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_build_services_passes_http_retries():
    cfg = Settings(HTTP_RETRIES=4, INGEST_URL="http://kb:8000", PUSHGATEWAY_URL="")
    services = build_services(cfg, store=InMemoryIncidentStore(), object_store=FakeObjectStore())
    try:
        similar = services.registry["search_similar_incidents"]
        ingest = services.registry["sync_and_ingest"]
        assert similar.retrieval.attempts == 4
        assert similar.llm.attempts == 4
        assert ingest.ingestion.attempts == 4
    finally:
        await services.aclose()
