"""Shared test fixtures and fakes for collaborators."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import pytest

from incident_server.dispatcher import Dispatcher
from incident_server.lifecycle import IncidentLifecycleManager
from incident_server.registry import CapabilityRegistry
from incident_server.services.ingestion import IngestionError
from incident_server.services.llm_client import AnalysisError
from incident_server.store import InMemoryIncidentStore
from incident_server.sync import SyncPipeline


class StepClock:
    """Deterministic clock: every call advances by one second."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class FakeObjectStore:
    def __init__(self, fail_ids: Optional[Set[str]] = None):
        self.fail_ids = set(fail_ids or ())
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.metadata: Dict[str, Dict[str, str]] = {}

    async def put_document(self, key: str, document: Dict[str, Any], metadata: Dict[str, str]) -> None:
        if document["incident_id"] in self.fail_ids:
            raise IOError(f"upload rejected for {document['incident_id']}")
        self.documents[key] = document
        self.metadata[key] = metadata

    async def close(self) -> None:
        return None


class RecordingMetrics:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.emitted: List[Dict[str, Any]] = []

    async def emit(self, metrics: Dict[str, Any]) -> None:
        self.emitted.append(dict(metrics))
        if self.fail:
            raise RuntimeError("pushgateway unreachable")


class FakeRetrieval:
    def __init__(self, results: Optional[List[Dict[str, Any]]] = None):
        self.results = results or []
        self.queries: List[str] = []

    async def search(self, query: str, top_k: int = 0) -> List[Dict[str, Any]]:
        self.queries.append(query)
        return self.results[: top_k or None]


class FakeLLM:
    def __init__(self, optimized: str = "optimized query", fail_optimize: bool = False):
        self.optimized = optimized
        self.fail_optimize = fail_optimize

    async def optimize_query(self, description: str, error_message: str = ""):
        if self.fail_optimize:
            raise AnalysisError("LLM unavailable")
        return self.optimized, 10

    async def analyze_incident(self, description, error_message, similar):
        return {
            "diagnosis": "connection pool exhausted",
            "root_cause": "leaked connections",
            "recommended_actions": ["restart pool"],
            "confidence_score": 0.8,
            "reasoning": f"{len(similar)} similar incidents",
        }, 40


class FakeIngestion:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.jobs: List[str] = []

    async def start_job(self, description: str) -> Dict[str, Any]:
        if self.fail:
            raise IngestionError("ingestion service down")
        self.jobs.append(description)
        return {"job_id": f"job-{len(self.jobs)}", "status": "STARTING"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_incident_input(**overrides) -> Dict[str, Any]:
    data = {
        "title": "Checkout API returns 500",
        "description": "Payments fail intermittently during checkout",
        "external_id": "JIRA-101",
        "source_system": "JIRA",
        "category": "payments",
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store():
    return InMemoryIncidentStore()


@pytest.fixture
def lifecycle(store, clock):
    return IncidentLifecycleManager(store, clock=clock)


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def metrics():
    return RecordingMetrics()


@pytest.fixture
def pipeline(store, object_store, metrics, clock):
    return SyncPipeline(store, object_store, metrics, batch_size=50, max_attempts=3, clock=clock)


@pytest.fixture
def dispatcher_factory():
    def _make(*capabilities):
        return Dispatcher(CapabilityRegistry(capabilities), "incident-server", "1.0.0")
    return _make
