"""
File: wiring.py
Purpose: Build the process-wide component graph from settings.

Built once per process (FastAPI lifespan or CLI command) and passed explicitly
to whatever needs it; nothing below this module reads settings.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from .capabilities import build_capabilities
from .config import Settings, settings
from .corpus import BlobObjectStore, FileObjectStore, ObjectStore
from .dispatcher import Dispatcher
from .instrumentation import PrometheusMetricsSink
from .lifecycle import IncidentLifecycleManager
from .registry import CapabilityRegistry
from .repository import PostgresIncidentStore
from .services.ingestion import IngestionClient
from .services.llm_client import LLMClient
from .services.retrieval import RetrievalClient
from .store import IncidentStore, InMemoryIncidentStore
from .sync import MetricsSink, SyncPipeline

log = logging.getLogger("incident-server.wiring")


@dataclass
class Services:
    store: IncidentStore
    object_store: ObjectStore
    lifecycle: IncidentLifecycleManager
    pipeline: SyncPipeline
    registry: CapabilityRegistry
    dispatcher: Dispatcher
    http: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        """Release network clients."""
        await self.object_store.close()
        if self.http is not None:
            await self.http.aclose()


def build_store(cfg: Settings) -> IncidentStore:
    if cfg.STORE_BACKEND == "postgres":
        return PostgresIncidentStore()
    if cfg.STORE_BACKEND != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {cfg.STORE_BACKEND}")
    log.warning("Using in-memory incident store; records are lost at exit")
    return InMemoryIncidentStore()


def build_object_store(cfg: Settings) -> ObjectStore:
    if cfg.BLOB_CONN:
        return BlobObjectStore(cfg.BLOB_CONN, cfg.BLOB_CONTAINER)
    log.info(f"No BLOB_CONN configured; staging corpus documents in {cfg.STAGING_DIR}")
    return FileObjectStore(cfg.STAGING_DIR)


def build_services(
    cfg: Settings = settings,
    *,
    store: Optional[IncidentStore] = None,
    object_store: Optional[ObjectStore] = None,
    metrics: Optional[MetricsSink] = None,
    retrieval: Optional[RetrievalClient] = None,
    llm: Optional[LLMClient] = None,
    ingestion: Optional[IngestionClient] = None,
) -> Services:
    """Construct every component; explicit arguments replace the configured defaults."""
    http = httpx.AsyncClient(timeout=httpx.Timeout(cfg.HTTP_TIMEOUT_SECS))
    HTTPXClientInstrumentor.instrument_client(http)

    store = store or build_store(cfg)
    object_store = object_store or build_object_store(cfg)
    metrics = metrics or PrometheusMetricsSink(cfg.PUSHGATEWAY_URL, cfg.METRICS_JOB)
    retrieval = retrieval or RetrievalClient(
        http, cfg.RETRIEVAL_URL, cfg.RETRIEVAL_TOKEN, cfg.RETRIEVAL_TOP_K, attempts=cfg.HTTP_RETRIES
    )
    llm = llm or LLMClient(http, cfg.LLM_BASE_URL, cfg.LLM_MODEL, cfg.LLM_API_KEY, attempts=cfg.HTTP_RETRIES)
    if ingestion is None and cfg.INGEST_URL:
        ingestion = IngestionClient(
            http, cfg.INGEST_URL, cfg.INGEST_DATA_SOURCE, cfg.RETRIEVAL_TOKEN, attempts=cfg.HTTP_RETRIES
        )

    lifecycle = IncidentLifecycleManager(store)
    pipeline = SyncPipeline(
        store,
        object_store,
        metrics,
        batch_size=cfg.SYNC_BATCH_SIZE,
        max_attempts=cfg.SYNC_MAX_ATTEMPTS,
        prefix=cfg.CORPUS_PREFIX,
    )
    registry = CapabilityRegistry(build_capabilities(lifecycle, pipeline, retrieval, llm, ingestion))
    dispatcher = Dispatcher(registry, cfg.SERVICE_NAME, cfg.SERVICE_VERSION)
    return Services(
        store=store,
        object_store=object_store,
        lifecycle=lifecycle,
        pipeline=pipeline,
        registry=registry,
        dispatcher=dispatcher,
        http=http,
    )
