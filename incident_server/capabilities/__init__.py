"""
Capabilities registered with the dispatcher, in listing order:
- search_similar_incidents: retrieval + LLM diagnosis over past incidents
- get_incident / create_incident / update_incident / resolve_incident / close_incident
- search_my_incidents / search_incidents_by_status: paged listings
- force_sync / sync_and_ingest: on-demand corpus sync
"""

from typing import List, Optional

from ..lifecycle import IncidentLifecycleManager
from ..registry import Capability
from ..services.ingestion import IngestionClient
from ..services.llm_client import LLMClient
from ..services.retrieval import RetrievalClient
from ..sync import SyncPipeline
from .incidents import (
    CloseIncident,
    CreateIncident,
    GetIncident,
    ResolveIncident,
    SearchIncidentsByStatus,
    SearchMyIncidents,
    UpdateIncident,
)
from .similar import SearchSimilarIncidents
from .sync import ForceSync, SyncAndIngest


def build_capabilities(
    lifecycle: IncidentLifecycleManager,
    pipeline: SyncPipeline,
    retrieval: RetrievalClient,
    llm: LLMClient,
    ingestion: Optional[IngestionClient] = None,
) -> List[Capability]:
    return [
        SearchSimilarIncidents(retrieval, llm),
        GetIncident(lifecycle),
        CreateIncident(lifecycle),
        SearchMyIncidents(lifecycle),
        SearchIncidentsByStatus(lifecycle),
        UpdateIncident(lifecycle),
        ResolveIncident(lifecycle),
        CloseIncident(lifecycle),
        ForceSync(pipeline),
        SyncAndIngest(pipeline, ingestion),
    ]
