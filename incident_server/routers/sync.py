"""
File: routers/sync.py
Purpose: On-demand trigger for the corpus sync pipeline.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_services, require_api_key
from ..schemas.sync import SyncResponse
from ..wiring import Services

log = logging.getLogger("incident-server.routers.sync")

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/sync", response_model=SyncResponse)
async def run_sync(services: Services = Depends(get_services)) -> SyncResponse:
    """Run one sync pass and return its aggregate result."""
    try:
        result = await services.pipeline.run()
    except Exception as e:
        log.error(f"Sync failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return SyncResponse(**result.to_dict())
