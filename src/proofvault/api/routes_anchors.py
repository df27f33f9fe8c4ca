from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from proofvault.api.deps import get_services
from proofvault.bootstrap import Services
from proofvault.db.models import Anchor

router = APIRouter(prefix="/api/anchors", tags=["anchors"])


class RetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    anchor_id: str = Field(alias="anchorId", min_length=1)


def _with_explorer(services: Services, anchor: Anchor) -> Dict[str, Any]:
    return {**anchor.to_dict(), "explorer_url": services.anchors.explorer_url(anchor)}


@router.get("/pending")
async def pending_anchors(limit: int = 100, services: Services = Depends(get_services)) -> Dict[str, Any]:
    anchors = await services.anchors.pending(limit=max(1, min(limit, 500)))
    return {
        "success": True,
        "anchors": [anchor.to_dict() for anchor in anchors],
        "count": len(anchors),
    }


@router.get("/stats")
async def anchor_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {"success": True, "stats": await services.anchors.stats()}


@router.get("/tx/{tx_id}")
async def anchor_by_tx(tx_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    anchor = await services.anchors.get_by_tx(tx_id)
    return {"success": True, "anchor": _with_explorer(services, anchor)}


@router.post("/retry", status_code=202)
async def retry_anchor(body: RetryRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    anchor = await services.anchors.retry(body.anchor_id)
    return {
        "success": True,
        "message": "Anchor retry queued",
        "anchor": anchor.to_dict(),
    }


@router.get("/{anchor_id}")
async def anchor_detail(anchor_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    anchor = await services.anchors.get(anchor_id)
    return {"success": True, "anchor": _with_explorer(services, anchor)}
