"""
Admin Routes - Risk Review and Override

All routes under /api/admin/* require admin headers.
Non-authenticated callers receive 403 Forbidden.

Routes:
- POST /api/admin/risk/override - Apply an allow/hold/reject decision
- GET  /api/admin/risk/held     - Listings held or awaiting review
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.decisions import Decision
from core.inventory import ListingNotFoundError, RiskScoreNotFoundError
from core.models import RiskStatus
from core.pipeline import PipelineServices
from web.admin_auth import AdminIdentity, get_app_services, require_admin


# =============================================================================
# Router Setup
# =============================================================================

router = APIRouter(prefix="/api/admin", tags=["admin"])

HELD_STATUSES = {RiskStatus.HOLD, RiskStatus.REVIEW_REQUIRED}


class OverrideRequest(BaseModel):
    """Request body for an admin override."""
    listing_id: str = Field(..., min_length=1)
    decision: Decision
    notes: Optional[str] = Field(default=None, max_length=2000)


# =============================================================================
# Risk Review Routes
# =============================================================================


@router.post("/risk/override")
def override_risk(
    body: OverrideRequest,
    admin: AdminIdentity = Depends(require_admin),
    services: PipelineServices = Depends(get_app_services),
):
    """Apply an admin decision to a scored listing."""
    try:
        result = services.overrides.apply(
            body.listing_id,
            body.decision,
            admin_id=admin.admin_id,
            notes=body.notes,
        )
    except (ListingNotFoundError, RiskScoreNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        "listing_id": result.listing_id,
        "decision": result.decision.value,
        "final_status": result.final_status.value,
    }


@router.get("/risk/held")
def list_held(
    limit: int = 50,
    admin: AdminIdentity = Depends(require_admin),
    services: PipelineServices = Depends(get_app_services),
):
    """Listings whose risk status is hold or review_required, riskiest first."""
    items = []
    for score in services.inventory.list_risk_scores(HELD_STATUSES)[: max(limit, 0)]:
        listing = services.inventory.get_listing(score.listing_id)
        if listing is None:
            continue
        items.append({
            "listing_id": listing.id,
            "title": listing.title,
            "source_url": listing.source_url,
            "source_domain": listing.source_domain,
            "listing_status": listing.status.value,
            "risk_score": score.risk_score,
            "risk_level": score.risk_level.value,
            "status": score.status.value,
            "reasons": list(score.reasons),
            "updated_at": score.updated_at.isoformat(),
        })
    return {"count": len(items), "items": items}
