"""
FastAPI application for the listing pipeline API.

Read API for risk decisions, admin-gated scoring and ETL triggers.
Production deployment configuration via environment variables.
"""

import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from core.audit import ActorType, AuditActions
from core.inventory import CorruptRecordError, ListingNotFoundError
from core.pipeline import PipelineServices
from web.admin_auth import (
    AdminIdentity,
    get_app_services,
    get_current_admin,
    require_admin,
)
from web.admin_routes import router as admin_router


logger = logging.getLogger(__name__)

# =============================================================================
# Environment Configuration
# =============================================================================

# Production mode detection
IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

# CORS configuration - locked down for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]

VERSION = "0.1.0"


# =============================================================================
# Request Models
# =============================================================================

class TriggerSyncRequest(BaseModel):
    """Request body for a manual ETL run."""
    limit: int = Field(default=50, ge=1, le=200)


class RetryErrorsRequest(BaseModel):
    """Request body for requeueing failed URLs."""
    limit: int = Field(default=20, ge=1, le=100)


def create_app(services: Optional[PipelineServices] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Pipeline services to serve; resolved lazily from the
            process singleton when omitted.
    """
    app = FastAPI(
        title="Listing Pipeline",
        description="Link-out listing ingestion and risk review API",
        version=VERSION,
        # Production settings: disable docs/redoc for private deployment
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
    )
    app.state.services = services

    # CORS middleware - locked down for production
    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.include_router(admin_router)

    @app.get("/api/health")
    def health():
        """Health check endpoint. No IO."""
        return {
            "status": "healthy",
            "version": VERSION,
            "environment": "production" if IS_PRODUCTION else "development",
        }

    # ==========================================================================
    # Risk
    # ==========================================================================

    @app.get("/api/risk/status")
    def risk_status(services: PipelineServices = Depends(get_app_services)):
        """Whether automated risk scoring is switched on."""
        return {"enabled": services.scorer.enabled}

    @app.post("/api/risk/fingerprint/{listing_id}")
    def compute_fingerprint(
        listing_id: str,
        admin: AdminIdentity = Depends(require_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Recompute the fingerprint for a listing."""
        try:
            fingerprint = services.fingerprinter.compute_fingerprint(listing_id)
        except ListingNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        return {
            "listing_id": fingerprint.listing_id,
            "fingerprint_hash": fingerprint.fingerprint_hash,
            "photo_hashes": list(fingerprint.photo_hashes),
            "geo_cell": fingerprint.geo_cell,
            "norm_fields": fingerprint.norm_fields,
        }

    @app.post("/api/risk/score/{listing_id}")
    def score_listing(
        listing_id: str,
        admin: AdminIdentity = Depends(require_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Score a listing. Reports a skip when scoring is disabled."""
        if not services.scorer.enabled:
            return {"skipped": True, "reason": "Risk scoring is disabled", "status": "ok"}

        try:
            assessment = services.scorer.score_listing(listing_id)
        except ListingNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except CorruptRecordError as e:
            logger.error("Cannot score listing %s: %s", listing_id, e)
            raise HTTPException(status_code=500, detail=str(e))

        services.audit_log.record(
            actor_type=ActorType.USER,
            actor_id=admin.admin_id,
            action=AuditActions.RISK_SCORED,
            entity="listing",
            entity_id=listing_id,
            payload={"risk_score": assessment.risk_score, "status": assessment.status.value},
        )
        return assessment.to_dict()

    @app.get("/api/risk/{listing_id}")
    def get_risk(
        listing_id: str,
        admin: Optional[AdminIdentity] = Depends(get_current_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Risk decision for a listing; reasons and score are admin-only."""
        assessment = services.scorer.get_risk_status(listing_id)
        if assessment is None:
            raise HTTPException(status_code=404, detail="No risk score for listing")

        if admin is not None:
            return assessment.to_dict()
        return {
            "risk_level": assessment.risk_level.value,
            "status": assessment.status.value,
        }

    # ==========================================================================
    # ETL
    # ==========================================================================

    @app.get("/api/etl/stats")
    def etl_stats(
        admin: AdminIdentity = Depends(require_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Queue counts, listing counts and recent failures."""
        return services.pipeline.get_stats()

    @app.post("/api/etl/trigger-sync")
    def trigger_sync(
        body: TriggerSyncRequest = TriggerSyncRequest(),
        admin: AdminIdentity = Depends(require_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Run one ETL batch synchronously."""
        logger.info("ETL run triggered by %s (limit=%d)", admin.admin_id, body.limit)
        stats = services.pipeline.run_batch(limit=body.limit)
        return {"success": True, "stats": stats.to_dict()}

    @app.post("/api/etl/retry-errors")
    def retry_errors(
        body: RetryErrorsRequest = RetryErrorsRequest(),
        admin: AdminIdentity = Depends(require_admin),
        services: PipelineServices = Depends(get_app_services),
    ):
        """Requeue failed URLs that still have retries left."""
        count = services.pipeline.retry_errors(limit=body.limit)
        return {"success": True, "requeued": count}

    return app


# Create app instance for uvicorn
app = create_app()
