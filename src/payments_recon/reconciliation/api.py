"""API endpoints for reconciliation operations."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import ReconciliationPolicy, get_run_rate_limit
from .models import ReconciliationAlert, ReconciliationResult, ReconciliationStats
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])

# Manual runs are throttled per client
limiter = Limiter(key_func=get_remote_address)


def get_reconciliation_service() -> ReconciliationService:
    """Dependency providing a service bound to the initialized database."""
    from ..database import get_async_session_factory

    return ReconciliationService.from_session_factory(
        get_async_session_factory(),
        policy=ReconciliationPolicy.from_env(),
    )


class ResolveAlertBody(BaseModel):
    """Request body for resolving an alert."""
    reason: Optional[str] = Field(None, max_length=1000, description="Why the alert was resolved")


class ResolveAlertResponse(BaseModel):
    alert_id: str
    resolved: bool


class CleanupResponse(BaseModel):
    resolved_count: int


@router.post("/runs", response_model=ReconciliationResult)
@limiter.limit(get_run_rate_limit())
async def trigger_reconciliation_run(
    request: Request,
    organization_id: Optional[str] = Query(default=None, description="Restrict the run to one tenant"),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Run reconciliation now.

    Returns the alerts emitted by the run and a stats snapshot. Detector or
    alert write failures are listed under ``failures`` and do not fail the call.
    """
    logger.info(f"Manual reconciliation run requested for {organization_id or 'all organizations'}")
    return await service.run_reconciliation(organization_id=organization_id)


@router.get("/alerts", response_model=List[ReconciliationAlert])
async def list_active_alerts(
    organization_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """List unresolved alerts, highest severity and newest first."""
    return await service.get_active_alerts(organization_id, limit)


@router.post("/alerts/cleanup", response_model=CleanupResponse)
async def cleanup_stale_alerts(
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Auto-resolve unresolved alerts older than the retention window."""
    resolved_count = await service.cleanup_stale_alerts()
    return CleanupResponse(resolved_count=resolved_count)


@router.post("/alerts/{alert_id}/resolve", response_model=ResolveAlertResponse)
async def resolve_alert(
    alert_id: str,
    body: Optional[ResolveAlertBody] = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Resolve an active alert, optionally recording a reason."""
    reason = body.reason if body else None
    resolved = await service.resolve_alert(alert_id, reason)
    if not resolved:
        raise HTTPException(status_code=404, detail=f"No active alert {alert_id} could be resolved")
    return ResolveAlertResponse(alert_id=alert_id, resolved=True)


@router.get("/stats", response_model=ReconciliationStats)
async def reconciliation_stats(
    organization_id: Optional[str] = Query(default=None),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Unresolved alert counts per type and the projected next run."""
    return await service.get_reconciliation_stats(organization_id)


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for reconciliation service."""
    return {"status": "healthy", "service": "reconciliation"}
