"""
Admin API routes - credit maintenance, creator payouts, request-flow dashboards and cache control
All endpoints require is_admin
"""
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import require_admin
from .db.engine import get_db
from .db.models.user import User
from .services.billing_gateway import BillingGateway, get_gateway
from .services.llm_cache import get_llm_cache
from .services.maintenance_service import MaintenanceService
from .services.payout_service import PayoutService
from .services.plan_policy import MINIMUM_PAYOUT_USD
from .services.request_tracking_service import RequestTrackingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class DistributeCreditsRequest(BaseModel):
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2020, le=2100)
    dry_run: bool = False


class RevertCreditsRequest(BaseModel):
    dry_run: bool = False


class MaintenanceRequest(BaseModel):
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2020, le=2100)
    dry_run: bool = False


class ProcessPayoutsRequest(BaseModel):
    batch_date: Optional[date] = None
    dry_run: bool = False
    minimum_payout: Decimal = Field(MINIMUM_PAYOUT_USD, gt=0)


# Monthly credit maintenance

@router.post("/distribute-credits")
async def distribute_credits(
    request: DistributeCreditsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Grant monthly subscriber credits (with activity bonus)"""
    logger.info(f"Admin {admin.id} triggered credit distribution (dry_run={request.dry_run})")
    return MaintenanceService(db).distribute_monthly_credits(request.month, request.year, request.dry_run)


@router.get("/distribute-credits")
async def distribution_history(
    limit: int = Query(12, ge=1, le=60),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"distribution_history": MaintenanceService(db).distribution_history(limit)}


@router.post("/revert-excess-credits")
async def revert_excess_credits(
    request: RevertCreditsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Cap Basic balances at the tier maximum"""
    logger.info(f"Admin {admin.id} triggered excess credit reversion (dry_run={request.dry_run})")
    return MaintenanceService(db).revert_excess_credits(request.dry_run)


@router.get("/revert-excess-credits")
async def reversion_history(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return MaintenanceService(db).reversion_history()


@router.post("/monthly-maintenance")
async def monthly_maintenance(
    request: MaintenanceRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    logger.info(f"Admin {admin.id} triggered monthly maintenance (dry_run={request.dry_run})")
    return MaintenanceService(db).run_monthly_maintenance(request.dry_run, request.month, request.year)


@router.get("/monthly-maintenance")
async def maintenance_history(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    history = MaintenanceService(db).maintenance_history(limit=50)
    return {
        "maintenance_history": history,
        "summary": {
            "total_executions": len(history),
            "last_execution": history[0]["created_at"] if history else None,
            "successful_executions": sum(
                1 for entry in history if not (entry["details"] or {}).get("errors")
            ),
        },
    }


# Creator payouts

@router.post("/process-payouts")
async def process_payouts(
    request: ProcessPayoutsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    logger.info(f"Admin {admin.id} triggered payout batch (dry_run={request.dry_run})")
    return PayoutService(db, gateway).process_batch(
        batch_date=request.batch_date,
        dry_run=request.dry_run,
        minimum_payout=request.minimum_payout,
    )


@router.get("/process-payouts")
async def payout_batches(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"batches": PayoutService(db).list_batches()}


# Request-flow dashboards

@router.get("/request-flow/stats")
async def request_flow_stats(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return RequestTrackingService(db).stats()


@router.get("/request-flow/recent")
async def request_flow_recent(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    requests = RequestTrackingService(db).recent(limit=limit, offset=offset)
    return {"requests": requests, "limit": limit, "offset": offset}


@router.get("/request-flow/health")
async def request_flow_health(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return {"integrations": RequestTrackingService(db).integration_health()}


# LLM cache

@router.get("/cache/analytics")
async def cache_analytics(admin: User = Depends(require_admin)):
    return get_llm_cache().get_stats()


@router.post("/cache/clear")
async def clear_cache(admin: User = Depends(require_admin)):
    cache = get_llm_cache()
    cleared = cache.get_stats()["size"]
    cache.clear()
    logger.info(f"Admin {admin.id} cleared the LLM cache ({cleared} entries)")
    return {"cleared": cleared, "message": "LLM cache cleared"}
