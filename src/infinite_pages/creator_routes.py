"""
Creator API routes - earnings, payouts and Stripe Connect onboarding
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import get_current_user, require_creator
from .db.engine import get_db
from .db.models.user import User
from .services.billing_gateway import BillingGateway, get_gateway
from .services.creator_service import CreatorService, EARNINGS_PERIODS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/creators", tags=["creators"])


class OnboardRequest(BaseModel):
    country: str = Field("US", min_length=2, max_length=2)
    business_type: str = Field("individual", pattern="^(individual|company)$")


@router.get("/earnings")
async def get_earnings(
    period: str = Query("current_month"),
    include_transactions: bool = Query(False),
    include_trends: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_creator),
    db: Session = Depends(get_db)
):
    """Earnings summary, per-story performance and optional trends"""
    if period not in EARNINGS_PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "INVALID_PERIOD",
                "message": f"Invalid period: {period}",
                "allowed": list(EARNINGS_PERIODS),
            }
        )
    return CreatorService(db).get_earnings(
        current_user,
        period=period,
        include_transactions=include_transactions,
        include_trends=include_trends,
        limit=limit,
    )


@router.get("/payout")
async def get_payout_history(
    current_user: User = Depends(require_creator),
    db: Session = Depends(get_db)
):
    return CreatorService(db).get_payout_history(current_user)


@router.post("/payout")
async def request_payout(
    current_user: User = Depends(require_creator),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    """Transfer pending earnings to the creator's connected account"""
    return CreatorService(db, gateway).request_payout(current_user)


@router.post("/stripe/onboard")
async def start_onboarding(
    request: Optional[OnboardRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    request = request or OnboardRequest()
    return CreatorService(db, gateway).start_onboarding(
        current_user, country=request.country.upper(), business_type=request.business_type
    )


@router.get("/stripe/status")
async def get_connect_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    return CreatorService(db, gateway).get_connect_status(current_user)


@router.post("/stripe/refresh")
async def refresh_onboarding_link(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    return CreatorService(db, gateway).refresh_onboarding_link(current_user)
