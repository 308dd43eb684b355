"""
Credit API routes - balance, packages and package purchases
"""
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import get_current_user
from .db.engine import get_db
from .db.models.user import User
from .services.billing_gateway import BillingGateway, get_gateway
from .services.credit_service import CreditService
from .services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["credits"])


class PurchaseCreditsRequest(BaseModel):
    package_id: int = Field(..., ge=1)


@router.get("/balance")
async def get_balance(
    include_transactions: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Balance, lifetime totals and spending analytics"""
    return CreditService(db).get_balance(current_user, include_transactions=include_transactions, limit=limit)


@router.get("/packages")
async def list_packages(db: Session = Depends(get_db)):
    """Active credit packages"""
    return {"packages": CreditService(db).list_packages()}


@router.post("/purchase")
async def purchase_credits(
    request: PurchaseCreditsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    """Start a card payment for a credit package; credits land when the payment webhook arrives"""
    return PaymentService(db, gateway).create_credit_purchase(current_user, request.package_id)
