"""
Billing API routes - Subscription checkout, portal and subscription webhooks
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request, Header
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional
import json
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models.user import User
from .services.billing_gateway import BillingGateway, get_gateway
from .services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to start a subscription checkout"""
    tier: str = Field(..., description="Subscription tier: basic or premium")
    interval: str = Field("monthly", description="Billing interval: monthly or yearly")


def parse_webhook(payload: bytes) -> dict:
    """Decode a verified webhook body"""
    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")
    if not isinstance(event, dict) or not event.get("type"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")
    return event


@router.post("/create-checkout")
async def create_checkout(
    request: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    """Create a Stripe Checkout session; the subscription activates via webhook"""
    return BillingService(db, gateway).create_checkout(
        current_user, request.tier.lower(), request.interval.lower()
    )


@router.post("/create-portal")
async def create_portal(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway)
):
    return BillingService(db, gateway).create_portal(current_user)


@router.get("/subscription")
async def get_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return BillingService(db).get_subscription(current_user)


@router.post("/webhook")
async def subscription_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature")
):
    """
    Handle Stripe subscription webhooks

    Events are processed at most once (billing_events replay protection).
    """
    payload = await request.body()

    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")

    if not gateway.verify_webhook_signature(payload, stripe_signature):
        logger.warning("Subscription webhook signature verification failed")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    event = parse_webhook(payload)
    result = BillingService(db, gateway).handle_subscription_event(event)
    logger.info(f"Subscription webhook {event.get('id')} ({result['event_type']}): processed={result['processed']}")
    return {"received": True, "processed": result["processed"]}
