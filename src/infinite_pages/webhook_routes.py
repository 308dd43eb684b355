"""
Payments webhook - one-off payments, transfers and Connect account updates
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request, Header
from sqlalchemy.orm import Session
from typing import Optional
import logging

from .billing_routes import parse_webhook
from .db.engine import get_db
from .services.billing_gateway import BillingGateway, get_gateway
from .services.billing_service import BillingService, SUBSCRIPTION_EVENTS
from .services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _signature_valid(gateway: BillingGateway, payload: bytes, signature: str) -> bool:
    """Platform events use the webhook secret; Connect events may use their own"""
    if gateway.verify_webhook_signature(payload, signature):
        return True
    connect_secret = getattr(gateway, "connect_webhook_secret", None)
    if connect_secret and connect_secret != getattr(gateway, "webhook_secret", None):
        return gateway.verify_webhook_signature(payload, signature, secret=connect_secret)
    return False


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature")
):
    payload = await request.body()

    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")

    if not _signature_valid(gateway, payload, stripe_signature):
        logger.warning("Payments webhook signature verification failed")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    event = parse_webhook(payload)
    if event["type"] in SUBSCRIPTION_EVENTS:
        result = BillingService(db, gateway).handle_subscription_event(event)
    else:
        result = PaymentService(db, gateway).handle_event(event)

    logger.info(f"Payments webhook {event.get('id')} ({result['event_type']}): processed={result['processed']}")
    return {"received": True, "processed": result["processed"]}
