"""
Billing Service - Manages subscriptions and subscription webhooks
"""
from typing import Optional, Dict, Any
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import config
from ..db.models.user import User, SubscriptionTier, SubscriptionStatus
from ..db.models.billing import BillingEvent
from ..exceptions import InfinitePagesError, NotFoundError
from .billing_gateway import BillingGateway

logger = logging.getLogger(__name__)


# Stripe subscription status -> profile status
STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING.value,
    "active": SubscriptionStatus.ACTIVE.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELED.value,
    "incomplete": SubscriptionStatus.INACTIVE.value,
    "incomplete_expired": SubscriptionStatus.INACTIVE.value,
    "paused": SubscriptionStatus.INACTIVE.value,
}

SUBSCRIPTION_EVENTS = {
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


def ensure_customer(db: Session, gateway: BillingGateway, user: User) -> str:
    """Return the user's Stripe customer id, creating the customer on first use"""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = gateway.create_customer(
        email=user.email,
        name=user.full_name or user.display_name,
        metadata={"user_id": str(user.id)},
    )
    user.stripe_customer_id = customer["customer_id"]
    db.commit()
    db.refresh(user)
    logger.info(f"Created Stripe customer for user {user.id}")
    return user.stripe_customer_id


def record_billing_event(db: Session, provider: str, event: Dict[str, Any]) -> bool:
    """
    Store a webhook event for replay protection

    Returns:
        False when the event id was already processed
    """
    event_id = event.get("id")
    if not event_id:
        raise InfinitePagesError("Webhook event is missing an id", code="INVALID_WEBHOOK")

    existing = db.query(BillingEvent).filter(BillingEvent.provider_event_id == event_id).first()
    if existing:
        logger.warning(f"Duplicate webhook event {event_id} - ignoring")
        return False

    db.add(BillingEvent(
        provider=provider,
        event_type=event.get("type", "unknown"),
        provider_event_id=event_id,
        payload_json=event,
    ))
    try:
        db.flush()
    except IntegrityError:
        # Concurrent delivery of the same event
        db.rollback()
        logger.warning(f"Duplicate webhook event {event_id} (concurrent) - ignoring")
        return False
    return True


class BillingService:
    """Service for managing subscriptions"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        """
        Initialize billing service

        Args:
            db: Database session
            gateway: Billing gateway (required for provider calls)
        """
        self.db = db
        self.gateway = gateway

    def create_checkout(self, user: User, tier: str, interval: str = "monthly") -> Dict[str, Any]:
        """Start a Stripe Checkout session for a subscription"""
        if tier not in [t.value for t in SubscriptionTier]:
            raise InfinitePagesError(f"Invalid tier: {tier}", code="INVALID_TIER")
        if interval not in ("monthly", "yearly"):
            raise InfinitePagesError(f"Invalid billing interval: {interval}", code="INVALID_INTERVAL")

        price_id = config.stripe_price_id(tier, interval)
        if not price_id:
            raise InfinitePagesError(f"No price configured for {tier}/{interval}", code="PRICE_NOT_CONFIGURED")

        customer_id = ensure_customer(self.db, self.gateway, user)
        session = self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=f"{config.SITE_URL}/dashboard?upgraded=true",
            cancel_url=f"{config.SITE_URL}/pricing",
            metadata={"user_id": str(user.id), "tier": tier},
        )
        logger.info(f"Created checkout session for user {user.id}, tier {tier} ({interval})")
        return {"session_id": session["session_id"], "url": session["url"]}

    def create_portal(self, user: User) -> Dict[str, Any]:
        """Billing portal for managing an existing subscription"""
        if not user.stripe_customer_id:
            raise NotFoundError("No billing account found for this user")

        session = self.gateway.create_portal_session(
            customer_id=user.stripe_customer_id,
            return_url=f"{config.SITE_URL}/dashboard",
        )
        return {"url": session["url"]}

    def get_subscription(self, user: User) -> Dict[str, Any]:
        """Current subscription state from the profile"""
        return {
            "tier": user.subscription_tier,
            "status": user.subscription_status,
            "current_period_end": user.current_period_end.isoformat() if user.current_period_end else None,
            "trial_ends_at": user.trial_ends_at.isoformat() if user.trial_ends_at else None,
            "has_billing_account": bool(user.stripe_customer_id),
            "stripe_subscription_id": user.stripe_subscription_id,
        }

    def _find_user(self, customer_id: Optional[str] = None, user_id: Optional[str] = None) -> Optional[User]:
        if user_id:
            try:
                user = self.db.query(User).filter(User.id == int(user_id)).first()
            except (TypeError, ValueError):
                user = None
            if user:
                return user
        if customer_id:
            return self.db.query(User).filter(User.stripe_customer_id == customer_id).first()
        return None

    def handle_subscription_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a subscription webhook event to the user's profile

        Returns:
            {"processed": bool, "event_type": str}
        """
        event_type = event.get("type", "")
        if not record_billing_event(self.db, "stripe", event):
            return {"processed": False, "event_type": event_type, "reason": "duplicate"}

        data = event.get("data", {}).get("object", {}) or {}

        if event_type == "checkout.session.completed":
            processed = self._handle_checkout_completed(data)
        elif event_type == "customer.subscription.updated":
            processed = self._handle_subscription_updated(data)
        elif event_type == "customer.subscription.deleted":
            processed = self._handle_subscription_deleted(data)
        else:
            logger.info(f"Unhandled billing event type: {event_type}")
            processed = False

        self.db.commit()
        return {"processed": processed, "event_type": event_type}

    def _handle_checkout_completed(self, session: Dict[str, Any]) -> bool:
        metadata = session.get("metadata") or {}
        user = self._find_user(customer_id=session.get("customer"), user_id=metadata.get("user_id"))
        if not user:
            logger.warning(f"Checkout session {session.get('id')} has no matching user")
            return False

        tier = metadata.get("tier")
        if tier in [t.value for t in SubscriptionTier]:
            user.subscription_tier = tier
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        user.stripe_customer_id = session.get("customer") or user.stripe_customer_id

        subscription_id = session.get("subscription")
        if subscription_id:
            user.stripe_subscription_id = subscription_id
            if self.gateway is not None:
                subscription = self.gateway.retrieve_subscription(subscription_id)
                user.current_period_end = subscription.get("current_period_end")

        user.updated_at = datetime.utcnow()
        logger.info(f"User {user.id} subscribed to {user.subscription_tier}")
        return True

    def _handle_subscription_updated(self, subscription: Dict[str, Any]) -> bool:
        user = self._find_user(
            customer_id=subscription.get("customer"),
            user_id=(subscription.get("metadata") or {}).get("user_id"),
        )
        if not user:
            logger.warning(f"Subscription {subscription.get('id')} has no matching user")
            return False

        stripe_status = subscription.get("status")
        user.subscription_status = STRIPE_STATUS_MAP.get(stripe_status, user.subscription_status)
        user.stripe_subscription_id = subscription.get("id") or user.stripe_subscription_id

        items = (subscription.get("items") or {}).get("data") or []
        period_end = subscription.get("current_period_end") or (
            items[0].get("current_period_end") if items else None
        )
        if period_end:
            user.current_period_end = datetime.utcfromtimestamp(period_end)

        if items:
            price_id = (items[0].get("price") or {}).get("id")
            tier = config.tier_for_price_id(price_id) if price_id else None
            if tier:
                user.subscription_tier = tier

        user.updated_at = datetime.utcnow()
        logger.info(f"User {user.id} subscription updated: {user.subscription_tier}/{user.subscription_status}")
        return True

    def _handle_subscription_deleted(self, subscription: Dict[str, Any]) -> bool:
        user = self._find_user(
            customer_id=subscription.get("customer"),
            user_id=(subscription.get("metadata") or {}).get("user_id"),
        )
        if not user:
            logger.warning(f"Deleted subscription {subscription.get('id')} has no matching user")
            return False

        user.subscription_status = SubscriptionStatus.CANCELED.value
        user.current_period_end = None
        user.updated_at = datetime.utcnow()
        logger.info(f"User {user.id} subscription canceled")
        return True
