"""
Payment Service - One-off Stripe payments and the payments webhook
Handles credit package purchases, direct story purchases and Connect account events
"""
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
import math
import logging

from sqlalchemy.orm import Session

from ..db.models.user import User
from ..db.models.story import Story, StoryPurchase, PurchaseType
from ..db.models.credits import Payment, PaymentStatus, TransactionType
from ..db.models.creator import Payout, PayoutStatus, EarningSource
from ..exceptions import NotFoundError, PaymentProviderError
from .billing_gateway import BillingGateway
from .billing_service import ensure_customer, record_billing_event
from .credit_service import CreditService
from .creator_service import CreatorService, record_creator_earning
from .plan_policy import CREATOR_REVENUE_SHARE

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for one-off payments"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self.gateway = gateway

    def create_credit_purchase(self, user: User, package_id: int) -> Dict[str, Any]:
        """
        Start a PaymentIntent for a credit package

        Raises:
            NotFoundError: package missing or inactive
        """
        package = CreditService(self.db).get_package(package_id)
        if not package:
            raise NotFoundError("Credit package not found")

        customer_id = ensure_customer(self.db, self.gateway, user)
        amount_cents = int((Decimal(package.price_usd) * 100).quantize(Decimal("1")))
        intent = self.gateway.create_payment_intent(
            amount_cents=amount_cents,
            currency="usd",
            customer_id=customer_id,
            metadata={
                "user_id": str(user.id),
                "package_id": str(package.id),
                "credits": str(package.credits_amount),
                "bonus_credits": str(package.bonus_credits or 0),
                "type": "credit_purchase",
            },
        )

        self.db.add(Payment(
            user_id=user.id,
            stripe_payment_intent_id=intent["payment_intent_id"],
            stripe_customer_id=customer_id,
            package_id=package.id,
            amount_usd=package.price_usd,
            credits_purchased=package.credits_amount,
            bonus_credits=package.bonus_credits or 0,
            status=PaymentStatus.PENDING.value,
        ))
        self.db.commit()

        logger.info(f"Created credit purchase intent for user {user.id}, package {package.id}")
        return {
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["payment_intent_id"],
        }

    # Webhook

    def handle_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a payments webhook event

        Returns:
            {"processed": bool, "event_type": str}
        """
        event_type = event.get("type", "")
        if not record_billing_event(self.db, "stripe", event):
            return {"processed": False, "event_type": event_type, "reason": "duplicate"}

        data = event.get("data", {}).get("object", {}) or {}

        handlers = {
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "transfer.created": self._handle_transfer_created,
            "account.updated": self._handle_account_updated,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled payment webhook event type: {event_type}")
            self.db.commit()
            return {"processed": False, "event_type": event_type}

        processed = handler(data)
        self.db.commit()
        return {"processed": processed, "event_type": event_type}

    def _payment_for_intent(self, intent: Dict[str, Any]) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.stripe_payment_intent_id == intent.get("id")
        ).first()

    def _handle_payment_succeeded(self, intent: Dict[str, Any]) -> bool:
        metadata = intent.get("metadata") or {}
        payment = self._payment_for_intent(intent)

        if payment and payment.status == PaymentStatus.SUCCEEDED.value:
            logger.info(f"Payment {payment.id} already marked succeeded")
            return False

        if metadata.get("story_id") and metadata.get("creator_id"):
            return self._handle_story_payment(intent, metadata, payment)
        return self._handle_credit_payment(intent, metadata, payment)

    def _handle_credit_payment(self, intent: Dict[str, Any], metadata: Dict[str, Any], payment: Optional[Payment]) -> bool:
        user_id = payment.user_id if payment else metadata.get("user_id")
        user = self.db.query(User).filter(User.id == int(user_id)).first() if user_id else None
        if not user:
            logger.warning(f"Payment intent {intent.get('id')} has no matching user")
            return False

        if payment:
            credits = payment.credits_purchased
            bonus = payment.bonus_credits
        else:
            credits = int(metadata.get("credits", 0))
            bonus = int(metadata.get("bonus_credits", 0))
            payment = Payment(
                user_id=user.id,
                stripe_payment_intent_id=intent.get("id"),
                stripe_customer_id=intent.get("customer"),
                package_id=int(metadata["package_id"]) if metadata.get("package_id") else None,
                amount_usd=Decimal(intent.get("amount", 0)) / 100,
                credits_purchased=credits,
                bonus_credits=bonus,
            )
            self.db.add(payment)

        payment.status = PaymentStatus.SUCCEEDED.value
        payment.processed_at = datetime.utcnow()

        total = credits + bonus
        if total > 0:
            CreditService(self.db).add_credits(
                user,
                total,
                TransactionType.PURCHASE,
                description=f"Purchased {credits} credits" + (f" + {bonus} bonus" if bonus else ""),
                reference_id=intent.get("id"),
                reference_type="payment_intent",
                metadata={"package_id": payment.package_id, "credits": credits, "bonus_credits": bonus},
                commit=False,
            )
        logger.info(f"Credited {total} purchased credits to user {user.id}")
        return True

    def _handle_story_payment(self, intent: Dict[str, Any], metadata: Dict[str, Any], payment: Optional[Payment]) -> bool:
        story = self.db.query(Story).filter(Story.id == int(metadata["story_id"])).first()
        creator = self.db.query(User).filter(User.id == int(metadata["creator_id"])).first()
        reader_id = payment.user_id if payment else metadata.get("user_id")
        reader = self.db.query(User).filter(User.id == int(reader_id)).first() if reader_id else None
        if not story or not creator or not reader:
            logger.warning(f"Story payment {intent.get('id')} references missing story, creator or reader")
            return False

        amount_cents = int(intent.get("amount_received") or intent.get("amount") or 0)
        amount_usd = Decimal(amount_cents) / 100

        if payment is None:
            payment = Payment(
                user_id=reader.id,
                stripe_payment_intent_id=intent.get("id"),
                stripe_customer_id=intent.get("customer"),
                story_id=story.id,
                amount_usd=amount_usd,
            )
            self.db.add(payment)
        payment.status = PaymentStatus.SUCCEEDED.value
        payment.processed_at = datetime.utcnow()

        share_cents = math.floor(amount_cents * CREATOR_REVENUE_SHARE)
        share_usd = Decimal(share_cents) / 100

        transfer_id = None
        if creator.connect_ready and share_cents > 0:
            try:
                transfer = self.gateway.create_transfer(
                    amount_cents=share_cents,
                    destination=creator.stripe_connect_account_id,
                    metadata={
                        "creator_id": str(creator.id),
                        "story_id": str(story.id),
                        "payment_intent_id": str(intent.get("id")),
                    },
                    description=f"Story sale: {story.title}",
                )
                transfer_id = transfer["transfer_id"]
            except PaymentProviderError as e:
                # Earning stays queued for the next payout
                logger.error(f"Creator transfer for story {story.id} failed, queuing earning: {e.message}")

        record_creator_earning(
            self.db,
            creator,
            share_usd,
            story_id=story.id,
            reader_id=reader.id,
            source=EarningSource.STRIPE,
            stripe_transfer_id=transfer_id,
        )

        chapter_numbers = [ch.chapter_number for ch in story.chapters]
        self.db.add(StoryPurchase(
            user_id=reader.id,
            story_id=story.id,
            creator_id=creator.id,
            purchase_type=PurchaseType.PREMIUM_UNLOCK.value,
            chapters_unlocked=chapter_numbers,
            credits_spent=0,
            amount_usd=amount_usd,
            stripe_payment_intent_id=intent.get("id"),
        ))
        logger.info(
            f"Story {story.id} purchased by user {reader.id} for ${amount_usd}; "
            f"creator {creator.id} earns ${share_usd} ({'transferred' if transfer_id else 'queued'})"
        )
        return True

    def _handle_payment_failed(self, intent: Dict[str, Any]) -> bool:
        payment = self._payment_for_intent(intent)
        if not payment:
            logger.warning(f"Failed payment intent {intent.get('id')} has no payment record")
            return False

        error = intent.get("last_payment_error") or {}
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = error.get("message") or "Payment failed"
        payment.processed_at = datetime.utcnow()
        logger.info(f"Payment {payment.id} failed: {payment.failure_reason}")
        return True

    def _handle_transfer_created(self, transfer: Dict[str, Any]) -> bool:
        payout = self.db.query(Payout).filter(Payout.stripe_transfer_id == transfer.get("id")).first()
        if not payout:
            return False
        payout.status = PayoutStatus.PAID.value
        payout.processed_at = datetime.utcnow()
        logger.info(f"Payout {payout.id} confirmed by transfer {transfer.get('id')}")
        return True

    def _handle_account_updated(self, account: Dict[str, Any]) -> bool:
        user = self.db.query(User).filter(User.stripe_connect_account_id == account.get("id")).first()
        if not user:
            logger.warning(f"Connect account {account.get('id')} has no matching creator")
            return False

        creators = CreatorService(self.db, self.gateway)
        became_active = creators.apply_account_update(
            user,
            bool(account.get("charges_enabled")),
            bool(account.get("payouts_enabled")),
            bool(account.get("details_submitted")),
        )
        logger.info(f"Creator {user.id} Connect account status: {user.stripe_account_status}")

        if became_active:
            self.db.commit()
            try:
                payout = creators.process_queued_earnings(user)
            except PaymentProviderError as e:
                # Earnings stay pending for the monthly payout batch
                logger.error(f"Queued earnings payout for creator {user.id} failed: {e.message}")
                payout = None
            if payout:
                logger.info(f"Paid queued earnings for creator {user.id} on account activation")
        return True
