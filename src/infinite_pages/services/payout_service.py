"""
Payout Service - Monthly creator payout batches
"""
from typing import Optional, Dict, Any, List
from datetime import datetime, date
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from ..db.models.user import User
from ..db.models.creator import (
    CreatorEarning,
    Payout,
    PayoutStatus,
    MonthlyPayoutBatch,
    BatchStatus,
)
from ..exceptions import PayoutError, PaymentProviderError
from .billing_gateway import BillingGateway
from .plan_policy import MINIMUM_PAYOUT_USD, PAYOUT_PROCESSING_FEE_USD

logger = logging.getLogger(__name__)

MINIMUM_TRANSFER_USD = Decimal("1.00")
BATCH_HISTORY_LIMIT = 12


def _usd(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


class PayoutService:
    """Batch payouts to creators through Stripe Connect transfers"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self.gateway = gateway

    def _eligible_creators(self, minimum: Decimal) -> List[User]:
        return self.db.query(User).filter(
            User.is_creator == True,  # noqa: E712
            User.pending_payout_usd >= minimum,
        ).order_by(User.id).all()

    def process_batch(
        self,
        batch_date: Optional[date] = None,
        dry_run: bool = False,
        minimum_payout: Decimal = MINIMUM_PAYOUT_USD
    ) -> Dict[str, Any]:
        """
        Pay every creator whose pending earnings reach the minimum

        Raises:
            PayoutError: a batch already exists for the date (real runs only)
        """
        batch_date = batch_date or date.today()
        minimum_payout = _usd(minimum_payout)

        existing = self.db.query(MonthlyPayoutBatch).filter(MonthlyPayoutBatch.batch_date == batch_date).first()
        if existing and not dry_run:
            raise PayoutError(
                f"Payout batch for {batch_date.isoformat()} already exists",
                code="BATCH_EXISTS",
                details={"batch_id": existing.id, "status": existing.processing_status},
            )

        creators = self._eligible_creators(minimum_payout)

        if dry_run:
            eligible = [
                {
                    "creator_id": c.id,
                    "email": c.email,
                    "amount_usd": float(_usd(c.pending_payout_usd)),
                    "has_connect_account": bool(c.stripe_connect_account_id),
                    "connect_ready": c.connect_ready,
                }
                for c in creators
            ]
            return {
                "dry_run": True,
                "batch_date": batch_date.isoformat(),
                "minimum_payout": float(minimum_payout),
                "eligible_creators": eligible,
                "total_creators": len(eligible),
                "total_amount_usd": float(sum((_usd(c.pending_payout_usd) for c in creators), Decimal("0.00"))),
            }

        batch = MonthlyPayoutBatch(batch_date=batch_date, processing_status=BatchStatus.PROCESSING.value)
        self.db.add(batch)
        self.db.flush()

        paid = 0
        failed = 0
        total_paid = Decimal("0.00")
        results = []

        for creator in creators:
            amount = _usd(creator.pending_payout_usd)
            net = amount - PAYOUT_PROCESSING_FEE_USD
            payout = Payout(
                creator_id=creator.id,
                batch_id=batch.id,
                amount_usd=amount,
                fee_usd=PAYOUT_PROCESSING_FEE_USD,
                status=PayoutStatus.PROCESSING.value,
            )
            self.db.add(payout)
            self.db.flush()

            failure = None
            transfer_id = None
            if not creator.stripe_connect_account_id:
                failure = "Creator has no Stripe Connect account"
            elif net < MINIMUM_TRANSFER_USD:
                failure = f"Amount after fees (${net}) is below the minimum transfer"
            else:
                try:
                    transfer = self.gateway.create_transfer(
                        amount_cents=int(net * 100),
                        destination=creator.stripe_connect_account_id,
                        metadata={
                            "creator_id": str(creator.id),
                            "batch_id": str(batch.id),
                            "payout_id": str(payout.id),
                        },
                        description=f"Monthly creator payout {batch_date.isoformat()}",
                    )
                    transfer_id = transfer["transfer_id"]
                except PaymentProviderError as e:
                    failure = f"Transfer failed: {e.details.get('provider_message') or e.message}"

            if failure:
                payout.status = PayoutStatus.FAILED.value
                payout.failure_reason = failure
                failed += 1
                logger.warning(f"Batch {batch.id}: payout to creator {creator.id} failed: {failure}")
            else:
                earnings = self.db.query(CreatorEarning).filter(
                    CreatorEarning.creator_id == creator.id,
                    CreatorEarning.payout_id.is_(None),
                    CreatorEarning.stripe_transfer_id.is_(None),
                ).order_by(CreatorEarning.created_at).all()
                for earning in earnings:
                    earning.payout_id = payout.id

                payout.status = PayoutStatus.PAID.value
                payout.stripe_transfer_id = transfer_id
                payout.processed_at = datetime.utcnow()
                payout.earnings_count = len(earnings)
                if earnings:
                    payout.period_start = earnings[0].created_at
                    payout.period_end = earnings[-1].created_at

                creator.total_earnings_usd = _usd(creator.total_earnings_usd) + amount
                creator.pending_payout_usd = Decimal("0.00")
                paid += 1
                total_paid += amount

            results.append({
                "creator_id": creator.id,
                "payout_id": payout.id,
                "amount_usd": float(amount),
                "status": payout.status,
                "failure_reason": payout.failure_reason,
            })

        if failed == 0:
            batch.processing_status = BatchStatus.COMPLETED.value
        elif paid == 0:
            batch.processing_status = BatchStatus.FAILED.value
        else:
            batch.processing_status = BatchStatus.PARTIALLY_COMPLETED.value

        batch.total_creators_paid = paid
        batch.total_creators_failed = failed
        batch.total_amount_usd = total_paid
        batch.completed_at = datetime.utcnow()
        self.db.commit()

        logger.info(
            f"Payout batch {batch.id} ({batch_date.isoformat()}): {paid} paid, {failed} failed, ${total_paid}"
        )
        return {
            "dry_run": False,
            "batch_id": batch.id,
            "batch_date": batch_date.isoformat(),
            "status": batch.processing_status,
            "total_creators_paid": paid,
            "total_creators_failed": failed,
            "total_amount_usd": float(total_paid),
            "payouts": results,
        }

    def list_batches(self) -> List[Dict[str, Any]]:
        batches = self.db.query(MonthlyPayoutBatch).order_by(
            MonthlyPayoutBatch.batch_date.desc()
        ).limit(BATCH_HISTORY_LIMIT).all()
        return [
            {
                "id": b.id,
                "batch_date": b.batch_date.isoformat(),
                "status": b.processing_status,
                "total_creators_paid": b.total_creators_paid,
                "total_creators_failed": b.total_creators_failed,
                "total_amount_usd": float(_usd(b.total_amount_usd)),
                "created_at": b.created_at.isoformat() if b.created_at else None,
                "completed_at": b.completed_at.isoformat() if b.completed_at else None,
            }
            for b in batches
        ]
