"""
Creator Service - Earnings, payouts and Stripe Connect onboarding for creators
"""
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import config
from ..db.models.user import User, SubscriptionTier, ConnectAccountStatus
from ..db.models.story import Story
from ..db.models.creator import CreatorEarning, Payout, PayoutStatus, EarningSource
from ..exceptions import InfinitePagesError, PayoutError, SubscriptionRequiredError
from .billing_gateway import BillingGateway
from .plan_policy import PlanPolicy, MINIMUM_PAYOUT_USD, get_creator_tier

logger = logging.getLogger(__name__)

EARNINGS_PERIODS = ("current_month", "last_month", "last_3_months", "all_time", "7", "30", "90", "365")
TREND_MONTHS = 6
PAYOUT_HISTORY_LIMIT = 20


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def _month_start(moment: datetime, months_back: int = 0) -> datetime:
    year, month = moment.year, moment.month - months_back
    while month < 1:
        month += 12
        year -= 1
    return datetime(year, month, 1)


def period_bounds(period: str, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve an earnings period into (start, end); None means unbounded

    Raises:
        InfinitePagesError: unknown period
    """
    now = now or datetime.utcnow()
    if period == "current_month":
        return _month_start(now), None
    if period == "last_month":
        return _month_start(now, 1), _month_start(now)
    if period == "last_3_months":
        return _month_start(now, 2), None
    if period == "all_time":
        return None, None
    if period in ("7", "30", "90", "365"):
        return now - timedelta(days=int(period)), None
    raise InfinitePagesError(
        f"Invalid period '{period}'. Must be one of: {', '.join(EARNINGS_PERIODS)}",
        code="INVALID_PERIOD",
    )


def record_creator_earning(
    db: Session,
    creator: User,
    usd_amount: Decimal,
    story_id: Optional[int] = None,
    reader_id: Optional[int] = None,
    credits_earned: int = 0,
    source: EarningSource = EarningSource.CREDITS,
    stripe_transfer_id: Optional[str] = None
) -> CreatorEarning:
    """
    Add an earning for a creator

    Earnings paid out immediately through a transfer count toward total earnings;
    everything else accumulates in pending_payout_usd until the next payout.
    """
    usd_amount = _to_decimal(usd_amount)
    earning = CreatorEarning(
        creator_id=creator.id,
        story_id=story_id,
        reader_id=reader_id,
        credits_earned=credits_earned,
        usd_equivalent=usd_amount,
        source=source.value,
        stripe_transfer_id=stripe_transfer_id,
    )
    db.add(earning)

    if stripe_transfer_id:
        creator.total_earnings_usd = _to_decimal(creator.total_earnings_usd) + usd_amount
    else:
        creator.pending_payout_usd = _to_decimal(creator.pending_payout_usd) + usd_amount

    creator.creator_tier = get_creator_tier(
        _to_decimal(creator.total_earnings_usd) + _to_decimal(creator.pending_payout_usd)
    )
    return earning


class CreatorService:
    """Service for creator earnings and payouts"""

    def __init__(self, db: Session, gateway: Optional[BillingGateway] = None):
        self.db = db
        self.gateway = gateway

    # Earnings

    def get_earnings(
        self,
        user: User,
        period: str = "current_month",
        include_transactions: bool = False,
        include_trends: bool = False,
        limit: int = 50
    ) -> Dict[str, Any]:
        """Earnings dashboard for a creator"""
        start, end = period_bounds(period)

        query = self.db.query(CreatorEarning).filter(CreatorEarning.creator_id == user.id)
        if start is not None:
            query = query.filter(CreatorEarning.created_at >= start)
        if end is not None:
            query = query.filter(CreatorEarning.created_at < end)

        earnings = query.order_by(CreatorEarning.created_at.desc(), CreatorEarning.id.desc()).all()

        total_credits = sum(e.credits_earned for e in earnings)
        total_usd = sum((_to_decimal(e.usd_equivalent) for e in earnings), Decimal("0.00"))
        unique_readers = len({e.reader_id for e in earnings if e.reader_id is not None})

        pending = _to_decimal(user.pending_payout_usd)
        lifetime = _to_decimal(user.total_earnings_usd) + pending

        result: Dict[str, Any] = {
            "period": period,
            "summary": {
                "total_credits_earned": total_credits,
                "total_usd_earned": float(total_usd),
                "unique_readers": unique_readers,
                "pending_payout": float(pending),
                "lifetime_earnings": float(lifetime),
                "creator_tier": user.creator_tier or get_creator_tier(lifetime),
            },
            "story_performance": self._story_performance(earnings),
            "payout_info": {
                "minimum_payout": float(MINIMUM_PAYOUT_USD),
                "eligible_for_payout": pending >= MINIMUM_PAYOUT_USD,
                "connect_ready": user.connect_ready,
            },
        }

        if include_transactions:
            result["recent_transactions"] = [
                {
                    "id": e.id,
                    "story_id": e.story_id,
                    "story_title": e.story.title if e.story else None,
                    "reader_id": e.reader_id,
                    "credits_earned": e.credits_earned,
                    "usd_equivalent": float(_to_decimal(e.usd_equivalent)),
                    "source": e.source,
                    "paid_out": e.payout_id is not None or e.stripe_transfer_id is not None,
                    "created_at": e.created_at.isoformat(),
                }
                for e in earnings[:limit]
            ]

        if include_trends:
            result["monthly_trends"] = self._monthly_trends(user)

        return result

    @staticmethod
    def _story_performance(earnings: List[CreatorEarning]) -> List[Dict[str, Any]]:
        stories: Dict[Optional[int], Dict[str, Any]] = {}
        for e in earnings:
            entry = stories.setdefault(e.story_id, {
                "story_id": e.story_id,
                "title": e.story.title if e.story else None,
                "credits_earned": 0,
                "usd_earned": Decimal("0.00"),
                "purchases": 0,
                "readers": set(),
            })
            entry["credits_earned"] += e.credits_earned
            entry["usd_earned"] += _to_decimal(e.usd_equivalent)
            entry["purchases"] += 1
            if e.reader_id is not None:
                entry["readers"].add(e.reader_id)

        performance = []
        for entry in stories.values():
            performance.append({
                "story_id": entry["story_id"],
                "title": entry["title"],
                "credits_earned": entry["credits_earned"],
                "usd_earned": float(entry["usd_earned"]),
                "purchases": entry["purchases"],
                "unique_readers": len(entry["readers"]),
            })
        performance.sort(key=lambda item: item["usd_earned"], reverse=True)
        return performance

    def _monthly_trends(self, user: User) -> List[Dict[str, Any]]:
        now = datetime.utcnow()
        window_start = _month_start(now, TREND_MONTHS - 1)
        rows = self.db.query(CreatorEarning).filter(
            CreatorEarning.creator_id == user.id,
            CreatorEarning.created_at >= window_start,
        ).all()

        trends = []
        for months_back in range(TREND_MONTHS - 1, -1, -1):
            start = _month_start(now, months_back)
            end = _month_start(now, months_back - 1) if months_back > 0 else None
            bucket = [r for r in rows if r.created_at >= start and (end is None or r.created_at < end)]
            trends.append({
                "month": start.strftime("%Y-%m"),
                "credits_earned": sum(r.credits_earned for r in bucket),
                "usd_earned": float(sum((_to_decimal(r.usd_equivalent) for r in bucket), Decimal("0.00"))),
                "purchases": len(bucket),
            })
        return trends

    # Payouts

    def _unpaid_earnings(self, user: User) -> List[CreatorEarning]:
        return self.db.query(CreatorEarning).filter(
            CreatorEarning.creator_id == user.id,
            CreatorEarning.payout_id.is_(None),
            CreatorEarning.stripe_transfer_id.is_(None),
        ).order_by(CreatorEarning.created_at).all()

    def request_payout(self, user: User) -> Dict[str, Any]:
        """
        Transfer all pending earnings to the creator's connected account

        Raises:
            PayoutError: below minimum, Connect not ready or nothing to pay
        """
        pending = _to_decimal(user.pending_payout_usd)
        if pending < MINIMUM_PAYOUT_USD:
            raise PayoutError(
                f"Minimum payout amount is ${MINIMUM_PAYOUT_USD}",
                code="BELOW_MINIMUM_PAYOUT",
                details={"current_amount": float(pending), "minimum_required": float(MINIMUM_PAYOUT_USD)},
            )

        if not user.stripe_connect_account_id:
            raise PayoutError(
                "Connect a payout account before requesting a payout",
                code="CONNECT_ACCOUNT_REQUIRED",
                details={"action": "setup_connect_account"},
            )
        if not user.connect_ready:
            raise PayoutError(
                "Finish payout account setup before requesting a payout",
                code="CONNECT_SETUP_INCOMPLETE",
                details={"action": "complete_connect_setup"},
            )

        earnings = self._unpaid_earnings(user)
        if not earnings:
            raise PayoutError("No unpaid earnings available for payout", code="NO_UNPAID_EARNINGS")

        transfer = self.gateway.create_transfer(
            amount_cents=int(pending * 100),
            destination=user.stripe_connect_account_id,
            metadata={"creator_id": str(user.id), "type": "creator_payout"},
            description=f"Creator payout ({len(earnings)} earnings)",
        )

        payout = Payout(
            creator_id=user.id,
            amount_usd=pending,
            stripe_transfer_id=transfer["transfer_id"],
            status=PayoutStatus.PROCESSING.value,
            period_start=earnings[0].created_at,
            period_end=earnings[-1].created_at,
            earnings_count=len(earnings),
        )
        self.db.add(payout)
        self.db.flush()

        for earning in earnings:
            earning.payout_id = payout.id

        user.pending_payout_usd = Decimal("0.00")
        user.total_earnings_usd = _to_decimal(user.total_earnings_usd) + pending
        self.db.commit()
        self.db.refresh(payout)

        logger.info(f"Creator {user.id} payout {payout.id} of ${pending} sent (transfer {transfer['transfer_id']})")
        return self.serialize_payout(payout)

    def process_queued_earnings(self, user: User) -> Optional[Dict[str, Any]]:
        """Pay out queued earnings once a creator's account becomes usable"""
        if not user.connect_ready or _to_decimal(user.pending_payout_usd) < MINIMUM_PAYOUT_USD:
            return None
        if not self._unpaid_earnings(user):
            return None
        return self.request_payout(user)

    def get_payout_history(self, user: User) -> Dict[str, Any]:
        payouts = self.db.query(Payout).filter(
            Payout.creator_id == user.id
        ).order_by(Payout.created_at.desc(), Payout.id.desc()).limit(PAYOUT_HISTORY_LIMIT).all()

        pending = _to_decimal(user.pending_payout_usd)
        return {
            "payouts": [self.serialize_payout(p) for p in payouts],
            "pending_payout": float(pending),
            "minimum_payout": float(MINIMUM_PAYOUT_USD),
            "eligible_for_payout": pending >= MINIMUM_PAYOUT_USD and user.connect_ready,
        }

    @staticmethod
    def serialize_payout(payout: Payout) -> Dict[str, Any]:
        return {
            "id": payout.id,
            "amount_usd": float(_to_decimal(payout.amount_usd)),
            "fee_usd": float(_to_decimal(payout.fee_usd)),
            "status": payout.status,
            "stripe_transfer_id": payout.stripe_transfer_id,
            "earnings_count": payout.earnings_count,
            "batch_id": payout.batch_id,
            "failure_reason": payout.failure_reason,
            "period_start": payout.period_start.isoformat() if payout.period_start else None,
            "period_end": payout.period_end.isoformat() if payout.period_end else None,
            "processed_at": payout.processed_at.isoformat() if payout.processed_at else None,
            "created_at": payout.created_at.isoformat() if payout.created_at else None,
        }

    # Stripe Connect

    def _require_premium_creator(self, user: User):
        if not user.is_creator:
            raise InfinitePagesError(
                "Creator status required",
                code="CREATOR_REQUIRED",
                status_code=403,
            )
        policy = PlanPolicy(self.db, user)
        if policy.get_tier() != SubscriptionTier.PREMIUM.value or not policy.has_active_subscription():
            raise SubscriptionRequiredError(
                "A Premium subscription is required to receive creator payouts",
                details={
                    "required_tier": SubscriptionTier.PREMIUM.value,
                    "current_tier": user.subscription_tier,
                    "upgrade_url": f"{config.SITE_URL}/pricing",
                },
            )

    def apply_account_update(
        self,
        user: User,
        charges_enabled: bool,
        payouts_enabled: bool,
        details_submitted: bool
    ) -> bool:
        """
        Store Connect capability flags on the profile

        Returns:
            True when the account just became active
        """
        was_active = user.stripe_account_status == ConnectAccountStatus.ACTIVE.value

        user.stripe_charges_enabled = charges_enabled
        user.stripe_payouts_enabled = payouts_enabled
        if charges_enabled and payouts_enabled:
            user.stripe_account_status = ConnectAccountStatus.ACTIVE.value
        elif details_submitted:
            user.stripe_account_status = ConnectAccountStatus.PENDING.value
        else:
            user.stripe_account_status = ConnectAccountStatus.INCOMPLETE.value

        return not was_active and user.stripe_account_status == ConnectAccountStatus.ACTIVE.value

    def _sync_account(self, user: User) -> Dict[str, Any]:
        account = self.gateway.retrieve_account(user.stripe_connect_account_id)
        self.apply_account_update(
            user,
            account["charges_enabled"],
            account["payouts_enabled"],
            account["details_submitted"],
        )
        self.db.commit()
        return account

    def _onboarding_link(self, account_id: str) -> Dict[str, Any]:
        return self.gateway.create_account_link(
            account_id=account_id,
            refresh_url=f"{config.SITE_URL}/creator/stripe/refresh",
            return_url=f"{config.SITE_URL}/creator/stripe/success",
        )

    def start_onboarding(self, user: User, country: str = "US", business_type: str = "individual") -> Dict[str, Any]:
        """Create (or resume) Stripe Connect onboarding"""
        self._require_premium_creator(user)

        if user.stripe_connect_account_id:
            account = self._sync_account(user)
            if user.connect_ready:
                return {
                    "status": "already_onboarded",
                    "account_id": user.stripe_connect_account_id,
                }
            link = self._onboarding_link(user.stripe_connect_account_id)
            return {
                "status": "onboarding_incomplete",
                "account_id": user.stripe_connect_account_id,
                "onboarding_url": link["url"],
                "expires_at": link["expires_at"].isoformat() if link.get("expires_at") else None,
                "requirements": account.get("requirements", []),
            }

        account = self.gateway.create_connect_account(
            email=user.email,
            country=country,
            business_type=business_type,
            metadata={"user_id": str(user.id)},
        )
        user.stripe_connect_account_id = account["account_id"]
        user.stripe_account_status = ConnectAccountStatus.INCOMPLETE.value
        user.stripe_charges_enabled = False
        user.stripe_payouts_enabled = False
        self.db.commit()

        link = self._onboarding_link(account["account_id"])
        logger.info(f"Started Connect onboarding for creator {user.id}")
        return {
            "status": "onboarding_started",
            "account_id": account["account_id"],
            "onboarding_url": link["url"],
            "expires_at": link["expires_at"].isoformat() if link.get("expires_at") else None,
        }

    def refresh_onboarding_link(self, user: User) -> Dict[str, Any]:
        """New onboarding link for an existing account (links expire)"""
        self._require_premium_creator(user)
        if not user.stripe_connect_account_id:
            raise PayoutError(
                "No payout account found. Start onboarding first.",
                code="CONNECT_ACCOUNT_REQUIRED",
                details={"action": "setup_connect_account"},
            )
        link = self._onboarding_link(user.stripe_connect_account_id)
        return {
            "account_id": user.stripe_connect_account_id,
            "onboarding_url": link["url"],
            "expires_at": link["expires_at"].isoformat() if link.get("expires_at") else None,
        }

    def get_connect_status(self, user: User) -> Dict[str, Any]:
        """Connect onboarding state, synced from Stripe when an account exists"""
        base = {
            "account_id": user.stripe_connect_account_id,
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": False,
            "requirements": [],
            "pending_payout": float(_to_decimal(user.pending_payout_usd)),
        }

        if not user.is_creator:
            return {**base, "status": "not_creator"}

        policy = PlanPolicy(self.db, user)
        if policy.get_tier() != SubscriptionTier.PREMIUM.value or not policy.has_active_subscription():
            return {**base, "status": "subscription_required"}

        if not user.stripe_connect_account_id:
            return {**base, "status": "not_onboarded"}

        account = self._sync_account(user)
        return {
            **base,
            "status": "active" if user.connect_ready else "onboarding_incomplete",
            "charges_enabled": user.stripe_charges_enabled,
            "payouts_enabled": user.stripe_payouts_enabled,
            "details_submitted": account["details_submitted"],
            "requirements": account.get("requirements", []),
            "can_receive_payouts": user.connect_ready,
        }
