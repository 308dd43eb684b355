"""
Plan Policy - Centralized tier enforcement and pricing tables
Holds the subscription tier table, the AI operation cost table and the
creator revenue constants used across services
"""
import math
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models.user import User, SubscriptionTier, SubscriptionStatus, CreatorTier
from ..db.models.story import Story
from ..exceptions import PlanLimitExceededError, InfinitePagesError

logger = logging.getLogger(__name__)


TRIAL_PERIOD_DAYS = 7
TRIAL_CREDITS = 100

CREATOR_REVENUE_SHARE = Decimal("0.70")
CREDIT_USD_VALUE = Decimal("0.01")
MINIMUM_PAYOUT_USD = Decimal("25.00")
PAYOUT_PROCESSING_FEE_USD = Decimal("0.25")

# Cache hits are charged 40% of the normal cost
CACHE_DISCOUNT_RATE = 0.6

DEFAULT_PRICE_PER_CHAPTER = 5
DEFAULT_BUNDLE_DISCOUNT = 0
DEFAULT_PREMIUM_UNLOCK_PRICE = 50

COMPLEXITY_LEVELS = ("basic", "medium", "high")

SUBSCRIPTION_TIERS: Dict[str, Dict] = {
    SubscriptionTier.BASIC.value: {
        "name": "Basic",
        "price_monthly": Decimal("9.99"),
        "price_yearly": Decimal("99.99"),
        "monthly_credits": 500,
        "stories_per_month": 10,
        "cover_generations": 3,
        "max_credit_balance": 1500,
        "features": {
            "download": False,
            "download_limit": 0,
            "download_cost": 0,
            "creator_tools": False,
        },
    },
    SubscriptionTier.PREMIUM.value: {
        "name": "Premium",
        "price_monthly": Decimal("19.99"),
        "price_yearly": Decimal("199.99"),
        "monthly_credits": 1200,
        "stories_per_month": None,  # unlimited
        "cover_generations": 10,
        "max_credit_balance": None,
        "features": {
            "download": True,
            "download_limit": 3,
            "download_cost": 250,
            "creator_tools": True,
        },
    },
}

AI_OPERATION_COSTS: Dict[str, Dict[str, int]] = {
    "foundation": {"basic": 8, "medium": 12, "high": 18},
    "character": {"basic": 5, "medium": 8, "high": 12},
    "chapter": {"basic": 10, "medium": 15, "high": 25},
    "improvement": {"basic": 3, "medium": 6, "high": 10},
}
# Analysis is billed like an improvement pass
AI_OPERATION_COSTS["analysis"] = AI_OPERATION_COSTS["improvement"]

CREATOR_TIER_THRESHOLDS = [
    (Decimal("2000"), CreatorTier.PLATINUM.value),
    (Decimal("500"), CreatorTier.GOLD.value),
    (Decimal("100"), CreatorTier.SILVER.value),
]


def get_tier_config(tier: Optional[str]) -> Dict:
    """Tier configuration, falling back to basic for unknown tiers"""
    return SUBSCRIPTION_TIERS.get(tier or "", SUBSCRIPTION_TIERS[SubscriptionTier.BASIC.value])


def get_operation_cost(operation: str, complexity: str = "medium") -> int:
    """
    Credit cost of an AI operation

    Raises:
        InfinitePagesError: unknown operation or complexity
    """
    costs = AI_OPERATION_COSTS.get(operation)
    if costs is None:
        raise InfinitePagesError(f"Unknown operation type: {operation}", code="INVALID_OPERATION")
    if complexity not in costs:
        raise InfinitePagesError(
            f"Invalid complexity '{complexity}'. Must be one of: {', '.join(COMPLEXITY_LEVELS)}",
            code="INVALID_COMPLEXITY",
        )
    return costs[complexity]


def apply_cache_discount(cost: int) -> int:
    """Credits charged for a cached response"""
    return math.ceil(cost * (1 - CACHE_DISCOUNT_RATE))


def calculate_proportional_credits(tier: str, stories_read: int) -> int:
    """Monthly allowance plus an activity bonus capped at 20% of the allowance"""
    base = get_tier_config(tier)["monthly_credits"]
    bonus = min(max(stories_read, 0) * 10, base * 0.2)
    return math.floor(base + bonus)


def get_creator_tier(total_earnings) -> str:
    """Creator tier from lifetime USD earnings"""
    earnings = Decimal(str(total_earnings or 0))
    for threshold, tier in CREATOR_TIER_THRESHOLDS:
        if earnings >= threshold:
            return tier
    return CreatorTier.BRONZE.value


def credits_to_usd(credits: int) -> Decimal:
    return (Decimal(credits) * CREDIT_USD_VALUE).quantize(Decimal("0.01"))


class PlanPolicy:
    """
    Tier enforcement for a single user
    Handles subscription state, monthly story limits and feature access
    """

    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    def get_tier(self) -> str:
        """Current tier name; unknown values fall back to basic"""
        tier = self.user.subscription_tier
        if tier not in SUBSCRIPTION_TIERS:
            return SubscriptionTier.BASIC.value
        return tier

    def get_tier_config(self) -> Dict:
        return SUBSCRIPTION_TIERS[self.get_tier()]

    def has_active_subscription(self) -> bool:
        """
        Trialing users count as subscribed until the trial ends;
        past_due keeps access while Stripe retries the charge
        """
        status = self.user.subscription_status
        if status == SubscriptionStatus.TRIALING.value:
            return self.user.trial_ends_at is None or self.user.trial_ends_at > datetime.utcnow()
        return status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value)

    def stories_this_month(self) -> int:
        month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return self.db.query(func.count(Story.id)).filter(
            Story.user_id == self.user.id,
            Story.created_at >= month_start,
        ).scalar() or 0

    def check_story_limit(self) -> None:
        """
        Raise if the user has used up this month's story allowance

        Raises:
            PlanLimitExceededError: monthly limit reached
        """
        limit = self.get_tier_config()["stories_per_month"]
        if limit is None:
            return

        used = self.stories_this_month()
        if used >= limit:
            logger.info(f"User {self.user.id} hit story limit ({used}/{limit}) on {self.get_tier()} tier")
            raise PlanLimitExceededError(
                f"Monthly story limit reached ({limit} stories on the {self.get_tier()} plan)",
                details={"limit": limit, "used": used, "tier": self.get_tier()},
            )

    def can_access(self, feature: str) -> bool:
        """Feature flag check against the tier table"""
        if not self.has_active_subscription():
            return False
        return bool(self.get_tier_config()["features"].get(feature, False))

    def max_credit_balance(self) -> Optional[int]:
        """Balance cap for the tier, None when uncapped"""
        return self.get_tier_config()["max_credit_balance"]
