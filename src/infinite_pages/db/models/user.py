"""
User profile model: account, subscription, credit balance and creator state
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum

from ..base import Base


class SubscriptionTier(str, enum.Enum):
    """Subscription tier enum"""
    BASIC = "basic"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum"""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class CreatorTier(str, enum.Enum):
    """Creator tier enum, derived from lifetime earnings"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class ConnectAccountStatus(str, enum.Enum):
    """Stripe Connect onboarding state"""
    INCOMPLETE = "incomplete"
    PENDING = "pending"
    ACTIVE = "active"


class User(Base):
    """User account and profile"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False, index=True)

    # Subscription
    subscription_tier = Column(String, default=SubscriptionTier.BASIC.value, nullable=False, index=True)
    subscription_status = Column(String, default=SubscriptionStatus.TRIALING.value, nullable=False, index=True)
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True, index=True)
    current_period_end = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)

    # Credits
    credits_balance = Column(Integer, default=0, nullable=False)
    credits_earned_total = Column(Integer, default=0, nullable=False)
    credits_spent_total = Column(Integer, default=0, nullable=False)
    cache_hits = Column(Integer, default=0, nullable=False)
    cache_discount_earned = Column(Integer, default=0, nullable=False)

    # Generation stats
    stories_created = Column(Integer, default=0, nullable=False)
    words_generated = Column(Integer, default=0, nullable=False)
    tokens_used_total = Column(Integer, default=0, nullable=False)

    # Creator
    is_creator = Column(Boolean, default=False, nullable=False, index=True)
    creator_tier = Column(String, nullable=True)
    total_earnings_usd = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    pending_payout_usd = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    # Stripe Connect
    stripe_connect_account_id = Column(String, nullable=True, unique=True, index=True)
    stripe_account_status = Column(String, nullable=True)
    stripe_charges_enabled = Column(Boolean, default=False, nullable=False)
    stripe_payouts_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    stories = relationship("Story", back_populates="user", cascade="all, delete-orphan")
    credit_transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_users_credits_balance_non_negative"),
    )

    @property
    def connect_ready(self) -> bool:
        """True when Stripe will accept transfers to this creator"""
        return bool(
            self.stripe_connect_account_id
            and self.stripe_charges_enabled
            and self.stripe_payouts_enabled
        )
