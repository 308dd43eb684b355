"""
Credit packages, credit ledger and Stripe payments
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, JSONType


class TransactionType(str, enum.Enum):
    """Credit ledger entry types"""
    PURCHASE = "purchase"
    SPEND = "spend"
    EARN = "earn"
    BONUS = "bonus"
    REFUND = "refund"
    MONTHLY_DISTRIBUTION = "monthly_distribution"
    CREDIT_REVERSION = "credit_reversion"


class PaymentStatus(str, enum.Enum):
    """Payment status enum"""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class CreditPackage(Base):
    """Purchasable bundle of credits"""
    __tablename__ = "credit_packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    credits_amount = Column(Integer, nullable=False)
    price_usd = Column(Numeric(10, 2), nullable=False)
    bonus_credits = Column(Integer, default=0, nullable=False)
    stripe_price_id = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CreditTransaction(Base):
    """Append-only credit ledger; amount is signed"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    reference_type = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="credit_transactions")

    __table_args__ = (
        Index("ix_credit_transactions_user_type_created", "user_id", "transaction_type", "created_at"),
    )


class Payment(Base):
    """Stripe PaymentIntent for a credit package or a story purchase"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_payment_intent_id = Column(String, nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String, nullable=True)
    package_id = Column(Integer, ForeignKey("credit_packages.id"), nullable=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="SET NULL"), nullable=True)
    amount_usd = Column(Numeric(10, 2), nullable=False)
    credits_purchased = Column(Integer, default=0, nullable=False)
    bonus_credits = Column(Integer, default=0, nullable=False)
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False, index=True)
    failure_reason = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    package = relationship("CreditPackage")
