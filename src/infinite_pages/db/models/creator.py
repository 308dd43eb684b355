"""
Creator earnings, payouts and monthly payout batches
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum

from ..base import Base


class EarningSource(str, enum.Enum):
    CREDITS = "credits"
    STRIPE = "stripe"


class PayoutStatus(str, enum.Enum):
    """Payout status enum"""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class BatchStatus(str, enum.Enum):
    """Monthly payout batch status"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


class CreatorEarning(Base):
    """A creator's share of one reader purchase; unpaid while payout_id is NULL"""
    __tablename__ = "creator_earnings"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="SET NULL"), nullable=True, index=True)
    reader_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    credits_earned = Column(Integer, default=0, nullable=False)
    usd_equivalent = Column(Numeric(10, 2), nullable=False)
    source = Column(String, default=EarningSource.CREDITS.value, nullable=False)
    stripe_transfer_id = Column(String, nullable=True)
    payout_id = Column(Integer, ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    story = relationship("Story")
    payout = relationship("Payout", back_populates="earnings")


class Payout(Base):
    """Transfer of accumulated earnings to a creator's connected account"""
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("monthly_payout_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    amount_usd = Column(Numeric(10, 2), nullable=False)
    fee_usd = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    stripe_transfer_id = Column(String, nullable=True, unique=True, index=True)
    status = Column(String, default=PayoutStatus.PENDING.value, nullable=False, index=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
    earnings_count = Column(Integer, default=0, nullable=False)
    failure_reason = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    earnings = relationship("CreatorEarning", back_populates="payout")
    batch = relationship("MonthlyPayoutBatch", back_populates="payouts")


class MonthlyPayoutBatch(Base):
    """One admin-triggered payout run"""
    __tablename__ = "monthly_payout_batches"

    id = Column(Integer, primary_key=True, index=True)
    batch_date = Column(Date, nullable=False, unique=True, index=True)
    total_creators_paid = Column(Integer, default=0, nullable=False)
    total_creators_failed = Column(Integer, default=0, nullable=False)
    total_amount_usd = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    processing_status = Column(String, default=BatchStatus.PROCESSING.value, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    payouts = relationship("Payout", back_populates="batch")
