"""
Database models for Infinite Pages
"""
from .user import User, SubscriptionTier, SubscriptionStatus, CreatorTier, ConnectAccountStatus
from .story import Story, Chapter, GenerationLog, StoryPurchase, StoryStatus, PurchaseType, OperationType
from .credits import CreditPackage, CreditTransaction, Payment, TransactionType, PaymentStatus
from .creator import (
    CreatorEarning,
    Payout,
    MonthlyPayoutBatch,
    EarningSource,
    PayoutStatus,
    BatchStatus,
)
from .billing import BillingEvent
from .tracking import RequestLog, SystemLog

__all__ = [
    "User",
    "SubscriptionTier",
    "SubscriptionStatus",
    "CreatorTier",
    "ConnectAccountStatus",
    "Story",
    "Chapter",
    "GenerationLog",
    "StoryPurchase",
    "StoryStatus",
    "PurchaseType",
    "OperationType",
    "CreditPackage",
    "CreditTransaction",
    "Payment",
    "TransactionType",
    "PaymentStatus",
    "CreatorEarning",
    "Payout",
    "MonthlyPayoutBatch",
    "EarningSource",
    "PayoutStatus",
    "BatchStatus",
    "BillingEvent",
    "RequestLog",
    "SystemLog",
]
