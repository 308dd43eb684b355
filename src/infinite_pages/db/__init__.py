"""
Database module for Infinite Pages
"""
from .engine import engine, SessionLocal, get_db, init_db
from .base import Base
from .models import (
    User,
    Story,
    Chapter,
    GenerationLog,
    StoryPurchase,
    CreditPackage,
    CreditTransaction,
    Payment,
    CreatorEarning,
    Payout,
    MonthlyPayoutBatch,
    BillingEvent,
    RequestLog,
    SystemLog,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "User",
    "Story",
    "Chapter",
    "GenerationLog",
    "StoryPurchase",
    "CreditPackage",
    "CreditTransaction",
    "Payment",
    "CreatorEarning",
    "Payout",
    "MonthlyPayoutBatch",
    "BillingEvent",
    "RequestLog",
    "SystemLog",
]
