"""
Credit Service - Credit ledger, balances and credit packages
All balance changes go through this service so every change has a ledger row
"""
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models.user import User
from ..db.models.credits import CreditPackage, CreditTransaction, TransactionType
from ..exceptions import InsufficientCreditsError, InfinitePagesError

logger = logging.getLogger(__name__)

BEST_VALUE_BONUS_PERCENTAGE = 20
ESTIMATED_COST_PER_CREDIT = 0.05


class CreditService:
    """Service for credit balances and the credit ledger"""

    def __init__(self, db: Session):
        """
        Initialize credit service

        Args:
            db: Database session
        """
        self.db = db

    def _lock_user(self, user: User) -> User:
        """Re-read the user row with a row lock (no-op on SQLite)"""
        locked = self.db.query(User).filter(User.id == user.id).with_for_update().one()
        return locked

    def _record(
        self,
        user: User,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str],
        reference_id: Optional[str],
        reference_type: Optional[str],
        metadata: Optional[Dict[str, Any]]
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            user_id=user.id,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_after=user.credits_balance,
            description=description,
            reference_id=str(reference_id) if reference_id is not None else None,
            reference_type=reference_type,
            metadata_json=metadata,
        )
        self.db.add(transaction)
        return transaction

    def spend_credits(
        self,
        user: User,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True
    ) -> CreditTransaction:
        """
        Deduct credits from a user's balance

        Raises:
            InsufficientCreditsError: balance is lower than amount
        """
        if amount < 0:
            raise InfinitePagesError("Credit amount must not be negative", code="INVALID_AMOUNT")

        locked = self._lock_user(user)
        if locked.credits_balance < amount:
            raise InsufficientCreditsError(required=amount, available=locked.credits_balance)

        locked.credits_balance -= amount
        locked.credits_spent_total += amount
        transaction = self._record(
            locked, -amount, TransactionType.SPEND, description, reference_id, reference_type, metadata
        )

        if commit:
            self.db.commit()
            self.db.refresh(locked)

        logger.info(f"User {locked.id} spent {amount} credits ({description}); balance {locked.credits_balance}")
        return transaction

    def add_credits(
        self,
        user: User,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        count_as_earned: bool = True,
        commit: bool = True
    ) -> CreditTransaction:
        """
        Credit a user's balance and write the matching ledger entry

        Args:
            count_as_earned: Whether the amount adds to credits_earned_total
        """
        if amount < 0:
            raise InfinitePagesError("Credit amount must not be negative", code="INVALID_AMOUNT")

        locked = self._lock_user(user)
        locked.credits_balance += amount
        if count_as_earned:
            locked.credits_earned_total += amount
        transaction = self._record(
            locked, amount, transaction_type, description, reference_id, reference_type, metadata
        )

        if commit:
            self.db.commit()
            self.db.refresh(locked)

        logger.info(
            f"User {locked.id} received {amount} credits ({transaction_type.value}); balance {locked.credits_balance}"
        )
        return transaction

    def deduct_credits(
        self,
        user: User,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True
    ) -> CreditTransaction:
        """Administrative removal of credits (not counted as spending)"""
        locked = self._lock_user(user)
        amount = min(amount, locked.credits_balance)
        locked.credits_balance -= amount
        transaction = self._record(locked, -amount, transaction_type, description, None, None, metadata)
        if commit:
            self.db.commit()
            self.db.refresh(locked)
        return transaction

    def monthly_spending(self, user: User, days: int = 30) -> int:
        since = datetime.utcnow() - timedelta(days=days)
        total = self.db.query(func.coalesce(func.sum(CreditTransaction.amount), 0)).filter(
            CreditTransaction.user_id == user.id,
            CreditTransaction.transaction_type == TransactionType.SPEND.value,
            CreditTransaction.created_at >= since,
        ).scalar()
        return abs(int(total or 0))

    def get_balance(self, user: User, include_transactions: bool = False, limit: int = 20) -> Dict[str, Any]:
        """Balance summary with spending analytics"""
        self.db.refresh(user)

        monthly_spending = self.monthly_spending(user)
        cache_efficiency = 0
        if user.cache_hits > 0 and user.credits_spent_total > 0:
            cache_efficiency = round(user.cache_discount_earned / user.credits_spent_total * 100)

        result: Dict[str, Any] = {
            "balance": {
                "current": user.credits_balance,
                "lifetime_earned": user.credits_earned_total,
                "lifetime_spent": user.credits_spent_total,
                "net_balance": user.credits_earned_total - user.credits_spent_total,
            },
            "analytics": {
                "monthly_spending": monthly_spending,
                "cache_hits": user.cache_hits,
                "total_cache_savings": user.cache_discount_earned,
                "cache_efficiency_percentage": cache_efficiency,
                "estimated_monthly_cost": round(monthly_spending * ESTIMATED_COST_PER_CREDIT, 2),
            },
            "meta": {
                "subscription_tier": user.subscription_tier,
                "subscription_status": user.subscription_status,
                "generated_at": datetime.utcnow().isoformat(),
            },
        }

        if include_transactions:
            transactions = self.db.query(CreditTransaction).filter(
                CreditTransaction.user_id == user.id
            ).order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc()).limit(limit).all()
            result["transactions"] = [self.serialize_transaction(t) for t in transactions]

        return result

    @staticmethod
    def serialize_transaction(transaction: CreditTransaction) -> Dict[str, Any]:
        return {
            "id": transaction.id,
            "type": transaction.transaction_type,
            "amount": transaction.amount,
            "balance_after": transaction.balance_after,
            "description": transaction.description,
            "reference_id": transaction.reference_id,
            "reference_type": transaction.reference_type,
            "metadata": transaction.metadata_json,
            "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
        }

    def get_package(self, package_id: int) -> Optional[CreditPackage]:
        """Active package by id"""
        return self.db.query(CreditPackage).filter(
            CreditPackage.id == package_id,
            CreditPackage.is_active == True  # noqa: E712
        ).first()

    def list_packages(self) -> List[Dict[str, Any]]:
        """Active packages with value metrics for the pricing page"""
        packages = self.db.query(CreditPackage).filter(
            CreditPackage.is_active == True  # noqa: E712
        ).order_by(CreditPackage.sort_order, CreditPackage.id).all()

        result = []
        for package in packages:
            total_credits = package.credits_amount + (package.bonus_credits or 0)
            price = Decimal(package.price_usd)
            price_per_credit = round(float(price) / total_credits, 4) if total_credits else 0.0
            bonus_percentage = (
                round(package.bonus_credits / package.credits_amount * 100)
                if package.credits_amount and package.bonus_credits else 0
            )
            result.append({
                "id": package.id,
                "name": package.name,
                "description": package.description,
                "credits_amount": package.credits_amount,
                "bonus_credits": package.bonus_credits,
                "total_credits": total_credits,
                "price_usd": float(price),
                "price_per_credit": price_per_credit,
                "bonus_percentage": bonus_percentage,
                "is_best_value": bonus_percentage >= BEST_VALUE_BONUS_PERCENTAGE,
                "display_savings": f"{bonus_percentage}% bonus credits" if bonus_percentage else None,
            })
        return result
