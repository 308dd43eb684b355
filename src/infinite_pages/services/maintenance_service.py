"""
Maintenance Service - Monthly credit distribution and balance caps
Run by admins on demand or by the scheduler on the 1st of each month
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
import logging

from sqlalchemy import func, distinct
from sqlalchemy.orm import Session

from ..db.models.user import User, SubscriptionTier, SubscriptionStatus
from ..db.models.story import StoryPurchase
from ..db.models.credits import CreditTransaction, TransactionType
from ..db.models.tracking import SystemLog
from ..exceptions import PayoutError, InfinitePagesError
from .credit_service import CreditService
from .plan_policy import calculate_proportional_credits, get_tier_config

logger = logging.getLogger(__name__)

DISTRIBUTION_REFERENCE_TYPE = "monthly_distribution"
MAINTENANCE_LOG_TYPE = "monthly_maintenance"


def _month_window(month: int, year: int):
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def previous_month(now: Optional[datetime] = None):
    """(month, year) of the month before now"""
    now = now or datetime.utcnow()
    if now.month == 1:
        return 12, now.year - 1
    return now.month - 1, now.year


class MaintenanceService:
    """Monthly credit maintenance tasks"""

    def __init__(self, db: Session):
        self.db = db
        self.credits = CreditService(db)

    def _distribution_reference(self, month: int, year: int) -> str:
        return f"{year}-{month:02d}"

    def _already_distributed(self, month: int, year: int) -> bool:
        return self.db.query(CreditTransaction.id).filter(
            CreditTransaction.transaction_type == TransactionType.MONTHLY_DISTRIBUTION.value,
            CreditTransaction.reference_id == self._distribution_reference(month, year),
        ).first() is not None

    def _stories_read(self, user: User, start: datetime, end: datetime) -> int:
        return self.db.query(func.count(distinct(StoryPurchase.story_id))).filter(
            StoryPurchase.user_id == user.id,
            StoryPurchase.created_at >= start,
            StoryPurchase.created_at < end,
        ).scalar() or 0

    def distribute_monthly_credits(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        Grant each subscriber their monthly credits plus an activity bonus

        Raises:
            PayoutError: the month was already distributed (real runs only)
        """
        now = datetime.utcnow()
        month = month or now.month
        year = year or now.year
        if not 1 <= month <= 12:
            raise InfinitePagesError("Month must be between 1 and 12", code="INVALID_MONTH")

        if not dry_run and self._already_distributed(month, year):
            raise PayoutError(
                f"Credits for {year}-{month:02d} have already been distributed",
                code="ALREADY_DISTRIBUTED",
                details={"month": month, "year": year},
            )

        start, end = _month_window(month, year)
        recipients = self.db.query(User).filter(
            User.is_active == True,  # noqa: E712
            User.subscription_status.in_([
                SubscriptionStatus.ACTIVE.value,
                SubscriptionStatus.TRIALING.value,
            ]),
        ).order_by(User.id).all()

        by_tier: Dict[str, Dict[str, int]] = {}
        distributions: List[Dict[str, Any]] = []
        total_credits = 0

        for user in recipients:
            tier = user.subscription_tier
            stories_read = self._stories_read(user, start, end)
            credits = calculate_proportional_credits(tier, stories_read)
            base = get_tier_config(tier)["monthly_credits"]

            if not dry_run:
                self.credits.add_credits(
                    user,
                    credits,
                    TransactionType.MONTHLY_DISTRIBUTION,
                    description=f"Monthly credits for {year}-{month:02d}",
                    reference_id=self._distribution_reference(month, year),
                    reference_type=DISTRIBUTION_REFERENCE_TYPE,
                    metadata={
                        "month": month,
                        "year": year,
                        "tier": tier,
                        "stories_read": stories_read,
                        "base_credits": base,
                        "bonus_credits": credits - base,
                    },
                    commit=False,
                )

            tier_summary = by_tier.setdefault(tier, {"users": 0, "credits": 0})
            tier_summary["users"] += 1
            tier_summary["credits"] += credits
            total_credits += credits
            distributions.append({
                "user_id": user.id,
                "tier": tier,
                "stories_read": stories_read,
                "credits": credits,
            })

        if not dry_run:
            self.db.commit()

        logger.info(
            f"Monthly distribution {year}-{month:02d} ({'dry run' if dry_run else 'applied'}): "
            f"{len(recipients)} users, {total_credits} credits"
        )
        return {
            "month": month,
            "year": year,
            "dry_run": dry_run,
            "total_users": len(recipients),
            "total_credits": total_credits,
            "average_credits": round(total_credits / len(recipients), 2) if recipients else 0,
            "by_tier": by_tier,
            "distributions": distributions,
        }

    def revert_excess_credits(self, dry_run: bool = False) -> Dict[str, Any]:
        """Cap Basic balances at the tier's maximum"""
        cap = get_tier_config(SubscriptionTier.BASIC.value)["max_credit_balance"]
        users = self.db.query(User).filter(
            User.subscription_tier == SubscriptionTier.BASIC.value,
            User.credits_balance > cap,
        ).order_by(User.id).all()

        reverted = []
        total = 0
        for user in users:
            excess = user.credits_balance - cap
            if not dry_run:
                self.credits.deduct_credits(
                    user,
                    excess,
                    TransactionType.CREDIT_REVERSION,
                    description=f"Balance capped at {cap} credits",
                    metadata={"cap": cap, "previous_balance": user.credits_balance},
                    commit=False,
                )
            reverted.append({"user_id": user.id, "excess_credits": excess})
            total += excess

        if not dry_run:
            self.db.commit()

        logger.info(f"Excess credit reversion ({'dry run' if dry_run else 'applied'}): {len(users)} users, {total} credits")
        return {
            "dry_run": dry_run,
            "max_balance": cap,
            "users_affected": len(users),
            "total_credits_reverted": total,
            "details": reverted,
        }

    def run_monthly_maintenance(
        self,
        dry_run: bool = False,
        month: Optional[int] = None,
        year: Optional[int] = None
    ) -> Dict[str, Any]:
        """Run distribution then reversion; one failing does not stop the other"""
        results: Dict[str, Any] = {"dry_run": dry_run, "started_at": datetime.utcnow().isoformat()}
        errors = []

        try:
            results["distribution"] = self.distribute_monthly_credits(month, year, dry_run)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Monthly distribution failed: {e}", exc_info=True)
            errors.append({"task": "distribution", "error": str(e)})

        try:
            results["reversion"] = self.revert_excess_credits(dry_run)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Excess credit reversion failed: {e}", exc_info=True)
            errors.append({"task": "reversion", "error": str(e)})

        results["errors"] = errors
        results["success"] = not errors
        results["completed_at"] = datetime.utcnow().isoformat()

        distribution = results.get("distribution") or {}
        reversion = results.get("reversion") or {}
        self.db.add(SystemLog(
            log_type=MAINTENANCE_LOG_TYPE,
            message=(
                f"Monthly maintenance {'dry run ' if dry_run else ''}"
                f"{'completed' if not errors else 'completed with errors'}"
            ),
            details={
                "dry_run": dry_run,
                "distributed_users": distribution.get("total_users", 0),
                "distributed_credits": distribution.get("total_credits", 0),
                "reverted_users": reversion.get("users_affected", 0),
                "reverted_credits": reversion.get("total_credits_reverted", 0),
                "errors": errors,
            },
        ))
        self.db.commit()
        return results

    def distribution_history(self, limit: int = 12) -> List[Dict[str, Any]]:
        rows = self.db.query(
            CreditTransaction.reference_id,
            func.count(CreditTransaction.id),
            func.sum(CreditTransaction.amount),
            func.min(CreditTransaction.created_at),
        ).filter(
            CreditTransaction.transaction_type == TransactionType.MONTHLY_DISTRIBUTION.value,
        ).group_by(CreditTransaction.reference_id).order_by(CreditTransaction.reference_id.desc()).limit(limit).all()

        return [
            {
                "period": reference_id,
                "users": users,
                "total_credits": int(total or 0),
                "distributed_at": distributed_at.isoformat() if distributed_at else None,
            }
            for reference_id, users, total, distributed_at in rows
        ]

    def maintenance_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        logs = self.db.query(SystemLog).filter(
            SystemLog.log_type == MAINTENANCE_LOG_TYPE
        ).order_by(SystemLog.created_at.desc(), SystemLog.id.desc()).limit(limit).all()
        return [
            {
                "id": log.id,
                "message": log.message,
                "details": log.details,
                "created_at": log.created_at.isoformat(),
            }
            for log in logs
        ]

    def reversion_history(self, limit: int = 500) -> Dict[str, Any]:
        rows = self.db.query(CreditTransaction, User.email, User.subscription_tier).join(
            User, User.id == CreditTransaction.user_id
        ).filter(
            CreditTransaction.transaction_type == TransactionType.CREDIT_REVERSION.value,
        ).order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc()).limit(limit).all()

        total = sum(abs(t.amount) for t, _, _ in rows)
        return {
            "reversions": [
                {
                    "user_id": t.user_id,
                    "email": email,
                    "subscription_tier": tier,
                    "credits_reverted": abs(t.amount),
                    "metadata": t.metadata_json,
                    "created_at": t.created_at.isoformat(),
                }
                for t, email, tier in rows
            ],
            "summary": {
                "total_reversions": len(rows),
                "total_credits_reverted": total,
                "average_credits_per_reversion": round(total / len(rows)) if rows else 0,
            },
        }
