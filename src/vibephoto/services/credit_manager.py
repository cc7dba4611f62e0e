"""
Credit Manager - debits, refunds, renewals and usage reporting

Available credits = credits_limit - credits_used + credits_balance.
Debits consume subscription credits first, then purchased credits; the split
is kept on the usage log so a refund restores the same pools.
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple
import logging

from ..db.models import (
    User,
    AIModel,
    ModelStatus,
    UsageLog,
    CreditTransaction,
    CreditTransactionType,
    CreditTransactionSource,
)
from ..db.utils import with_fallback
from ..exceptions import InsufficientCreditsError
from .plan_catalog import get_plan, get_plan_credits

logger = logging.getLogger(__name__)

ACTION_SOURCES = {
    "generation": CreditTransactionSource.GENERATION,
    "training": CreditTransactionSource.TRAINING,
    "upscale": CreditTransactionSource.UPSCALE,
    "video": CreditTransactionSource.VIDEO,
    "edit": CreditTransactionSource.EDIT,
}


def refund_action_for(action: str) -> str:
    return f"{action}_refund"


class CreditManager:
    """Service for credit accounting on the User row"""

    def __init__(self, db: Session):
        self.db = db

    def _get_user(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ValueError(f"User {user_id} not found")
        return user

    @staticmethod
    def credit_summary(user: User) -> Dict[str, int]:
        limit = user.credits_limit or 0
        used = user.credits_used or 0
        balance = user.credits_balance or 0
        subscription_credits = max(limit - used, 0)
        return {
            "credits_limit": limit,
            "credits_used": used,
            "credits_balance": balance,
            "subscription_credits": subscription_credits,
            "purchased_credits": balance,
            "available": subscription_credits + balance,
        }

    def get_user_credits(self, user_id: str) -> Dict[str, int]:
        return self.credit_summary(self._get_user(user_id))

    def can_user_afford(self, user_id: str, amount: int) -> Tuple[bool, Optional[str]]:
        available = self.get_user_credits(user_id)["available"]
        if available < amount:
            return False, f"Insufficient credits. Need {amount}, have {available}"
        return True, None

    def deduct_credits(
        self,
        user_id: str,
        amount: int,
        action: str,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> UsageLog:
        """
        Debit credits and record the usage

        Raises:
            InsufficientCreditsError: available credits below amount
        """
        user = self._get_user(user_id)
        summary = self.credit_summary(user)
        if summary["available"] < amount:
            raise InsufficientCreditsError(required=amount, available=summary["available"])

        from_subscription = min(summary["subscription_credits"], amount)
        from_balance = amount - from_subscription
        user.credits_used = (user.credits_used or 0) + from_subscription
        user.credits_balance = (user.credits_balance or 0) - from_balance

        usage = UsageLog(
            user_id=user_id,
            action=action,
            credits_used=amount,
            details={
                **(details or {}),
                "reference_id": reference_id,
                "description": description,
                "from_subscription": from_subscription,
                "from_balance": from_balance,
            }
        )
        self.db.add(usage)

        if amount > 0:
            self.db.add(CreditTransaction(
                user_id=user_id,
                type=CreditTransactionType.SPENT.value,
                source=ACTION_SOURCES.get(action, CreditTransactionSource.GENERATION).value,
                amount=-amount,
                description=description or f"{action} ({amount} credits)",
                reference_id=reference_id,
                balance_after=summary["available"] - amount
            ))

        logger.info(f"Debited {amount} credits from user {user_id} for {action} {reference_id or ''}".rstrip())
        return usage

    def _find_usage(self, user_id: str, action: str, reference_id: str) -> Optional[UsageLog]:
        return self.db.query(UsageLog).filter(
            UsageLog.user_id == user_id,
            UsageLog.action == action,
            UsageLog.details["reference_id"].astext == reference_id
        ).order_by(UsageLog.created_at.desc()).first()

    def has_refund(self, user_id: str, action: str, reference_id: str) -> bool:
        return self._find_usage(user_id, refund_action_for(action), reference_id) is not None

    def refund_credits(
        self,
        user_id: str,
        action: str,
        reference_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None
    ) -> int:
        """
        Refund an earlier debit. Idempotent per (action, reference_id).

        Args:
            amount: credits to refund; defaults to the original debit

        Returns:
            Credits refunded (0 when already refunded or nothing was charged)
        """
        if self.has_refund(user_id, action, reference_id):
            logger.info(f"Refund for {action} {reference_id} already recorded - skipping")
            return 0

        original = self._find_usage(user_id, action, reference_id)
        if amount is None:
            amount = original.credits_used if original else 0
        if not amount or amount <= 0:
            return 0

        original_details = (original.details or {}) if original else {}
        from_balance = min(int(original_details.get("from_balance") or 0), amount)
        from_subscription = amount - from_balance

        user = self._get_user(user_id)
        user.credits_used = max((user.credits_used or 0) - from_subscription, 0)
        user.credits_balance = (user.credits_balance or 0) + from_balance

        self.db.add(UsageLog(
            user_id=user_id,
            action=refund_action_for(action),
            credits_used=-amount,
            details={
                "reference_id": reference_id,
                "original_credits_used": original.credits_used if original else amount,
                "reason": reason or f"{action} failed",
            }
        ))
        self.db.add(CreditTransaction(
            user_id=user_id,
            type=CreditTransactionType.REFUNDED.value,
            source=CreditTransactionSource.REFUND.value,
            amount=amount,
            description=reason or f"Refund for failed {action}",
            reference_id=reference_id,
            balance_after=self.credit_summary(user)["available"]
        ))

        logger.info(f"Refunded {amount} credits to user {user_id} for {action} {reference_id}")
        return amount

    def add_purchased_credits(
        self,
        user: User,
        credit_amount: int,
        bonus_credits: int = 0,
        credit_purchase_id: Optional[str] = None,
        description: str = "Credit purchase"
    ) -> int:
        """Add purchased (and bonus) credits to the user's balance; returns the total added"""
        total = credit_amount + bonus_credits
        user.credits_balance = (user.credits_balance or 0) + total
        balance_after = self.credit_summary(user)["available"]

        self.db.add(CreditTransaction(
            user_id=user.id,
            type=CreditTransactionType.PURCHASED.value,
            source=CreditTransactionSource.PURCHASE.value,
            amount=credit_amount,
            description=description,
            reference_id=credit_purchase_id,
            credit_purchase_id=credit_purchase_id,
            balance_after=balance_after - bonus_credits
        ))
        if bonus_credits > 0:
            self.db.add(CreditTransaction(
                user_id=user.id,
                type=CreditTransactionType.EARNED.value,
                source=CreditTransactionSource.BONUS.value,
                amount=bonus_credits,
                description=f"Bonus credits: {description}",
                reference_id=credit_purchase_id,
                credit_purchase_id=credit_purchase_id,
                balance_after=balance_after
            ))
        return total

    def renew_monthly_credits(self, user: User, plan: Optional[str] = None) -> int:
        """Reset subscription usage and set the limit from the plan"""
        plan = plan or user.plan
        credits = get_plan_credits(plan)
        user.credits_used = 0
        user.credits_limit = credits

        self.db.add(CreditTransaction(
            user_id=user.id,
            type=CreditTransactionType.RENEWED.value,
            source=CreditTransactionSource.SUBSCRIPTION.value,
            amount=credits,
            description=f"Monthly credits: {plan} plan",
            balance_after=self.credit_summary(user)["available"]
        ))
        self.db.add(UsageLog(
            user_id=user.id,
            action="SUBSCRIPTION_CREDIT_RESET",
            credits_used=0,
            details={"plan": plan, "credits_limit": credits}
        ))
        logger.info(f"Renewed {credits} monthly credits for user {user.id} ({plan})")
        return credits

    def check_model_creation_limit(self, user_id: str) -> Dict[str, Any]:
        """Active model count against the plan's max_models (None = unlimited)"""
        user = self._get_user(user_id)
        max_models = get_plan(user.plan).get("max_models")
        current = self.db.query(AIModel).filter(
            AIModel.user_id == user_id,
            AIModel.status != ModelStatus.DELETED.value
        ).count()
        allowed = max_models is None or current < max_models
        return {
            "allowed": allowed,
            "current": current,
            "limit": max_models,
            "reason": None if allowed else f"Plan {user.plan} allows up to {max_models} models",
        }

    def get_usage_stats(self, user_id: str, days: int = 30) -> Dict[str, Any]:
        """Credits and operation counts per action over the last `days` days"""
        since = datetime.utcnow() - timedelta(days=days)

        def usage_rows():
            try:
                return self.db.query(
                    UsageLog.action,
                    func.coalesce(func.sum(UsageLog.credits_used), 0),
                    func.count(UsageLog.id)
                ).filter(
                    UsageLog.user_id == user_id,
                    UsageLog.created_at >= since,
                    ~UsageLog.action.like("rate_limit_%")
                ).group_by(UsageLog.action).all()
            except Exception:
                self.db.rollback()
                raise

        # Empty counts when the database stays unreachable
        rows = with_fallback(usage_rows, [])

        by_action = {action: {"credits": int(credits or 0), "count": count} for action, credits, count in rows}
        return {
            "period_days": days,
            "total_credits_used": sum(v["credits"] for v in by_action.values()),
            "by_action": by_action,
            **self.get_user_credits(user_id),
        }

    def get_transactions(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[str] = None
    ) -> List[CreditTransaction]:
        query = self.db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
        if transaction_type:
            query = query.filter(CreditTransaction.type == transaction_type.upper())
        return query.order_by(CreditTransaction.created_at.desc()).offset(offset).limit(limit).all()
