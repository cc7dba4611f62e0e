"""
Rate Limiter - per-plan sliding windows backed by usage logs
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import logging
import math

from ..db.models import UsageLog

logger = logging.getLogger(__name__)

ACTION_PREFIX = "rate_limit_"
LOG_RETENTION_DAYS = 7

_15_MIN = timedelta(minutes=15)
_1_HOUR = timedelta(hours=1)
_1_DAY = timedelta(days=1)

# action -> plan -> (requests, window)
RATE_LIMITS = {
    "api": {"STARTER": (100, _15_MIN), "PREMIUM": (500, _15_MIN), "GOLD": (1000, _15_MIN)},
    "upload": {"STARTER": (20, _1_HOUR), "PREMIUM": (100, _1_HOUR), "GOLD": (500, _1_HOUR)},
    "training": {"STARTER": (1, _1_DAY), "PREMIUM": (5, _1_DAY), "GOLD": (20, _1_DAY)},
    "generation": {"STARTER": (10, _1_HOUR), "PREMIUM": (50, _1_HOUR), "GOLD": (200, _1_HOUR)},
    "auth": {"STARTER": (5, _15_MIN), "PREMIUM": (5, _15_MIN), "GOLD": (5, _15_MIN)},
}


def get_limit_config(action: str, plan: str = "STARTER"):
    limits = RATE_LIMITS.get(action)
    if not limits:
        raise ValueError(f"Rate limit configuration not found for action: {action}")
    return limits.get((plan or "STARTER").upper(), limits["STARTER"])


class RateLimiter:
    """Counts rate_limit_{action} usage logs inside the window"""

    def __init__(self, db: Session):
        self.db = db

    def check_limit(self, user_id: str, action: str, plan: str = "STARTER", now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Check whether the user may perform `action`

        Returns:
            {allowed, limit, remaining, reset_time, retry_after}
        """
        requests, window = get_limit_config(action, plan)
        now = now or datetime.utcnow()
        window_start = now - window

        attempts = self.db.query(UsageLog).filter(
            UsageLog.user_id == user_id,
            UsageLog.action == f"{ACTION_PREFIX}{action}",
            UsageLog.created_at >= window_start
        ).order_by(UsageLog.created_at.desc()).all()

        count = len(attempts)
        allowed = count < requests
        reset_time = attempts[-1].created_at + window if attempts else now + window
        retry_after = None if allowed else max(math.ceil((reset_time - now).total_seconds()), 0)

        return {
            "allowed": allowed,
            "limit": requests,
            "remaining": max(requests - count, 0),
            "reset_time": reset_time,
            "retry_after": retry_after,
        }

    def record_attempt(self, user_id: str, action: str, metadata: Optional[Dict[str, Any]] = None):
        """Record an attempt; the caller's transaction commits it"""
        self.db.add(UsageLog(
            user_id=user_id,
            action=f"{ACTION_PREFIX}{action}",
            credits_used=0,
            details=metadata or {}
        ))

    def get_usage_stats(self, user_id: str, plan: str = "STARTER") -> Dict[str, Dict[str, Any]]:
        stats = {}
        for action in RATE_LIMITS:
            result = self.check_limit(user_id, action, plan)
            stats[action] = {
                "current": result["limit"] - result["remaining"],
                "limit": result["limit"],
                "reset_time": result["reset_time"].isoformat(),
            }
        return stats

    def cleanup_old_logs(self, days: int = LOG_RETENTION_DAYS) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        deleted = self.db.query(UsageLog).filter(
            UsageLog.action.like(f"{ACTION_PREFIX}%"),
            UsageLog.created_at < cutoff
        ).delete(synchronize_session=False)
        self.db.commit()
        logger.info(f"Removed {deleted} rate limit logs older than {days} days")
        return deleted
