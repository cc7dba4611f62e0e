"""
Content Moderator - keyword and pattern screening of prompts
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import logging
import re

from ..db.models import UsageLog

logger = logging.getLogger(__name__)

VIOLATION_ACTION = "content_violation"

BANNED_WORDS = {
    "explicit": [
        "nude", "naked", "nsfw", "explicit", "sexual", "porn", "erotic",
        "sex", "xxx", "adult", "aroused", "orgasm", "genitals", "intimate",
    ],
    "violence": [
        "violence", "blood", "gore", "death", "kill", "murder", "weapon",
        "gun", "knife", "sword", "bomb", "torture", "pain", "hurt",
    ],
    "hate": [
        "hate", "racist", "nazi", "terrorist", "supremacist", "bigot",
        "slur", "discrimination", "prejudice",
    ],
    "drugs": [
        "drug", "cocaine", "heroin", "marijuana", "weed", "meth", "alcohol",
        "drunk", "high", "stoned", "addiction",
    ],
    "minors": [
        "child", "kid", "minor", "baby", "toddler", "teen", "underage",
        "school", "student", "young",
    ],
}
HIGH_SEVERITY_CATEGORIES = ("explicit", "minors", "violence")

SUSPICIOUS_PATTERNS = [
    re.compile(r"\b(very\s+)?(young|little|small)\s+(girl|boy|child)\b", re.IGNORECASE),
    re.compile(r"\b(barely|just|recently)\s+(18|legal|adult)\b", re.IGNORECASE),
    re.compile(r"\b(school|uniform|student)\s+(girl|boy)\b", re.IGNORECASE),
    re.compile(r"\b(realistic|photorealistic)\s+(child|minor|kid)\b", re.IGNORECASE),
    re.compile(r"\b(deepfake|fake\s+porn|non-?consensual)\b", re.IGNORECASE),
]

DANGEROUS_COMBINATIONS = [
    ("young", "naked"),
    ("child", "sexual"),
    ("minor", "explicit"),
    ("school", "nude"),
    ("realistic", "underage"),
]

# Checked in order; first matching category wins
REASONS = [
    ("minors", "Content involving minors is strictly prohibited"),
    ("explicit", "Explicit or sexual content is not allowed"),
    ("violence", "Violent content is not permitted"),
    ("hate", "Hate speech or discriminatory content is prohibited"),
    ("suspicious_pattern", "Content matches prohibited patterns"),
    ("dangerous_combination", "Content contains prohibited keyword combinations"),
]
DEFAULT_REASON = "Content violates community guidelines"

ALLOW_THRESHOLD = 0.5
VIOLATION_HISTORY_DAYS = 30


def analyze_prompt(prompt: str, past_violations: int = 0) -> Dict[str, Any]:
    """
    Score a prompt without touching the database

    Returns:
        {is_allowed, reason, severity ('low'|'medium'|'high'), categories, confidence}
    """
    normalized = (prompt or "").lower().strip()
    categories: List[str] = []
    severity = "low"
    confidence = 0.0

    for category, words in BANNED_WORDS.items():
        found = [word for word in words if word in normalized]
        if found:
            categories.append(category)
            confidence += len(found) * 0.2
            if category in HIGH_SEVERITY_CATEGORIES:
                severity = "high"
            elif severity != "high":
                severity = "medium"

    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(normalized):
            categories.append("suspicious_pattern")
            confidence += 0.4
            severity = "high"

    for first, second in DANGEROUS_COMBINATIONS:
        if first in normalized and second in normalized:
            categories.append("dangerous_combination")
            confidence += 0.6
            severity = "high"

    if past_violations > 0:
        confidence += past_violations * 0.1
        if past_violations >= 3:
            severity = "high"

    confidence = min(round(confidence, 4), 1.0)
    is_allowed = confidence < ALLOW_THRESHOLD and severity != "high"
    return {
        "is_allowed": is_allowed,
        "reason": None if is_allowed else generate_reason(categories),
        "severity": severity,
        "categories": categories,
        "confidence": confidence,
    }


def generate_reason(categories: List[str]) -> str:
    for category, reason in REASONS:
        if category in categories:
            return reason
    return DEFAULT_REASON


class ContentModerator:
    """Prompt moderation with per-user violation history"""

    def __init__(self, db: Session):
        self.db = db

    def get_user_violation_count(self, user_id: str, days: int = VIOLATION_HISTORY_DAYS) -> int:
        since = datetime.utcnow() - timedelta(days=days)
        return self.db.query(UsageLog).filter(
            UsageLog.user_id == user_id,
            UsageLog.action == VIOLATION_ACTION,
            UsageLog.created_at >= since
        ).count()

    def moderate_content(self, prompt: str, user_id: str) -> Dict[str, Any]:
        result = analyze_prompt(prompt, self.get_user_violation_count(user_id))
        if not result["is_allowed"]:
            self._log_violation(prompt, user_id, result)
        return result

    def _log_violation(self, prompt: str, user_id: str, result: Dict[str, Any]):
        try:
            self.db.add(UsageLog(
                user_id=user_id,
                action=VIOLATION_ACTION,
                credits_used=0,
                details={
                    "content": prompt,
                    "severity": result["severity"],
                    "categories": result["categories"],
                    "confidence": result["confidence"],
                    "reason": result["reason"],
                }
            ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to log moderation result for user {user_id}: {e}")
        logger.warning(f"Blocked prompt from user {user_id}: {result['categories']}")

    def get_violation_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        query = self.db.query(UsageLog).filter(UsageLog.action == VIOLATION_ACTION)
        if user_id:
            query = query.filter(UsageLog.user_id == user_id)
        violations = query.all()

        week_ago = datetime.utcnow() - timedelta(days=7)
        by_category: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for violation in violations:
            details = violation.details or {}
            for category in details.get("categories", []):
                by_category[category] = by_category.get(category, 0) + 1
            if details.get("severity"):
                by_severity[details["severity"]] = by_severity.get(details["severity"], 0) + 1

        return {
            "total": len(violations),
            "recent": sum(1 for v in violations if v.created_at and v.created_at >= week_ago),
            "by_category": by_category,
            "by_severity": by_severity,
        }
