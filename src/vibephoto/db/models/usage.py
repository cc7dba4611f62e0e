"""
Usage log and system log models
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime

from ..base import Base, generate_id


class UsageLog(Base):
    """Credit usage, refunds, payments and rate-limit attempts per user"""
    __tablename__ = "usage_logs"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    credits_used = Column(Integer, nullable=False, default=0)  # negative for refunds
    details = Column(JSONB, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_usage_logs_user_action_created", "user_id", "action", "created_at"),
    )


class SystemLog(Base):
    """Persisted application log entry"""
    __tablename__ = "system_logs"

    id = Column(String, primary_key=True, default=generate_id)
    level = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    request_id = Column(String, nullable=True)
    extra_metadata = Column(JSONB, nullable=True)
    stack = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
