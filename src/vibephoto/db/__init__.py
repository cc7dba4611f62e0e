"""
Database module for VibePhoto
PostgreSQL-only database layer
"""
from .engine import engine, SessionLocal, get_db
from .base import Base
from .models import (
    User,
    ApiKey,
    UserConsent,
    AIModel,
    Generation,
    EditHistory,
    VideoGeneration,
    Collection,
    PhotoPackage,
    Payment,
    CreditPurchase,
    CreditTransaction,
    WebhookEvent,
    UsageLog,
    SystemLog,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "Base",
    "User",
    "ApiKey",
    "UserConsent",
    "AIModel",
    "Generation",
    "EditHistory",
    "VideoGeneration",
    "Collection",
    "PhotoPackage",
    "Payment",
    "CreditPurchase",
    "CreditTransaction",
    "WebhookEvent",
    "UsageLog",
    "SystemLog",
]
