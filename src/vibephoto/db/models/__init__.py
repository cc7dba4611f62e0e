"""
Database models for VibePhoto
PostgreSQL models with JSONB support
"""
from .user import User, ApiKey, UserConsent, Plan, SubscriptionStatus, UserRole
from .ai_model import AIModel, ModelStatus, ModelClass
from .generation import Generation, EditHistory, GenerationStatus, UPSCALE_PROMPT_PREFIX
from .video import VideoGeneration, VideoStatus
from .collection import Collection, PhotoPackage
from .billing import (
    Payment,
    CreditPurchase,
    CreditTransaction,
    WebhookEvent,
    PaymentType,
    PaymentStatus,
    BillingType,
    CreditTransactionType,
    CreditTransactionSource,
)
from .usage import UsageLog, SystemLog

__all__ = [
    "User",
    "ApiKey",
    "UserConsent",
    "Plan",
    "SubscriptionStatus",
    "UserRole",
    "AIModel",
    "ModelStatus",
    "ModelClass",
    "Generation",
    "EditHistory",
    "GenerationStatus",
    "UPSCALE_PROMPT_PREFIX",
    "VideoGeneration",
    "VideoStatus",
    "Collection",
    "PhotoPackage",
    "Payment",
    "CreditPurchase",
    "CreditTransaction",
    "WebhookEvent",
    "PaymentType",
    "PaymentStatus",
    "BillingType",
    "CreditTransactionType",
    "CreditTransactionSource",
    "UsageLog",
    "SystemLog",
]
