"""
Payment, credit purchase, credit transaction and webhook event models
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Numeric, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
import enum

from ..base import Base, generate_id


class PaymentType(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    CREDIT_PURCHASE = "CREDIT_PURCHASE"
    PHOTO_PACKAGE = "PHOTO_PACKAGE"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RECEIVED = "RECEIVED"
    OVERDUE = "OVERDUE"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class BillingType(str, enum.Enum):
    PIX = "PIX"
    BOLETO = "BOLETO"
    CREDIT_CARD = "CREDIT_CARD"
    UNDEFINED = "UNDEFINED"


class CreditTransactionType(str, enum.Enum):
    EARNED = "EARNED"
    SPENT = "SPENT"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"
    PURCHASED = "PURCHASED"
    RENEWED = "RENEWED"


class CreditTransactionSource(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    PURCHASE = "PURCHASE"
    BONUS = "BONUS"
    GENERATION = "GENERATION"
    TRAINING = "TRAINING"
    UPSCALE = "UPSCALE"
    VIDEO = "VIDEO"
    EDIT = "EDIT"
    REFUND = "REFUND"
    EXPIRATION = "EXPIRATION"


class Payment(Base):
    """Payment created through Asaas"""
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    asaas_payment_id = Column(String, nullable=True, unique=True, index=True)
    subscription_id = Column(String, nullable=True, index=True)
    type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    billing_type = Column(String, nullable=False, default=BillingType.UNDEFINED.value)
    value = Column(Numeric(10, 2), nullable=False)
    description = Column(String, nullable=True)
    due_date = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    external_reference = Column(String, nullable=True, index=True)
    plan = Column(String, nullable=True)
    billing_cycle = Column(String, nullable=True)
    credit_amount = Column(Integer, nullable=True)
    pix_qr_code = Column(Text, nullable=True)  # base64 PNG
    pix_payload = Column(Text, nullable=True)  # copy-and-paste code
    boleto_identification_field = Column(String, nullable=True)
    invoice_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CreditPurchase(Base):
    """One-off credit package purchase"""
    __tablename__ = "credit_purchases"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    asaas_payment_id = Column(String, nullable=True, unique=True, index=True)
    package_id = Column(String, nullable=True)
    package_name = Column(String, nullable=False)
    credit_amount = Column(Integer, nullable=False)
    bonus_credits = Column(Integer, nullable=False, default=0)
    value = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    valid_until = Column(DateTime, nullable=False)
    is_expired = Column(Boolean, nullable=False, default=False)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def total_credits(self) -> int:
        return (self.credit_amount or 0) + (self.bonus_credits or 0)


class CreditTransaction(Base):
    """Ledger entry for every credit movement"""
    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # negative for spending
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    credit_purchase_id = Column(String, ForeignKey("credit_purchases.id", ondelete="SET NULL"), nullable=True)
    balance_after = Column(Integer, nullable=True)
    extra_metadata = Column(JSONB, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
    )


class WebhookEvent(Base):
    """Received payment webhook, kept for idempotency and retry tracking"""
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=generate_id)
    provider = Column(String, nullable=False, default="asaas", index=True)
    event = Column(String, nullable=False, index=True)
    idempotency_key = Column(String, nullable=False)
    asaas_payment_id = Column(String, nullable=True, index=True)
    asaas_subscription_id = Column(String, nullable=True)
    asaas_customer_id = Column(String, nullable=True)
    payload = Column(JSONB, nullable=False)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    processing_error = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_webhook_events_idempotency_key"),
    )
