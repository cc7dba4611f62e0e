"""
User, API key and consent models
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, generate_id


class Plan(str, enum.Enum):
    """Subscription plan enum"""
    STARTER = "STARTER"
    PREMIUM = "PREMIUM"
    GOLD = "GOLD"


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum"""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    INACTIVE = "INACTIVE"


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(Base):
    """User account model"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_id)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.USER.value)
    is_active = Column(Boolean, default=True, nullable=False)

    # Subscription
    plan = Column(String, nullable=False, default=Plan.STARTER.value, index=True)
    subscription_status = Column(String, nullable=True, index=True)
    subscription_id = Column(String, nullable=True, index=True)  # Asaas subscription ID
    asaas_customer_id = Column(String, nullable=True, unique=True, index=True)
    billing_cycle = Column(String, nullable=True)  # 'MONTHLY' or 'YEARLY'
    subscription_started_at = Column(DateTime, nullable=True)
    subscription_ends_at = Column(DateTime, nullable=True)

    # Credits: available = credits_limit - credits_used + credits_balance
    credits_limit = Column(Integer, nullable=False, default=50)
    credits_used = Column(Integer, nullable=False, default=0)
    credits_balance = Column(Integer, nullable=False, default=0)  # Purchased credits

    # Billing details (Asaas customer data)
    cpf_cnpj = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    mobile_phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    address_number = Column(String, nullable=True)
    complement = Column(String, nullable=True)
    province = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    models = relationship("AIModel", back_populates="user", cascade="all, delete-orphan")
    generations = relationship("Generation", back_populates="user", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="user", cascade="all, delete-orphan")
    consents = relationship("UserConsent", back_populates="user", cascade="all, delete-orphan")

    @property
    def available_credits(self) -> int:
        return max((self.credits_limit or 0) - (self.credits_used or 0) + (self.credits_balance or 0), 0)


class ApiKey(Base):
    """Personal API key - only the SHA-256 hash is stored"""
    __tablename__ = "api_keys"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    key_hash = Column(String, unique=True, index=True, nullable=False)
    key_prefix = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="api_keys")


class UserConsent(Base):
    """Record of a consent the user granted or revoked (terms, privacy, marketing)"""
    __tablename__ = "user_consents"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    consent_type = Column(String, nullable=False, index=True)
    version = Column(String, nullable=False, default="1.0")
    granted = Column(Boolean, nullable=False, default=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="consents")
