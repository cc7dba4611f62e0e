"""
Collection and photo package models
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime

from ..base import Base, generate_id


class Collection(Base):
    """User-curated set of generated images"""
    __tablename__ = "collections"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    image_urls = Column(JSONB, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PhotoPackage(Base):
    """Curated prompt pack a user can run against one of their models"""
    __tablename__ = "photo_packages"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True, index=True)
    prompts = Column(JSONB, nullable=False, default=list)
    preview_urls = Column(JSONB, nullable=False, default=list)
    price = Column(Integer, nullable=False, default=0)  # credits
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
