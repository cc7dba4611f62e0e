"""
Image generation and edit history models
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, generate_id

UPSCALE_PROMPT_PREFIX = "[UPSCALED]"


class GenerationStatus(str, enum.Enum):
    """Generation status enum"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Generation(Base):
    """One AI image job (generation or upscale) and its resulting media"""
    __tablename__ = "generations"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    model_id = Column(String, ForeignKey("ai_models.id", ondelete="SET NULL"), nullable=True, index=True)

    prompt = Column(Text, nullable=False)
    negative_prompt = Column(Text, nullable=True)
    aspect_ratio = Column(String, nullable=False, default="1:1")
    resolution = Column(String, nullable=False, default="512x512")
    variations = Column(Integer, nullable=False, default=1)
    strength = Column(Float, nullable=True)
    seed = Column(Integer, nullable=True)
    style = Column(String, nullable=True)

    status = Column(String, nullable=False, default=GenerationStatus.PENDING.value, index=True)
    job_id = Column(String, nullable=True, unique=True, index=True)  # Replicate prediction ID
    image_urls = Column(JSONB, nullable=False, default=list)
    thumbnail_urls = Column(JSONB, nullable=False, default=list)
    storage_keys = Column(JSONB, nullable=False, default=list)
    processing_time = Column(Integer, nullable=True)  # milliseconds
    estimated_cost = Column(Integer, nullable=True)  # credits charged
    error_message = Column(Text, nullable=True)
    extra_metadata = Column(JSONB, nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="generations")
    model = relationship("AIModel", back_populates="generations")

    __table_args__ = (
        Index("idx_generations_status_created", "status", "created_at"),
        Index("idx_generations_user_created", "user_id", "created_at"),
    )

    @property
    def is_upscale(self) -> bool:
        return bool(self.prompt) and self.prompt.startswith(UPSCALE_PROMPT_PREFIX)


class EditHistory(Base):
    """Image editor result"""
    __tablename__ = "edit_history"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    generation_id = Column(String, ForeignKey("generations.id", ondelete="SET NULL"), nullable=True)
    original_image_url = Column(String, nullable=False)
    edited_image_url = Column(String, nullable=False)
    thumbnail_url = Column(String, nullable=True)
    operation = Column(String, nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    extra_metadata = Column(JSONB, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
