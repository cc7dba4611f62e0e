"""
Custom AI model (LoRA fine-tune) model
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, generate_id


class ModelStatus(str, enum.Enum):
    """AI model lifecycle status"""
    DRAFT = "DRAFT"
    UPLOADING = "UPLOADING"
    TRAINING = "TRAINING"
    READY = "READY"
    ERROR = "ERROR"
    DELETED = "DELETED"


class ModelClass(str, enum.Enum):
    """Subject class used for autocaptioning"""
    MAN = "MAN"
    WOMAN = "WOMAN"
    BOY = "BOY"
    GIRL = "GIRL"
    ANIMAL = "ANIMAL"


class AIModel(Base):
    """User-trained AI model"""
    __tablename__ = "ai_models"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    model_class = Column("class", String, nullable=False, default=ModelClass.MAN.value)
    status = Column(String, nullable=False, default=ModelStatus.DRAFT.value, index=True)

    training_photos = Column(JSONB, nullable=False, default=list)  # Photo URLs
    total_photos = Column(Integer, nullable=False, default=0)
    training_zip_url = Column(String, nullable=True)
    trigger_word = Column(String, nullable=True)
    training_config = Column(JSONB, nullable=True)

    training_job_id = Column(String, nullable=True, unique=True, index=True)  # Replicate training ID
    destination = Column(String, nullable=True)  # owner/name of the Replicate model receiving weights
    model_url = Column(String, nullable=True)  # Trained weights or version
    quality_score = Column(Float, nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    estimated_time = Column(Integer, nullable=True)  # minutes
    error_message = Column(Text, nullable=True)

    training_started_at = Column(DateTime, nullable=True)
    training_completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="models")
    generations = relationship("Generation", back_populates="model")

    __table_args__ = (
        Index("idx_ai_models_user_status", "user_id", "status"),
    )
