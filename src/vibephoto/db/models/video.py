"""
Video generation model
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
import enum

from ..base import Base, generate_id


class VideoStatus(str, enum.Enum):
    """Video generation status enum"""
    STARTING = "STARTING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class VideoGeneration(Base):
    """Image-to-video or text-to-video job"""
    __tablename__ = "video_generations"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    source_image_url = Column(String, nullable=True)
    source_generation_id = Column(String, ForeignKey("generations.id", ondelete="SET NULL"), nullable=True)

    prompt = Column(Text, nullable=False)
    negative_prompt = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False, default=5)
    aspect_ratio = Column(String, nullable=False, default="16:9")
    quality = Column(String, nullable=False, default="standard")
    template = Column(String, nullable=True)

    status = Column(String, nullable=False, default=VideoStatus.STARTING.value, index=True)
    job_id = Column(String, nullable=True, unique=True, index=True)
    video_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    storage_key = Column(String, nullable=True)
    credits_used = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    extra_metadata = Column(JSONB, nullable=True)

    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_video_generations_user_status", "user_id", "status"),
    )
