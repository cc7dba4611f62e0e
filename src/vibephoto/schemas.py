"""
Pydantic response schemas
ORM rows are rendered through these so routes never leak internal columns
"""
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List, Dict, Any


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UserResponse(ORMModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    plan: str
    subscription_status: Optional[str] = None
    credits_limit: int
    credits_used: int
    credits_balance: int
    available_credits: int
    created_at: datetime


class ApiKeyResponse(ORMModel):
    id: str
    name: str
    key_prefix: str
    is_active: bool
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class AIModelResponse(ORMModel):
    id: str
    name: str
    model_class: str = Field(serialization_alias="class")
    status: str
    total_photos: Optional[int] = None
    trigger_word: Optional[str] = None
    training_job_id: Optional[str] = None
    model_url: Optional[str] = None
    quality_score: Optional[float] = None
    progress: Optional[int] = None
    estimated_time: Optional[int] = None
    error_message: Optional[str] = None
    training_started_at: Optional[datetime] = None
    training_completed_at: Optional[datetime] = None
    created_at: datetime


class GenerationResponse(ORMModel):
    id: str
    model_id: Optional[str] = None
    prompt: str
    negative_prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    variations: Optional[int] = None
    style: Optional[str] = None
    status: str
    job_id: Optional[str] = None
    image_urls: List[str] = []
    thumbnail_urls: List[str] = []
    processing_time: Optional[int] = None
    estimated_cost: Optional[int] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class EditHistoryResponse(ORMModel):
    id: str
    generation_id: Optional[str] = None
    original_image_url: str
    edited_image_url: str
    thumbnail_url: Optional[str] = None
    operation: str
    prompt: str
    created_at: datetime


class VideoResponse(ORMModel):
    id: str
    source_image_url: Optional[str] = None
    source_generation_id: Optional[str] = None
    prompt: str
    duration: int
    aspect_ratio: str
    quality: str
    template: Optional[str] = None
    status: str
    job_id: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    credits_used: int
    progress: Optional[int] = None
    error_message: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    created_at: datetime


class CollectionResponse(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    is_public: bool
    image_urls: List[str] = []
    created_at: datetime


class PhotoPackageResponse(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    prompts: List[Any] = []
    preview_urls: List[str] = []
    price: Optional[int] = None
    is_premium: bool = False


class CreditTransactionResponse(ORMModel):
    id: str
    type: str
    source: str
    amount: int
    description: Optional[str] = None
    reference_id: Optional[str] = None
    balance_after: Optional[int] = None
    created_at: datetime


def dump(schema, row) -> Dict[str, Any]:
    """Validate an ORM row against a schema and return JSON-ready data"""
    return schema.model_validate(row).model_dump(mode="json", by_alias=True)


def dump_all(schema, rows) -> List[Dict[str, Any]]:
    return [dump(schema, row) for row in rows]
