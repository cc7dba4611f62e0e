"""
AI model API routes - create models from photo URLs and start training
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import Optional, List
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .schemas import AIModelResponse, dump, dump_all
from .services.model_service import ModelService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/models", tags=["models"])


class ModelCreate(BaseModel):
    name: str
    model_class: str = Field("MAN", alias="class")
    photo_urls: List[str] = []


class TrainingRequest(BaseModel):
    trigger_word: Optional[str] = None
    class_word: Optional[str] = None
    steps: Optional[int] = None


def get_model_service(db: Session = Depends(get_db)) -> ModelService:
    return ModelService(db)


@router.get("")
async def list_models(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    service: ModelService = Depends(get_model_service)
):
    result = service.list_models(current_user.id, status_filter, limit, offset)
    result["models"] = dump_all(AIModelResponse, result["models"])
    return result


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_model(
    data: ModelCreate,
    current_user: User = Depends(get_current_user),
    service: ModelService = Depends(get_model_service)
):
    try:
        model = service.create_model(current_user, data.name, data.model_class, data.photo_urls)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)
    return dump(AIModelResponse, model)


@router.get("/{model_id}")
async def get_model(
    model_id: str,
    current_user: User = Depends(get_current_user),
    service: ModelService = Depends(get_model_service)
):
    model = service.get_model(model_id, current_user.id)
    if not model:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return dump(AIModelResponse, model)


@router.post("/{model_id}/train")
async def train_model(
    model_id: str,
    data: Optional[TrainingRequest] = None,
    current_user: User = Depends(get_current_user),
    service: ModelService = Depends(get_model_service)
):
    """Start Replicate training; AIError, rate limit and moderation errors go to their handlers"""
    data = data or TrainingRequest()
    try:
        model = service.start_training(
            current_user,
            model_id,
            trigger_word=data.trigger_word,
            class_word=data.class_word,
            steps=data.steps,
        )
    except (ValueError, LookupError) as e:
        raise to_http_exception(e)
    return dump(AIModelResponse, model)


@router.delete("/{model_id}")
async def delete_model(
    model_id: str,
    current_user: User = Depends(get_current_user),
    service: ModelService = Depends(get_model_service)
):
    if not service.delete_model(current_user, model_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Model not found")
    return {"success": True}
