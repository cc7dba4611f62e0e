"""
Image generation API routes
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .schemas import GenerationResponse, dump, dump_all
from .services.generation_service import (
    GenerationService,
    DEFAULT_ASPECT_RATIO,
    DEFAULT_RESOLUTION,
    DEFAULT_STRENGTH,
    DEFAULT_STYLE,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generations", tags=["generations"])


class GenerationCreate(BaseModel):
    model_id: Optional[str] = None
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    resolution: str = DEFAULT_RESOLUTION
    variations: int = 1
    strength: float = DEFAULT_STRENGTH
    seed: Optional[int] = None
    style: str = DEFAULT_STYLE
    steps: Optional[int] = None
    guidance_scale: Optional[float] = None


def get_generation_service(db: Session = Depends(get_db)) -> GenerationService:
    return GenerationService(db)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_generation(
    data: GenerationCreate,
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    """Debit credits and start a generation; results arrive by webhook or polling"""
    try:
        generation = service.create_generation(
            current_user,
            data.model_id,
            data.prompt,
            negative_prompt=data.negative_prompt,
            aspect_ratio=data.aspect_ratio,
            resolution=data.resolution,
            variations=data.variations,
            strength=data.strength,
            seed=data.seed,
            style=data.style,
            steps=data.steps,
            guidance_scale=data.guidance_scale,
        )
    except (ValueError, LookupError) as e:
        raise to_http_exception(e)
    return dump(GenerationResponse, generation)


@router.get("")
async def list_generations(
    model_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    result = service.list_generations(current_user.id, model_id, status_filter, search, page, limit)
    result["generations"] = dump_all(GenerationResponse, result["generations"])
    return result


@router.post("/poll")
async def poll_generations(
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    """Reconcile this user's generations stuck in PROCESSING for over five minutes"""
    results = service.poll_user_generations(current_user.id)
    return {"success": True, "checked": len(results), "results": results}


@router.get("/{generation_id}")
async def get_generation(
    generation_id: str,
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    generation = service.get_generation(generation_id, current_user.id)
    if not generation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    return dump(GenerationResponse, generation)


@router.post("/{generation_id}/check-status")
async def check_generation_status(
    generation_id: str,
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    result = service.check_status(generation_id, current_user.id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    return result


@router.delete("/{generation_id}")
async def delete_generation(
    generation_id: str,
    current_user: User = Depends(get_current_user),
    service: GenerationService = Depends(get_generation_service)
):
    if not service.delete_generation(generation_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    return {"success": True}
