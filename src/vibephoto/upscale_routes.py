"""
Upscale API routes
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .services.upscale_service import UpscaleService, PLAN_LIMITS, UPSCALE_DEFAULTS, calculate_upscale_credits

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upscale", tags=["upscale"])


class UpscaleRequest(BaseModel):
    image_url: Optional[str] = None
    image_urls: Optional[List[str]] = None
    options: Optional[Dict[str, Any]] = None


def get_upscale_service(db: Session = Depends(get_db)) -> UpscaleService:
    return UpscaleService(db)


@router.post("")
async def create_upscale(
    data: UpscaleRequest,
    current_user: User = Depends(get_current_user),
    service: UpscaleService = Depends(get_upscale_service)
):
    """Upscale one image, or a batch with `image_urls`"""
    image_urls = data.image_urls or ([data.image_url] if data.image_url else [])
    try:
        result = service.create_upscale(current_user, image_urls, data.options)
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)

    if not result["success"]:
        errors = [r.get("error") for r in result["records"] if r.get("error")]
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to start upscale", "code": "UPSCALE_ERROR", "errors": errors}
        )
    return result


@router.get("/config")
async def get_upscale_config(current_user: User = Depends(get_current_user)):
    plan = (current_user.plan or "STARTER").upper()
    return {
        "defaults": UPSCALE_DEFAULTS,
        "limits": PLAN_LIMITS.get(plan, PLAN_LIMITS["STARTER"]),
        "credits_per_image": calculate_upscale_credits(1),
    }


@router.get("/status/{job_id}")
async def get_upscale_status(
    job_id: str,
    current_user: User = Depends(get_current_user),
    service: UpscaleService = Depends(get_upscale_service)
):
    result = service.get_upscale_status(current_user.id, job_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upscale job not found")
    return result
