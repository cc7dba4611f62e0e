"""
Video generation API routes (Kling image-to-video and text-to-video)
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
from .schemas import VideoResponse, dump, dump_all
from .services.video_service import VideoService, get_estimated_processing_time

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/video", tags=["video"])


class VideoCreate(BaseModel):
    prompt: Optional[str] = None
    source_image_url: Optional[str] = None
    source_generation_id: Optional[str] = None
    negative_prompt: Optional[str] = None
    duration: Optional[int] = None
    aspect_ratio: Optional[str] = None
    quality: Optional[str] = None
    template: Optional[str] = None


def get_video_service(db: Session = Depends(get_db)) -> VideoService:
    return VideoService(db)


@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_video(
    data: VideoCreate,
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    try:
        video = service.create_video(current_user, data.model_dump())
    except (ValueError, PermissionError) as e:
        raise to_http_exception(e)

    return {
        "success": True,
        "video": dump(VideoResponse, video),
        "credits_used": video.credits_used,
        "estimated_time": get_estimated_processing_time(video.duration, video.quality),
    }


@router.get("/history")
async def list_videos(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    result = service.list_videos(current_user.id, status_filter, page, limit)
    result["videos"] = dump_all(VideoResponse, result["videos"])
    return result


@router.get("/capabilities")
async def get_capabilities(
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    return service.get_capabilities(current_user)


@router.get("/{video_id}")
async def get_video(
    video_id: str,
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    """Video details; a running job is reconciled with Replicate first"""
    video = service.get_video_status(video_id, current_user.id)
    if not video:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return dump(VideoResponse, video)


@router.post("/{video_id}/cancel")
async def cancel_video(
    video_id: str,
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    try:
        video = service.cancel_video(video_id, current_user.id)
    except ValueError as e:
        raise to_http_exception(e)
    if not video:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return {"success": True, "video": dump(VideoResponse, video)}


@router.delete("/{video_id}")
async def delete_video(
    video_id: str,
    current_user: User = Depends(get_current_user),
    service: VideoService = Depends(get_video_service)
):
    try:
        deleted = service.delete_video(video_id, current_user.id)
    except ValueError as e:
        raise to_http_exception(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return {"success": True}
