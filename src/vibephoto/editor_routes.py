"""
Image editor API routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List
import logging

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .schemas import EditHistoryResponse, dump, dump_all
from .services.image_editor import ImageEditor, OPERATION_PROMPTS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/image-editor", tags=["image-editor"])


class EditRequest(BaseModel):
    operation: str = "edit"
    prompt: str
    image_url: Optional[str] = None
    image_urls: Optional[List[str]] = None
    generation_id: Optional[str] = None


def get_image_editor(db: Session = Depends(get_db)) -> ImageEditor:
    return ImageEditor(db)


@router.post("/edit", status_code=status.HTTP_201_CREATED)
async def edit_image(
    data: EditRequest,
    current_user: User = Depends(get_current_user),
    editor: ImageEditor = Depends(get_image_editor)
):
    """
    Run an edit operation (edit, add, remove, style, blend, combine)

    Images may be URLs or base64 data URLs. Blends take 2 or 3 images.
    """
    if data.operation not in OPERATION_PROMPTS:
        raise to_http_exception(ValueError(
            f"Invalid operation. Must be one of: {', '.join(OPERATION_PROMPTS)}"
        ))
    image_urls = data.image_urls or ([data.image_url] if data.image_url else [])

    try:
        history = editor.edit(current_user, data.operation, image_urls, data.prompt, data.generation_id)
    except ValueError as e:
        raise to_http_exception(e)

    return {
        "success": True,
        "data": dump(EditHistoryResponse, history),
        "result_image": history.edited_image_url,
    }


@router.get("/history")
async def get_edit_history(
    operation: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    editor: ImageEditor = Depends(get_image_editor)
):
    result = editor.get_history(current_user.id, operation, search, page, limit)
    result["items"] = dump_all(EditHistoryResponse, result["items"])
    return result
