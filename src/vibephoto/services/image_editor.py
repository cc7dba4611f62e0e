"""
Image Editor - Nano Banana edits via Replicate

Every operation runs synchronously, stores the result under
generated/{user_id}/edited/ and records an EditHistory row.
"""
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import Optional, Dict, Any, List, Tuple
import base64
import binascii
import logging
import time

from ..db.base import generate_id
from ..db.models import EditHistory, User
from ..exceptions import AIError, StorageError
from ..utils.storage_paths import CATEGORY_EDITED
from .credit_manager import CreditManager
from .media_storage import download_media, download_and_store_images
from .replicate_provider import ReplicateProvider, get_replicate_provider
from .storage_provider import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_BLEND_IMAGES = 3
EDIT_CREDITS = 1
SUPPORTED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")

OPERATION_PROMPTS = {
    "edit": "Edit this image: {prompt}. Make high-quality, precise changes while maintaining the overall composition and style.",
    "add": "Add to this image: {prompt}. Seamlessly integrate the new element with the existing composition, matching lighting, shadows, and style perfectly.",
    "remove": "Remove from this image: {prompt}. Fill the background naturally and seamlessly, maintaining the original lighting and composition.",
    "style": "Transform this image to have the following style: {prompt}. Preserve the subject identity and composition while applying the artistic style consistently.",
    "blend": "Blend these {count} images together: {prompt}. Create a seamless fusion that combines the best elements, textures, colors, and lighting from all images into one cohesive, natural-looking result.",
    "combine": "Combine these {count} images: {prompt}. Merge them into a single coherent composition with consistent lighting and perspective.",
}

MULTI_IMAGE_OPERATIONS = ("blend", "combine")


def build_edit_prompt(operation: str, prompt: str, image_count: int = 1) -> str:
    template = OPERATION_PROMPTS.get(operation)
    if template is None:
        raise ValueError(f"Unknown edit operation: {operation}")
    return template.format(prompt=prompt.strip(), count=image_count)


def load_source_image(image: str) -> Tuple[bytes, str]:
    """
    Bytes and content type of an image given as URL or data URL

    Raises:
        ValueError: not an image, unreadable, or over the size limit
    """
    if image.startswith("data:"):
        header, _, payload = image.partition(",")
        content_type = header[5:].split(";")[0]
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("Invalid base64 image data")
    else:
        try:
            data, content_type = download_media(image, max_bytes=MAX_FILE_SIZE)
        except StorageError as e:
            raise ValueError(f"Could not read image: {e}")

    if not content_type.startswith("image/"):
        raise ValueError("File must be an image")
    if len(data) > MAX_FILE_SIZE:
        raise ValueError("Image file too large (max 10MB)")
    return data, content_type


class ImageEditor:
    """Runs Nano Banana operations and keeps the edit history"""

    def __init__(
        self,
        db: Session,
        provider: Optional[ReplicateProvider] = None,
        storage: Optional[StorageProvider] = None,
        validate_sources: bool = True
    ):
        self.db = db
        self._provider = provider
        self._storage = storage
        self.validate_sources = validate_sources
        self.credit_manager = CreditManager(db)

    @property
    def provider(self) -> ReplicateProvider:
        if self._provider is None:
            self._provider = get_replicate_provider()
        return self._provider

    @property
    def storage(self) -> StorageProvider:
        if self._storage is None:
            self._storage = get_storage_provider()
        return self._storage

    def edit(
        self,
        user: User,
        operation: str,
        image_urls: List[str],
        prompt: str,
        generation_id: Optional[str] = None
    ) -> EditHistory:
        """
        Run one edit operation

        Raises:
            ValueError: bad operation, prompt or images
            InsufficientCreditsError: not enough credits
            AIError: provider failure (credits refunded)
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt is required")
        if not image_urls:
            raise ValueError("At least one image is required")
        if operation in MULTI_IMAGE_OPERATIONS:
            if len(image_urls) < 2 or len(image_urls) > MAX_BLEND_IMAGES:
                raise ValueError(f"{operation} requires between 2 and {MAX_BLEND_IMAGES} images")
        elif len(image_urls) != 1:
            raise ValueError(f"{operation} takes exactly one image")

        provider_prompt = build_edit_prompt(operation, prompt, len(image_urls))
        if self.validate_sources:
            for url in image_urls:
                load_source_image(url)

        edit_id = generate_id()
        self.credit_manager.deduct_credits(
            user.id, EDIT_CREDITS, "edit",
            reference_id=edit_id,
            description=f"Image {operation}",
        )
        self.db.commit()

        started = time.monotonic()
        try:
            result = self.provider.edit_image(provider_prompt, image_urls)
            output_urls = result.get("urls") or []
            if result.get("status") != "succeeded" or not output_urls:
                raise AIError(
                    result.get("error") or f"Unexpected prediction status: {result.get('status')}",
                    "EDIT_ERROR",
                    status_code=502
                )
            stored = download_and_store_images(output_urls[:1], user.id, CATEGORY_EDITED, storage=self.storage)
            if not stored["success"]:
                raise StorageError(f"Failed to store edited image: {stored['errors']}")
        except (AIError, StorageError) as e:
            message = e.message if isinstance(e, AIError) else str(e)
            self.credit_manager.refund_credits(user.id, "edit", edit_id, reason=f"Edit failed: {message}")
            self.db.commit()
            logger.error(f"Image {operation} failed for user {user.id}: {message}")
            raise

        history = EditHistory(
            id=edit_id,
            user_id=user.id,
            generation_id=generation_id,
            original_image_url=image_urls[0],
            edited_image_url=stored["permanent_urls"][0],
            thumbnail_url=stored["thumbnail_urls"][0] if stored["thumbnail_urls"] else None,
            operation=operation,
            prompt=prompt.strip(),
            extra_metadata={
                "replicate_id": result.get("id"),
                "source_images": image_urls,
                "storage_key": stored["storage_keys"][0],
                "processing_time": int((time.monotonic() - started) * 1000),
            },
        )
        self.db.add(history)
        self.db.commit()
        logger.info(f"Edit {edit_id} ({operation}) stored for user {user.id}")
        return history

    def edit_with_prompt(self, user: User, image_url: str, prompt: str, **kwargs) -> EditHistory:
        return self.edit(user, "edit", [image_url], prompt, **kwargs)

    def add_element(self, user: User, image_url: str, prompt: str, **kwargs) -> EditHistory:
        return self.edit(user, "add", [image_url], prompt, **kwargs)

    def remove_element(self, user: User, image_url: str, prompt: str, **kwargs) -> EditHistory:
        return self.edit(user, "remove", [image_url], prompt, **kwargs)

    def transfer_style(self, user: User, image_url: str, prompt: str, **kwargs) -> EditHistory:
        return self.edit(user, "style", [image_url], prompt, **kwargs)

    def blend_images(self, user: User, image_urls: List[str], prompt: str) -> EditHistory:
        return self.edit(user, "blend", image_urls, prompt)

    def get_history(
        self,
        user_id: str,
        operation: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        query = self.db.query(EditHistory).filter(EditHistory.user_id == user_id)
        if operation:
            query = query.filter(EditHistory.operation == operation)
        if search:
            query = query.filter(or_(
                EditHistory.prompt.ilike(f"%{search}%"),
                EditHistory.operation.ilike(f"%{search}%")
            ))
        page = max(page, 1)
        total = query.count()
        items = query.order_by(EditHistory.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "items": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        }
