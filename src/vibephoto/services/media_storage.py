"""
Media Storage Service
Downloads provider output (temporary Replicate URLs) into permanent storage
and builds thumbnails
"""
import io
import logging
from typing import Optional, Dict, Any, List, Tuple

import httpx
from PIL import Image

from ..exceptions import StorageError
from ..utils.storage_paths import (
    CATEGORY_IMAGES,
    CATEGORY_VIDEOS,
    build_s3_key,
    build_thumbnail_key,
    generate_unique_filename,
    extension_from_content_type,
    content_type_from_extension,
)
from .storage_provider import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 30.0
USER_AGENT = "VibePhoto/1.0"
THUMBNAIL_SIZE = (300, 300)
MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024
MAX_VIDEO_BYTES = 200 * 1024 * 1024


def download_media(url: str, max_bytes: int = MAX_DOWNLOAD_BYTES, timeout: float = DOWNLOAD_TIMEOUT) -> Tuple[bytes, str]:
    """
    Download a media file

    Returns:
        (content bytes, content type)

    Raises:
        StorageError: HTTP failure, non-media content type, empty or oversized body
    """
    try:
        response = httpx.get(
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            follow_redirects=True
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to download {url}: {e}")

    content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
    if not (content_type.startswith("image/") or content_type.startswith("video/")
            or content_type == "application/octet-stream"):
        raise StorageError(f"Invalid content type: {content_type}. Expected image/* or video/*")

    data = response.content
    if not data:
        raise StorageError(f"Empty response body from {url}")
    if len(data) > max_bytes:
        raise StorageError(f"File too large: {len(data)} bytes")
    return data, content_type


def generate_thumbnail(image_bytes: bytes, size: Tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """PNG thumbnail fitting within `size`, aspect ratio preserved"""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.thumbnail(size, Image.Resampling.LANCZOS)
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        output = io.BytesIO()
        image.save(output, format="PNG", optimize=True)
        return output.getvalue()
    except Exception as e:
        raise StorageError(f"Thumbnail generation failed: {e}")


def download_and_store_images(
    urls: List[str],
    user_id: str,
    category: str = CATEGORY_IMAGES,
    storage: Optional[StorageProvider] = None,
    with_thumbnails: bool = True
) -> Dict[str, Any]:
    """
    Copy provider output images into `generated/{user_id}/{category}/`

    Each URL is processed independently; a failure on one image is recorded
    and the rest continue.

    Returns:
        Dict with success (at least one stored), permanent_urls, thumbnail_urls,
        storage_keys, original_urls and errors
    """
    storage = storage or get_storage_provider()
    result: Dict[str, Any] = {
        "success": False,
        "permanent_urls": [],
        "thumbnail_urls": [],
        "storage_keys": [],
        "original_urls": list(urls or []),
        "errors": [],
    }

    for index, url in enumerate(urls or []):
        try:
            data, content_type = download_media(url)
            extension = extension_from_content_type(content_type, default="png")
            key = build_s3_key(user_id, category, generate_unique_filename(extension))
            permanent_url = storage.put(key, data, content_type_from_extension(extension))
            result["permanent_urls"].append(permanent_url)
            result["storage_keys"].append(key)

            if with_thumbnails:
                try:
                    thumb_key = build_thumbnail_key(user_id)
                    thumb_url = storage.put(thumb_key, generate_thumbnail(data), "image/png")
                    result["thumbnail_urls"].append(thumb_url)
                except StorageError as e:
                    # Fall back to the full image so the lists stay aligned
                    logger.warning(f"Thumbnail failed for image {index + 1} of user {user_id}: {e}")
                    result["thumbnail_urls"].append(permanent_url)
        except Exception as e:
            logger.error(f"Failed to store image {index + 1}/{len(urls)} for user {user_id}: {e}")
            result["errors"].append({"index": index, "url": url, "error": str(e)})

    result["success"] = len(result["permanent_urls"]) > 0
    logger.info(
        f"Stored {len(result['permanent_urls'])}/{len(urls or [])} images for user {user_id} under {category}"
    )
    return result


def download_and_store_video(
    url: str,
    user_id: str,
    storage: Optional[StorageProvider] = None
) -> Dict[str, Any]:
    """
    Copy a provider video into `generated/{user_id}/videos/`

    Returns:
        Dict with video_url, storage_key, size_bytes and content_type

    Raises:
        StorageError: download or upload failed
    """
    storage = storage or get_storage_provider()
    data, content_type = download_media(url, max_bytes=MAX_VIDEO_BYTES, timeout=120.0)
    extension = extension_from_content_type(content_type, default="mp4")
    key = build_s3_key(user_id, CATEGORY_VIDEOS, generate_unique_filename(extension))
    try:
        video_url = storage.put(key, data, content_type_from_extension(extension))
    except Exception as e:
        raise StorageError(f"Failed to upload video for user {user_id}: {e}")

    logger.info(f"Stored video for user {user_id} at {key} ({len(data)} bytes)")
    return {
        "video_url": video_url,
        "storage_key": key,
        "size_bytes": len(data),
        "content_type": content_type,
    }


def store_thumbnail_from_url(image_url: str, user_id: str, storage: Optional[StorageProvider] = None) -> Optional[str]:
    """Thumbnail of a remote image stored under thumbnails; None if it could not be built"""
    storage = storage or get_storage_provider()
    try:
        data, _ = download_media(image_url)
        return storage.put(build_thumbnail_key(user_id), generate_thumbnail(data), "image/png")
    except StorageError as e:
        logger.warning(f"Could not build thumbnail for {image_url}: {e}")
        return None


def delete_stored_media(urls_or_keys: List[str], storage: Optional[StorageProvider] = None) -> int:
    """Delete stored objects given their keys or public URLs; returns the number deleted"""
    storage = storage or get_storage_provider()
    deleted = 0
    for item in urls_or_keys or []:
        if not item:
            continue
        key = storage.key_from_url(item) if item.startswith("http") else item
        if not key:
            continue
        if storage.delete(key):
            deleted += 1
    return deleted

