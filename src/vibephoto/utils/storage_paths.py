"""
Object storage key layout

Current layout:  generated/{user_id}/{category}/{random}_{epoch_ms}.{ext}
Legacy layout:   {user_id}/{media_type}/{generation_id}_{index}.{ext}
                 {user_id}/{media_type}/thumb_{generation_id}_{index}.{ext}
"""
import secrets
import string
import time
from typing import Optional, Dict, Any

STORAGE_ROOT = "generated"

CATEGORY_IMAGES = "images"
CATEGORY_VIDEOS = "videos"
CATEGORY_EDITED = "edited"
CATEGORY_UPSCALED = "upscaled"
CATEGORY_THUMBNAILS = "thumbnails"

STORAGE_CATEGORIES = (
    CATEGORY_IMAGES,
    CATEGORY_VIDEOS,
    CATEGORY_EDITED,
    CATEGORY_UPSCALED,
    CATEGORY_THUMBNAILS,
)

# Media types used by callers and by the legacy layout
MEDIA_TYPE_CATEGORIES = {
    "generated": CATEGORY_IMAGES,
    "generation": CATEGORY_IMAGES,
    "image": CATEGORY_IMAGES,
    "images": CATEGORY_IMAGES,
    "video": CATEGORY_VIDEOS,
    "videos": CATEGORY_VIDEOS,
    "edited": CATEGORY_EDITED,
    "edit": CATEGORY_EDITED,
    "upscaled": CATEGORY_UPSCALED,
    "upscale": CATEGORY_UPSCALED,
    "thumbnail": CATEGORY_THUMBNAILS,
    "thumbnails": CATEGORY_THUMBNAILS,
}

_ALPHABET = string.ascii_lowercase + string.digits


def generate_unique_filename(extension: str = "png") -> str:
    """`{random}_{epoch_ms}.{ext}` - unique enough to never collide within a user folder"""
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(10))
    timestamp = int(time.time() * 1000)
    return f"{random_part}_{timestamp}.{extension.lstrip('.').lower()}"


def get_category_for_media_type(media_type: str) -> str:
    category = MEDIA_TYPE_CATEGORIES.get((media_type or "").lower())
    if category is None:
        raise ValueError(f"Unknown media type: {media_type}")
    return category


def build_s3_key(user_id: str, category: str, filename: str) -> str:
    """Build `generated/{user_id}/{category}/{filename}`"""
    if category not in STORAGE_CATEGORIES:
        raise ValueError(f"Invalid storage category: {category}. Must be one of {', '.join(STORAGE_CATEGORIES)}")
    if not user_id:
        raise ValueError("user_id is required to build a storage key")
    return f"{STORAGE_ROOT}/{user_id}/{category}/{filename}"


def build_key(media_type: str, user_id: str, extension: str = "png") -> str:
    """Fresh key for a new media object of the given type"""
    category = get_category_for_media_type(media_type)
    return build_s3_key(user_id, category, generate_unique_filename(extension))


def build_thumbnail_key(user_id: str, extension: str = "png") -> str:
    return build_s3_key(user_id, CATEGORY_THUMBNAILS, generate_unique_filename(extension))


def build_poster_key(user_id: str) -> str:
    """Poster frame for a video, stored with the thumbnails"""
    return build_s3_key(user_id, CATEGORY_THUMBNAILS, generate_unique_filename("jpg"))


def parse_storage_key(key: str) -> Optional[Dict[str, Any]]:
    """
    Split a storage key into its parts.

    Returns a dict with format ('current' or 'legacy'), user_id, category,
    filename and, for legacy keys, generation_id, index and is_thumbnail.
    Returns None for keys that match neither layout.
    """
    if not key:
        return None
    parts = key.strip("/").split("/")

    if len(parts) == 4 and parts[0] == STORAGE_ROOT:
        _, user_id, category, filename = parts
        if category not in STORAGE_CATEGORIES:
            return None
        return {
            "format": "current",
            "user_id": user_id,
            "category": category,
            "filename": filename,
        }

    if len(parts) == 3:
        user_id, media_type, filename = parts
        is_thumbnail = filename.startswith("thumb_")
        stem = filename[len("thumb_"):] if is_thumbnail else filename
        stem = stem.rsplit(".", 1)[0]
        generation_id, _, index = stem.partition("_")
        category = MEDIA_TYPE_CATEGORIES.get(media_type.lower())
        if category is None:
            return None
        return {
            "format": "legacy",
            "user_id": user_id,
            "category": CATEGORY_THUMBNAILS if is_thumbnail else category,
            "filename": filename,
            "generation_id": generation_id or None,
            "index": int(index) if index.isdigit() else None,
            "is_thumbnail": is_thumbnail,
        }

    return None


def is_consistent_key(key: str, user_id: Optional[str] = None) -> bool:
    """True when the key uses the current layout (and belongs to user_id, if given)"""
    parsed = parse_storage_key(key)
    if not parsed or parsed["format"] != "current":
        return False
    return user_id is None or parsed["user_id"] == user_id


def convert_legacy_key(key: str) -> Optional[str]:
    """Target key in the current layout for a legacy key, keeping the extension"""
    parsed = parse_storage_key(key)
    if not parsed:
        return None
    if parsed["format"] == "current":
        return key
    extension = parsed["filename"].rsplit(".", 1)[-1] if "." in parsed["filename"] else "png"
    return build_s3_key(parsed["user_id"], parsed["category"], generate_unique_filename(extension))


def extension_from_content_type(content_type: Optional[str], default: str = "png") -> str:
    """File extension for a response content type"""
    mapping = {
        "image/png": "png",
        "image/jpeg": "jpg",
        "image/jpg": "jpg",
        "image/webp": "webp",
        "image/gif": "gif",
        "video/mp4": "mp4",
        "video/webm": "webm",
        "video/quicktime": "mov",
    }
    base = (content_type or "").split(";")[0].strip().lower()
    return mapping.get(base, default)


def content_type_from_extension(extension: str) -> str:
    mapping = {
        "png": "image/png",
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "webp": "image/webp",
        "gif": "image/gif",
        "mp4": "video/mp4",
        "webm": "video/webm",
        "mov": "video/quicktime",
    }
    return mapping.get(extension.lower().lstrip("."), "application/octet-stream")
