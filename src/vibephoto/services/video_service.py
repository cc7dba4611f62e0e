"""
Video Service - Kling v2.1 image-to-video and text-to-video via Replicate
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse
import logging
import math

from ..db.models import VideoGeneration, VideoStatus, User
from ..exceptions import AIError, InsufficientCreditsError
from .credit_manager import CreditManager
from .media_storage import delete_stored_media
from .reconciliation_service import ReconciliationService
from .replicate_provider import ReplicateProvider, build_webhook_url, get_replicate_provider, should_poll
from .storage_provider import StorageProvider, get_storage_provider
from . import polling_service

logger = logging.getLogger(__name__)

DURATIONS = (5, 10)
ASPECT_RATIOS = ("16:9", "9:16", "1:1")
QUALITIES = ("standard", "pro")
MAX_PROMPT_LENGTH = 1500
MAX_NEGATIVE_PROMPT_LENGTH = 200

VIDEO_DEFAULTS = {
    "duration": 5,
    "aspect_ratio": "16:9",
    "quality": "standard",
    "negative_prompt": "blurry, low quality, distorted, watermark, text",
}

BASE_COSTS = {5: 20, 10: 40}
QUALITY_MULTIPLIERS = {"standard": 1.0, "pro": 1.5}

PLAN_LIMITS = {
    "STARTER": {"max_videos_per_day": 5, "max_duration": 10, "allow_pro": True, "max_concurrent_jobs": 2},
    "PREMIUM": {"max_videos_per_day": 20, "max_duration": 10, "allow_pro": True, "max_concurrent_jobs": 3},
    "GOLD": {"max_videos_per_day": 50, "max_duration": 10, "allow_pro": True, "max_concurrent_jobs": 5},
}

# seconds
ESTIMATED_TIMES = {
    "standard": {5: 90, 10: 150},
    "pro": {5: 120, 10: 180},
}

PROMPT_TEMPLATES = {
    "portrait": {
        "name": "Retrato Natural",
        "prompt": "gentle breathing motion, subtle eye movement, natural portrait expression",
        "recommended_duration": 5,
        "recommended_aspect_ratio": "9:16",
    },
    "landscape": {
        "name": "Paisagem Cinematográfica",
        "prompt": "slow cinematic camera movement, gentle parallax effect",
        "recommended_duration": 10,
        "recommended_aspect_ratio": "16:9",
    },
    "product": {
        "name": "Produto 360°",
        "prompt": "smooth 360-degree rotation, professional lighting, studio background",
        "recommended_duration": 5,
        "recommended_aspect_ratio": "1:1",
    },
    "artistic": {
        "name": "Arte Abstrata",
        "prompt": "flowing motion, artistic transformation, creative movement",
        "recommended_duration": 10,
        "recommended_aspect_ratio": "16:9",
    },
    "nature": {
        "name": "Natureza Viva",
        "prompt": "gentle wind effect, leaves swaying, natural movement",
        "recommended_duration": 10,
        "recommended_aspect_ratio": "16:9",
    },
}

ASPECT_RATIO_SUFFIXES = {
    "9:16": ", vertical composition, portrait orientation",
    "16:9": ", cinematic composition, landscape orientation",
    "1:1": ", square composition, balanced framing",
}

ACTIVE_STATUSES = (VideoStatus.STARTING.value, VideoStatus.PROCESSING.value)


def calculate_video_credits(duration: int, quality: str) -> int:
    return math.ceil(BASE_COSTS[duration] * QUALITY_MULTIPLIERS[quality])


def get_estimated_processing_time(duration: int, quality: str) -> int:
    return ESTIMATED_TIMES[quality][duration]


def generate_enhanced_prompt(prompt: str, template: Optional[str] = None, aspect_ratio: Optional[str] = None) -> str:
    enhanced = prompt.strip()
    if template and template in PROMPT_TEMPLATES:
        enhanced = f"{PROMPT_TEMPLATES[template]['prompt']}, {enhanced}"
    return enhanced + ASPECT_RATIO_SUFFIXES.get(aspect_ratio, "")


def get_optimal_aspect_ratio(width: int, height: int) -> str:
    ratio = width / height
    if ratio > 1.5:
        return "16:9"
    if ratio < 0.75:
        return "9:16"
    return "1:1"


def validate_source_image(image_url: Optional[str]) -> Optional[str]:
    """Returns an error message, or None when the URL is usable"""
    if not image_url or not isinstance(image_url, str):
        return "Invalid image URL"
    parsed = urlparse(image_url)
    if parsed.scheme not in ("http", "https"):
        return "Image URL must be HTTP or HTTPS"
    if not parsed.netloc:
        return "Invalid image URL format"
    return None


def normalize_video_request(data: Dict[str, Any]) -> Dict[str, Any]:
    request = dict(VIDEO_DEFAULTS)
    request.update({k: v for k, v in data.items() if v is not None})
    if isinstance(request.get("prompt"), str):
        request["prompt"] = request["prompt"].strip()
    return request


def validate_video_request(request: Dict[str, Any]) -> List[str]:
    errors = []
    prompt = request.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        errors.append("Prompt is required")
    elif len(prompt) > MAX_PROMPT_LENGTH:
        errors.append(f"Prompt too long. Maximum {MAX_PROMPT_LENGTH} characters")

    negative_prompt = request.get("negative_prompt")
    if negative_prompt and len(negative_prompt) > MAX_NEGATIVE_PROMPT_LENGTH:
        errors.append(f"Negative prompt too long. Maximum {MAX_NEGATIVE_PROMPT_LENGTH} characters")

    if request.get("duration") not in DURATIONS:
        errors.append(f"Duration must be one of: {', '.join(str(d) for d in DURATIONS)}")
    if request.get("aspect_ratio") not in ASPECT_RATIOS:
        errors.append(f"Aspect ratio must be one of: {', '.join(ASPECT_RATIOS)}")
    if request.get("quality") not in QUALITIES:
        errors.append(f"Quality must be one of: {', '.join(QUALITIES)}")
    if request.get("template") and request["template"] not in PROMPT_TEMPLATES:
        errors.append(f"Unknown template: {request['template']}")

    if request.get("source_image_url"):
        image_error = validate_source_image(request["source_image_url"])
        if image_error:
            errors.append(image_error)
    return errors


def validate_user_video_limits(
    plan: str,
    videos_today: int,
    duration: int,
    quality: str,
    concurrent_jobs: int
) -> Dict[str, Any]:
    limits = PLAN_LIMITS.get((plan or "STARTER").upper(), PLAN_LIMITS["STARTER"])
    if videos_today >= limits["max_videos_per_day"]:
        return {
            "allowed": False,
            "reason": f"Daily limit reached. Maximum {limits['max_videos_per_day']} videos per day on plan {plan}.",
            "upgrade_required": True,
        }
    if duration > limits["max_duration"]:
        return {
            "allowed": False,
            "reason": f"Duration not supported on plan {plan}. Maximum {limits['max_duration']}s.",
            "upgrade_required": True,
        }
    if quality == "pro" and not limits["allow_pro"]:
        return {"allowed": False, "reason": f"Pro quality not available on plan {plan}.", "upgrade_required": True}
    if concurrent_jobs >= limits["max_concurrent_jobs"]:
        return {
            "allowed": False,
            "reason": f"Too many videos processing. Maximum {limits['max_concurrent_jobs']} at a time.",
            "upgrade_required": False,
        }
    return {"allowed": True, "reason": None, "upgrade_required": False}


def build_video_webhook_url(video_id: str, user_id: str) -> str:
    return build_webhook_url("video", video_id, user_id)


class VideoService:
    """Creates, tracks and cancels video generations"""

    def __init__(
        self,
        db: Session,
        provider: Optional[ReplicateProvider] = None,
        storage: Optional[StorageProvider] = None,
        enable_polling: bool = True
    ):
        self.db = db
        self._provider = provider
        self._storage = storage
        self.enable_polling = enable_polling
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

    def count_processing(self, user_id: str) -> int:
        return self.db.query(VideoGeneration).filter(
            VideoGeneration.user_id == user_id,
            VideoGeneration.status.in_(ACTIVE_STATUSES)
        ).count()

    def count_today(self, user_id: str, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        day_start = datetime(now.year, now.month, now.day)
        return self.db.query(VideoGeneration).filter(
            VideoGeneration.user_id == user_id,
            VideoGeneration.created_at >= day_start,
            VideoGeneration.created_at < day_start + timedelta(days=1)
        ).count()

    def create_video(self, user: User, data: Dict[str, Any]) -> VideoGeneration:
        """
        Debit credits and start a Kling video job

        Raises:
            ValueError: invalid parameters
            PermissionError: plan limits reached
            InsufficientCreditsError: not enough credits
            AIError: provider rejected the job (credits refunded)
        """
        request = normalize_video_request(data)
        errors = validate_video_request(request)
        if errors:
            raise ValueError(f"Invalid request parameters: {'; '.join(errors)}")

        limits = validate_user_video_limits(
            user.plan, self.count_today(user.id), request["duration"], request["quality"],
            self.count_processing(user.id)
        )
        if not limits["allowed"]:
            raise PermissionError(limits["reason"])

        credits_needed = calculate_video_credits(request["duration"], request["quality"])
        available = self.credit_manager.get_user_credits(user.id)["available"]
        if available < credits_needed:
            raise InsufficientCreditsError(required=credits_needed, available=available)

        prompt = request["prompt"]
        if request.get("template"):
            prompt = generate_enhanced_prompt(prompt, request["template"], request["aspect_ratio"])

        video = VideoGeneration(
            user_id=user.id,
            source_image_url=request.get("source_image_url"),
            source_generation_id=request.get("source_generation_id"),
            prompt=prompt,
            negative_prompt=request.get("negative_prompt"),
            duration=request["duration"],
            aspect_ratio=request["aspect_ratio"],
            quality=request["quality"],
            template=request.get("template"),
            status=VideoStatus.STARTING.value,
            credits_used=credits_needed,
        )
        self.db.add(video)
        self.db.flush()
        self.credit_manager.deduct_credits(
            user.id, credits_needed, "video",
            reference_id=video.id,
            description=f"Video {request['duration']}s {request['quality']}",
            details={"duration": request["duration"], "quality": request["quality"]},
        )
        self.db.commit()

        webhook_url = build_video_webhook_url(video.id, user.id)
        try:
            prediction = self.provider.generate_video(
                prompt=prompt,
                duration=request["duration"],
                aspect_ratio=request["aspect_ratio"],
                negative_prompt=request.get("negative_prompt"),
                start_image=request.get("source_image_url"),
                webhook_url=webhook_url,
            )
        except AIError as e:
            ReconciliationService(self.db, self.provider, self._storage).fail_video(video, e.message)
            self.db.commit()
            logger.error(f"Video {video.id} failed to start: {e.message}")
            raise

        video.job_id = prediction.get("id")
        video.extra_metadata = {
            "estimated_time": get_estimated_processing_time(request["duration"], request["quality"]),
            "mode": "image-to-video" if video.source_image_url else "text-to-video",
        }
        self.db.commit()

        if self.enable_polling and video.job_id and should_poll(webhook_url):
            polling_service.start_polling(video.job_id, video.id, user.id, kind="video")

        logger.info(f"Video {video.id} submitted with job {video.job_id}")
        return video

    def get_video(self, video_id: str, user_id: str) -> Optional[VideoGeneration]:
        return self.db.query(VideoGeneration).filter(
            VideoGeneration.id == video_id,
            VideoGeneration.user_id == user_id
        ).first()

    def get_video_status(self, video_id: str, user_id: str) -> Optional[VideoGeneration]:
        """Return the video, reconciling it with Replicate first when still running"""
        video = self.get_video(video_id, user_id)
        if video and video.status in ACTIVE_STATUSES and video.job_id:
            try:
                ReconciliationService(self.db, self.provider, self._storage).reconcile_video(
                    video, processed_via="status_check"
                )
            except AIError as e:
                logger.warning(f"Status check for video {video_id} failed: {e.message}")
        return video

    def list_videos(
        self,
        user_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        query = self.db.query(VideoGeneration).filter(VideoGeneration.user_id == user_id)
        if status:
            query = query.filter(VideoGeneration.status == status.upper())
        page = max(page, 1)
        total = query.count()
        videos = query.order_by(VideoGeneration.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "videos": videos,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        }

    def cancel_video(self, video_id: str, user_id: str) -> Optional[VideoGeneration]:
        """
        Cancel a running video and refund its credits

        Raises:
            ValueError: video already finished
        """
        video = self.get_video(video_id, user_id)
        if not video:
            return None
        if video.status not in ACTIVE_STATUSES:
            raise ValueError(f"Video cannot be cancelled in status {video.status}")
        if video.job_id:
            self.provider.cancel_prediction(video.job_id)
        ReconciliationService(self.db, self.provider, self._storage).fail_video(
            video, "Cancelled by user", status=VideoStatus.CANCELLED.value
        )
        self.db.commit()
        logger.info(f"Video {video_id} cancelled by user {user_id}")
        return video

    def delete_video(self, video_id: str, user_id: str) -> bool:
        video = self.get_video(video_id, user_id)
        if not video:
            return False
        if video.status in ACTIVE_STATUSES:
            raise ValueError("Cancel the video before deleting it")
        try:
            delete_stored_media([video.storage_key or video.video_url, video.thumbnail_url], self.storage)
        except Exception as e:
            logger.warning(f"Storage cleanup failed for video {video_id}: {e}")
        self.db.delete(video)
        self.db.commit()
        return True

    def get_capabilities(self, user: User) -> Dict[str, Any]:
        plan = (user.plan or "STARTER").upper()
        limits = PLAN_LIMITS.get(plan, PLAN_LIMITS["STARTER"])
        return {
            "plan": plan,
            "max_videos_per_day": limits["max_videos_per_day"],
            "max_concurrent_jobs": limits["max_concurrent_jobs"],
            "videos_today": self.count_today(user.id),
            "processing": self.count_processing(user.id),
            "available_credits": self.credit_manager.get_user_credits(user.id)["available"],
            "durations": list(DURATIONS),
            "aspect_ratios": list(ASPECT_RATIOS),
            "qualities": list(QUALITIES),
            "costs": {
                quality: {duration: calculate_video_credits(duration, quality) for duration in DURATIONS}
                for quality in QUALITIES
            },
            "templates": PROMPT_TEMPLATES,
        }
