"""
Upscale Service - Clarity upscaler jobs tracked as Generation rows
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse
import logging
import random

from ..db.models import Generation, GenerationStatus, User, UPSCALE_PROMPT_PREFIX
from ..exceptions import AIError, InsufficientCreditsError
from .credit_manager import CreditManager
from .reconciliation_service import ReconciliationService
from .replicate_provider import ReplicateProvider, build_webhook_url, get_replicate_provider, should_poll
from .storage_provider import StorageProvider
from . import polling_service

logger = logging.getLogger(__name__)

SCALE_FACTORS = (2, 4, 8)

UPSCALE_DEFAULTS = {
    "prompt": "masterpiece, best quality, highres, <lora:more_details:0.5> <lora:SDXLrender_v2.0:1>",
    "negative_prompt": "(worst quality, low quality, normal quality:2) JuggernautNegative-neg, blurry, artifacts, oversaturated, unrealistic, distorted",
    "scale_factor": 2,
    "creativity": 0.35,
    "resemblance": 0.6,
    "dynamic": 6,
    "sd_model": "juggernaut_reborn.safetensors [338b85bc4f]",
    "scheduler": "DPM++ 3M SDE Karras",
    "num_inference_steps": 18,
    "seed": 1337,
    "handfix": "disabled",
    "sharpen": 0,
    "output_format": "png",
    "pattern": False,
    "downscaling": False,
    "tiling_width": 112,
    "tiling_height": 144,
}

OPTION_RANGES = {
    "creativity": (0.3, 0.9),
    "resemblance": (0.3, 1.6),
    "dynamic": (1, 50),
    "sharpen": (0, 10),
    "num_inference_steps": (1, 100),
    "tiling_width": (16, 256),
    "tiling_height": (16, 256),
}

SD_MODELS = (
    "juggernaut_reborn.safetensors [338b85bc4f]",
    "epicrealism_naturalSinRC1VAE.safetensors [84d76a0328]",
    "flat2DAnimerge_v45Sharp.safetensors",
)
SCHEDULERS = ("DPM++ 3M SDE Karras", "DPM++ 2M Karras", "Euler a", "DDIM")
OUTPUT_FORMATS = ("png", "jpg", "webp")

CREDITS_PER_IMAGE = 5
BATCH_CREDITS_PER_IMAGE = 4
BATCH_MINIMUM = 10

BASE_PROCESSING_MS = 30000
SCALE_TIME_MULTIPLIERS = {2: 1, 4: 1.5, 8: 2.5}

PLAN_LIMITS = {
    "STARTER": {"daily_limit": 999, "max_scale_factor": 8},
    "PREMIUM": {"daily_limit": 999, "max_scale_factor": 8},
    "GOLD": {"daily_limit": 999, "max_scale_factor": 8},
}


def calculate_upscale_credits(image_count: int) -> int:
    if image_count >= BATCH_MINIMUM:
        return image_count * BATCH_CREDITS_PER_IMAGE
    return image_count * CREDITS_PER_IMAGE


def estimate_processing_time(scale_factor: int) -> int:
    """Milliseconds"""
    return round(BASE_PROCESSING_MS * SCALE_TIME_MULTIPLIERS.get(scale_factor, 1))


def merge_upscale_options(options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(UPSCALE_DEFAULTS)
    merged.update({k: v for k, v in (options or {}).items() if v is not None})
    if not merged.get("seed"):
        merged["seed"] = random.randint(0, 999999)
    return merged


def validate_upscale_options(options: Dict[str, Any]) -> List[str]:
    """Returns the list of validation errors (empty when valid)"""
    errors = []
    for field, (low, high) in OPTION_RANGES.items():
        value = options.get(field)
        if value is not None and (value < low or value > high):
            errors.append(f"{field} must be between {low} and {high}")

    if options.get("scale_factor") not in SCALE_FACTORS:
        errors.append(f"scale_factor must be one of: {', '.join(str(s) for s in SCALE_FACTORS)}")
    if options.get("sd_model") and options["sd_model"] not in SD_MODELS:
        errors.append(f"sd_model must be one of: {', '.join(SD_MODELS)}")
    if options.get("scheduler") and options["scheduler"] not in SCHEDULERS:
        errors.append(f"scheduler must be one of: {', '.join(SCHEDULERS)}")
    if options.get("output_format") and options["output_format"] not in OUTPUT_FORMATS:
        errors.append(f"output_format must be one of: {', '.join(OUTPUT_FORMATS)}")
    return errors


def validate_image_url(image_url: Optional[str]) -> bool:
    if not image_url:
        return False
    parsed = urlparse(image_url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def can_user_upscale(plan: str, scale_factor: int, daily_usage: int) -> Dict[str, Any]:
    limits = PLAN_LIMITS.get((plan or "STARTER").upper(), PLAN_LIMITS["STARTER"])
    if daily_usage >= limits["daily_limit"]:
        return {"allowed": False, "reason": f"Daily limit reached ({limits['daily_limit']} upscales/day for plan {plan})"}
    if scale_factor > limits["max_scale_factor"]:
        return {
            "allowed": False,
            "reason": f"Scale factor {scale_factor}x not available on plan {plan} (max {limits['max_scale_factor']}x)",
        }
    return {"allowed": True, "reason": None}


def build_upscale_prompt(scale_factor: int, prompt: Optional[str]) -> str:
    return f"{UPSCALE_PROMPT_PREFIX} {scale_factor}x - {prompt or 'Enhanced quality'}"


def build_upscale_webhook_url(generation_id: str, user_id: str) -> str:
    return build_webhook_url("upscale", generation_id, user_id)


class UpscaleService:
    """Starts upscale predictions and reports their status"""

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

    def count_daily_upscales(self, user_id: str, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        day_start = datetime(now.year, now.month, now.day)
        return self.db.query(Generation).filter(
            Generation.user_id == user_id,
            Generation.prompt.startswith(UPSCALE_PROMPT_PREFIX),
            Generation.created_at >= day_start,
            Generation.created_at < day_start + timedelta(days=1)
        ).count()

    def create_upscale(self, user: User, image_urls: List[str], options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Start one upscale job per image

        Raises:
            ValueError: invalid image URL or options
            PermissionError: plan limit or scale factor not allowed
            InsufficientCreditsError: not enough credits for the whole batch
        """
        if not image_urls:
            raise ValueError("image_url is required")
        for index, url in enumerate(image_urls):
            if not validate_image_url(url):
                raise ValueError(f"Invalid image URL for image {index + 1}")

        merged = merge_upscale_options(options)
        errors = validate_upscale_options(merged)
        if errors:
            raise ValueError(f"Invalid upscale options: {'; '.join(errors)}")

        scale_factor = merged["scale_factor"]
        daily_usage = self.count_daily_upscales(user.id)
        check = can_user_upscale(user.plan, scale_factor, daily_usage + len(image_urls) - 1)
        if not check["allowed"]:
            raise PermissionError(check["reason"])

        total_credits = calculate_upscale_credits(len(image_urls))
        affordable, _ = self.credit_manager.can_user_afford(user.id, total_credits)
        if not affordable:
            available = self.credit_manager.get_user_credits(user.id)["available"]
            raise InsufficientCreditsError(required=total_credits, available=available)

        per_image = total_credits // len(image_urls)
        estimated_ms = estimate_processing_time(scale_factor)
        prompt = build_upscale_prompt(scale_factor, (options or {}).get("prompt"))
        provider_options = dict(merged)

        records = []
        for image_url in image_urls:
            generation = Generation(
                user_id=user.id,
                prompt=prompt,
                negative_prompt=(options or {}).get("negative_prompt"),
                resolution=f"{scale_factor}x",
                aspect_ratio="1:1",
                style="upscale",
                seed=merged["seed"],
                variations=1,
                status=GenerationStatus.PENDING.value,
                estimated_cost=per_image,
                extra_metadata={"original_image": image_url, "scale_factor": scale_factor},
            )
            self.db.add(generation)
            self.db.flush()
            self.credit_manager.deduct_credits(
                user.id, per_image, "upscale",
                reference_id=generation.id,
                description=f"Upscale {scale_factor}x",
            )
            self.db.commit()

            webhook_url = build_upscale_webhook_url(generation.id, user.id)
            try:
                prediction = self.provider.upscale_image(
                    image_url, provider_options,
                    webhook_url=webhook_url
                )
            except AIError as e:
                ReconciliationService(self.db, self.provider, self._storage).fail_generation(generation, e.message)
                self.db.commit()
                logger.error(f"Upscale {generation.id} failed to start: {e.message}")
                records.append({
                    "generation_id": generation.id,
                    "original_image": image_url,
                    "status": generation.status,
                    "error": e.message,
                })
                continue

            generation.job_id = prediction.get("id")
            generation.status = GenerationStatus.PROCESSING.value
            generation.processing_time = estimated_ms
            self.db.commit()

            if self.enable_polling and generation.job_id and should_poll(webhook_url):
                polling_service.start_polling(generation.job_id, generation.id, user.id, kind="upscale")

            records.append({
                "job_id": generation.job_id,
                "generation_id": generation.id,
                "original_image": image_url,
                "status": generation.status,
                "estimated_time": estimated_ms,
            })

        started = [r for r in records if r["status"] == GenerationStatus.PROCESSING.value]
        logger.info(f"Started {len(started)}/{len(image_urls)} upscale jobs for user {user.id}")
        return {
            "success": len(started) > 0,
            "job_ids": [r["job_id"] for r in started],
            "total_jobs": len(image_urls),
            "credits_used": per_image * len(started),
            "estimated_time": estimated_ms,
            "batch_mode": len(image_urls) > 1,
            "records": records,
        }

    def get_upscale_status(self, user_id: str, job_or_generation_id: str) -> Optional[Dict[str, Any]]:
        """Look the upscale up by job or generation ID and reconcile it if still running"""
        generation = self.db.query(Generation).filter(
            Generation.user_id == user_id,
            Generation.prompt.startswith(UPSCALE_PROMPT_PREFIX),
            (Generation.job_id == job_or_generation_id) | (Generation.id == job_or_generation_id)
        ).first()
        if not generation:
            return None

        if generation.status == GenerationStatus.PROCESSING.value and generation.job_id:
            try:
                ReconciliationService(self.db, self.provider, self._storage).reconcile_generation(
                    generation, processed_via="status_check"
                )
            except AIError as e:
                logger.warning(f"Status check for upscale {generation.id} failed: {e.message}")

        return {
            "job_id": generation.job_id,
            "generation_id": generation.id,
            "status": generation.status,
            "result_image": generation.image_urls[0] if generation.image_urls else None,
            "thumbnail_url": generation.thumbnail_urls[0] if generation.thumbnail_urls else None,
            "error": generation.error_message,
            "completed_at": generation.completed_at,
        }
