"""
Generation Service - image generation with custom models
"""
from sqlalchemy.orm import Session
from sqlalchemy import or_
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import logging

from ..db.models import Generation, GenerationStatus, AIModel, ModelStatus, User
from ..exceptions import AIError, RateLimitExceededError, ContentPolicyError
from . import ai_config
from .content_moderator import ContentModerator
from .credit_manager import CreditManager
from .media_storage import delete_stored_media
from .rate_limiter import RateLimiter
from .reconciliation_service import ReconciliationService
from .replicate_provider import ReplicateProvider, build_webhook_url, get_replicate_provider, should_poll
from .storage_provider import StorageProvider, get_storage_provider
from . import polling_service

logger = logging.getLogger(__name__)

CREDITS_PER_IMAGE = 10
MAX_PROMPT_LENGTH = 1500
MIN_VARIATIONS = 1
MAX_VARIATIONS = 4
DEFAULT_ASPECT_RATIO = "1:1"
DEFAULT_RESOLUTION = "512x512"
DEFAULT_STRENGTH = 0.8
DEFAULT_STYLE = "photographic"

POLL_MIN_AGE = timedelta(minutes=5)
POLL_MAX_GENERATIONS = 10
CHECK_STATUS_TIMEOUT_MINUTES = 10


def calculate_generation_credits(variations: int) -> int:
    return variations * CREDITS_PER_IMAGE


def build_generation_webhook_url(generation_id: str, user_id: str) -> str:
    return build_webhook_url("generation", generation_id, user_id)


def validate_generation_request(model_id: Optional[str], prompt: Optional[str], variations: int):
    """Raises ValueError describing the first invalid field"""
    if not model_id or not prompt:
        raise ValueError("Missing required fields: model_id and prompt")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(f"Prompt must be {MAX_PROMPT_LENGTH} characters or less")
    if variations < MIN_VARIATIONS or variations > MAX_VARIATIONS:
        raise ValueError(f"Variations must be between {MIN_VARIATIONS} and {MAX_VARIATIONS}")


class GenerationService:
    """Service for creating and reconciling image generations"""

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

    def create_generation(
        self,
        user: User,
        model_id: str,
        prompt: str,
        negative_prompt: Optional[str] = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        resolution: str = DEFAULT_RESOLUTION,
        variations: int = 1,
        strength: float = DEFAULT_STRENGTH,
        seed: Optional[int] = None,
        style: str = DEFAULT_STYLE,
        steps: Optional[int] = None,
        guidance_scale: Optional[float] = None
    ) -> Generation:
        """
        Debit credits and start a generation on Replicate

        Raises:
            ValueError: invalid request or model not READY
            LookupError: model not found for this user
            ContentPolicyError: prompt blocked by moderation
            RateLimitExceededError: generation rate limit exceeded
            InsufficientCreditsError: not enough credits
            AIError: provider rejected the request (credits refunded)
        """
        validate_generation_request(model_id, prompt, variations)

        model = self.db.query(AIModel).filter(
            AIModel.id == model_id,
            AIModel.user_id == user.id,
            AIModel.status != ModelStatus.DELETED.value
        ).first()
        if not model:
            raise LookupError("Model not found or access denied")
        if model.status != ModelStatus.READY.value:
            raise ValueError(f"Model is not ready for generation. Current status: {model.status}")

        rate_limiter = RateLimiter(self.db)
        limit = rate_limiter.check_limit(user.id, "generation", user.plan)
        if not limit["allowed"]:
            raise RateLimitExceededError("generation", limit["retry_after"], limit["reset_time"])

        moderation = ContentModerator(self.db).moderate_content(prompt, user.id)
        if not moderation["is_allowed"]:
            raise ContentPolicyError(moderation["reason"], moderation["categories"])

        credits_needed = calculate_generation_credits(variations)
        generation = Generation(
            user_id=user.id,
            model_id=model.id,
            prompt=prompt,
            negative_prompt=negative_prompt,
            aspect_ratio=aspect_ratio or DEFAULT_ASPECT_RATIO,
            resolution=resolution or DEFAULT_RESOLUTION,
            variations=variations,
            strength=strength,
            seed=seed,
            style=style or DEFAULT_STYLE,
            status=GenerationStatus.PENDING.value,
            estimated_cost=credits_needed,
        )
        self.db.add(generation)
        self.db.flush()

        self.credit_manager.deduct_credits(
            user.id, credits_needed, "generation",
            reference_id=generation.id,
            description=f"Generation of {variations} image(s) with {model.name}",
        )
        rate_limiter.record_attempt(user.id, "generation", {"generation_id": generation.id})
        self.db.commit()

        width, height = ai_config.parse_resolution(generation.resolution)
        custom_model = bool(model.destination or model.model_url)
        params = {
            "steps": steps or ai_config.get_optimal_steps(user.plan, width, height, custom_model),
            "guidance_scale": guidance_scale or ai_config.get_optimal_guidance(user.plan, width, height),
        }
        if model.trigger_word and model.trigger_word not in prompt:
            provider_prompt = f"{model.trigger_word} {prompt}"
        else:
            provider_prompt = prompt

        webhook_url = build_generation_webhook_url(generation.id, user.id)
        try:
            prediction = self.provider.generate_image(
                prompt=provider_prompt,
                width=width,
                height=height,
                steps=params["steps"],
                guidance_scale=params["guidance_scale"],
                num_outputs=variations,
                negative_prompt=negative_prompt,
                seed=seed,
                model_version=model.model_url,
                destination=model.destination,
                webhook_url=webhook_url,
            )
        except AIError as e:
            ReconciliationService(self.db, self.provider, self._storage).fail_generation(generation, e.message)
            self.db.commit()
            logger.error(f"Generation {generation.id} failed to start: {e.message}")
            raise

        generation.job_id = prediction.get("id")
        generation.status = GenerationStatus.PROCESSING.value
        generation.extra_metadata = {
            **params,
            "width": width,
            "height": height,
            "estimated_seconds": ai_config.estimate_generation_time(width, height, params["steps"]),
        }
        self.db.commit()

        if self.enable_polling and generation.job_id and should_poll(webhook_url):
            polling_service.start_polling(generation.job_id, generation.id, user.id, kind="generation")

        logger.info(f"Generation {generation.id} started with job {generation.job_id}")
        return generation

    def get_generation(self, generation_id: str, user_id: str) -> Optional[Generation]:
        return self.db.query(Generation).filter(
            Generation.id == generation_id,
            Generation.user_id == user_id
        ).first()

    def list_generations(
        self,
        user_id: str,
        model_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        query = self.db.query(Generation).filter(Generation.user_id == user_id)
        if model_id:
            query = query.filter(Generation.model_id == model_id)
        if status:
            query = query.filter(Generation.status == status.upper())
        if search:
            query = query.filter(or_(
                Generation.prompt.ilike(f"%{search}%"),
                Generation.negative_prompt.ilike(f"%{search}%")
            ))

        page = max(page, 1)
        total = query.count()
        generations = query.order_by(Generation.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "generations": generations,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit if limit else 0,
            },
        }

    def delete_generation(self, generation_id: str, user_id: str) -> bool:
        """Delete a generation and its stored images and thumbnails"""
        generation = self.get_generation(generation_id, user_id)
        if not generation:
            return False

        objects = list(generation.storage_keys or []) + [
            url for url in (generation.thumbnail_urls or []) if url not in (generation.image_urls or [])
        ]
        if not generation.storage_keys:
            objects += list(generation.image_urls or [])
        try:
            deleted = delete_stored_media(objects, self.storage)
            logger.info(f"Deleted {deleted} stored objects for generation {generation_id}")
        except Exception as e:
            logger.warning(f"Storage cleanup failed for generation {generation_id}: {e}")

        self.db.delete(generation)
        self.db.commit()
        return True

    def poll_user_generations(self, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Reconcile this user's PROCESSING generations older than five minutes"""
        now = now or datetime.utcnow()
        stale = self.db.query(Generation).filter(
            Generation.user_id == user_id,
            Generation.status == GenerationStatus.PROCESSING.value,
            Generation.job_id.isnot(None),
            Generation.created_at < now - POLL_MIN_AGE
        ).order_by(Generation.created_at.asc()).limit(POLL_MAX_GENERATIONS).all()

        service = ReconciliationService(self.db, self.provider, self._storage)
        results = []
        for generation in stale:
            try:
                results.append(service.reconcile_generation(generation, processed_via="manual_poll"))
            except AIError as e:
                self.db.rollback()
                results.append({"id": generation.id, "action": "error", "error": e.message})
        return results

    def check_status(self, generation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        generation = self.get_generation(generation_id, user_id)
        if not generation:
            return None
        return ReconciliationService(self.db, self.provider, self._storage).timeout_generation(
            generation, CHECK_STATUS_TIMEOUT_MINUTES
        )
