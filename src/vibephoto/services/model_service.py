"""
Model Service - custom AI model lifecycle (create, train, delete)
"""
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional, Dict, Any, List
import io
import logging
import zipfile

from ..db.models import AIModel, ModelStatus, ModelClass, User
from ..exceptions import AIError, RateLimitExceededError, ContentPolicyError
from . import ai_config
from .credit_manager import CreditManager
from .content_moderator import ContentModerator
from .media_storage import download_media
from .rate_limiter import RateLimiter
from .replicate_provider import ReplicateProvider, build_webhook_url, get_replicate_provider
from .storage_provider import StorageProvider, get_storage_provider
from ..utils.storage_paths import extension_from_content_type

logger = logging.getLogger(__name__)

MIN_TRAINING_PHOTOS = 3
MAX_TRAINING_PHOTOS = 30
TRAINING_COST = 0  # training is free; the debit is still logged for refunds


def build_training_webhook_url(model_id: str, user_id: str) -> str:
    return build_webhook_url("training", model_id, user_id)


class ModelService:
    """Service for AIModel CRUD and training start"""

    def __init__(
        self,
        db: Session,
        provider: Optional[ReplicateProvider] = None,
        storage: Optional[StorageProvider] = None
    ):
        self.db = db
        self._provider = provider
        self._storage = storage

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

    def get_model(self, model_id: str, user_id: str) -> Optional[AIModel]:
        return self.db.query(AIModel).filter(
            AIModel.id == model_id,
            AIModel.user_id == user_id,
            AIModel.status != ModelStatus.DELETED.value
        ).first()

    def list_models(self, user_id: str, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        query = self.db.query(AIModel).filter(
            AIModel.user_id == user_id,
            AIModel.status != ModelStatus.DELETED.value
        )
        if status:
            query = query.filter(AIModel.status == status.upper())
        total = query.count()
        models = query.order_by(AIModel.created_at.desc()).offset(offset).limit(limit).all()
        return {
            "models": models,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        }

    def create_model(self, user: User, name: str, model_class: str, photo_urls: List[str]) -> AIModel:
        """
        Create a model in UPLOADING state holding its training photo URLs

        Raises:
            ValueError: invalid class or photo count
            PermissionError: plan model limit reached
        """
        model_class = (model_class or "").upper()
        if model_class not in ModelClass.__members__:
            raise ValueError(f"Invalid model class: {model_class}")
        if not name or not name.strip():
            raise ValueError("Model name is required")
        if len(photo_urls) > MAX_TRAINING_PHOTOS:
            raise ValueError(f"At most {MAX_TRAINING_PHOTOS} training photos are allowed")

        limit = CreditManager(self.db).check_model_creation_limit(user.id)
        if not limit["allowed"]:
            raise PermissionError(limit["reason"])

        model = AIModel(
            user_id=user.id,
            name=name.strip(),
            model_class=model_class,
            status=ModelStatus.UPLOADING.value if photo_urls else ModelStatus.DRAFT.value,
            training_photos=list(photo_urls),
            total_photos=len(photo_urls),
        )
        self.db.add(model)
        self.db.commit()
        self.db.refresh(model)
        logger.info(f"Model {model.id} created for user {user.id} with {len(photo_urls)} photos")
        return model

    def build_training_zip(self, model: AIModel) -> str:
        """Download the training photos, zip them and store the archive; returns its URL"""
        buffer = io.BytesIO()
        stored = 0
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for index, url in enumerate(model.training_photos or []):
                data, content_type = download_media(url)
                extension = extension_from_content_type(content_type, default="jpg")
                archive.writestr(f"photo_{index + 1:02d}.{extension}", data)
                stored += 1

        key = f"training/{model.user_id}/{model.id}/photos_{int(datetime.utcnow().timestamp())}.zip"
        url = self.storage.put(key, buffer.getvalue(), "application/zip")
        logger.info(f"Training archive for model {model.id}: {stored} photos -> {key}")
        return url

    def start_training(
        self,
        user: User,
        model_id: str,
        trigger_word: Optional[str] = None,
        class_word: Optional[str] = None,
        steps: Optional[int] = None
    ) -> AIModel:
        """
        Start Replicate training for an UPLOADING model

        Raises:
            LookupError: model not found
            ValueError: model not trainable or too few photos
            ContentPolicyError: trigger or class word blocked
            RateLimitExceededError: training rate limit exceeded
            AIError: provider rejected the training
        """
        model = self.get_model(model_id, user.id)
        if not model:
            raise LookupError("Model not found")
        if model.status not in (ModelStatus.UPLOADING.value, ModelStatus.ERROR.value, ModelStatus.DRAFT.value):
            raise ValueError("Model is not ready for training")
        if len(model.training_photos or []) < MIN_TRAINING_PHOTOS:
            raise ValueError(f"At least {MIN_TRAINING_PHOTOS} training photos are required")

        rate_limiter = RateLimiter(self.db)
        limit = rate_limiter.check_limit(user.id, "training", user.plan)
        if not limit["allowed"]:
            raise RateLimitExceededError("training", limit["retry_after"], limit["reset_time"])

        moderator = ContentModerator(self.db)
        for word in (trigger_word, class_word):
            if word:
                moderation = moderator.moderate_content(word, user.id)
                if not moderation["is_allowed"]:
                    raise ContentPolicyError(moderation["reason"], moderation["categories"])

        quality = ai_config.get_quality_settings(user.plan)
        steps = min(steps or ai_config.TRAINING_DEFAULTS["steps"], quality["max_steps"])
        trigger = trigger_word or ai_config.generate_trigger_word()
        class_word = class_word or ai_config.CLASS_WORDS.get(model.model_class, "person")

        credit_manager = CreditManager(self.db)
        credit_manager.deduct_credits(
            user.id, TRAINING_COST, "training",
            reference_id=model.id, description=f"Training model {model.name}"
        )

        try:
            zip_url = model.training_zip_url or self.build_training_zip(model)
            model.training_zip_url = zip_url
            training = self.provider.start_training(
                name=model.name,
                input_images_url=zip_url,
                trigger_word=trigger,
                class_word=class_word,
                webhook_url=build_training_webhook_url(model.id, user.id),
                steps=steps,
            )
        except Exception as e:
            message = e.message if isinstance(e, AIError) else str(e)
            model.status = ModelStatus.ERROR.value
            model.error_message = message
            credit_manager.refund_credits(user.id, "training", model.id, reason=f"Training start failed: {message}")
            self.db.commit()
            logger.error(f"Training start failed for model {model.id}: {message}")
            raise

        model.status = ModelStatus.TRAINING.value
        model.training_job_id = training["id"]
        model.destination = training["destination"]
        model.trigger_word = training["trigger_word"]
        model.progress = 0
        model.error_message = None
        model.training_started_at = datetime.utcnow()
        model.estimated_time = ai_config.estimate_training_time(
            len(model.training_photos or []), steps, quality["max_resolution"]
        )
        model.training_config = {
            "steps": steps,
            "class_word": class_word,
            "estimated_cost": ai_config.calculate_training_cost(steps, quality["max_resolution"]),
        }
        rate_limiter.record_attempt(user.id, "training", {"model_id": model.id, "training_id": training["id"]})
        self.db.commit()

        logger.info(f"Training {training['id']} started for model {model.id}")
        return model

    def cancel_training(self, user: User, model_id: str) -> AIModel:
        model = self.get_model(model_id, user.id)
        if not model:
            raise LookupError("Model not found")
        if model.status != ModelStatus.TRAINING.value or not model.training_job_id:
            raise ValueError("Model is not training")
        self.provider.cancel_training(model.training_job_id)
        return model

    def delete_model(self, user: User, model_id: str) -> bool:
        """Soft delete; the row keeps its training history"""
        model = self.get_model(model_id, user.id)
        if not model:
            return False
        if model.status == ModelStatus.TRAINING.value and model.training_job_id:
            self.provider.cancel_training(model.training_job_id)
        model.status = ModelStatus.DELETED.value
        self.db.commit()
        logger.info(f"Model {model_id} deleted by user {user.id}")
        return True
