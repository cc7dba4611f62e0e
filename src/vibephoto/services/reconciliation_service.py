"""
Reconciliation Service
Applies a Replicate job state to the local Generation, VideoGeneration or
AIModel row. Shared by webhooks, polling, the cron sync job and ops scripts.

Terminal rows are never rewritten and refunds are deduplicated, so the same
job may be reconciled any number of times.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable
import logging
import re
import time

from ..db.models import (
    Generation,
    GenerationStatus,
    VideoGeneration,
    VideoStatus,
    AIModel,
    ModelStatus,
    UPSCALE_PROMPT_PREFIX,
)
from ..exceptions import AIError
from ..utils.status_mapping import (
    ReplicateStatus,
    map_replicate_to_generation_status,
    map_replicate_to_video_status,
    is_completed,
    is_failed,
)
from ..utils.storage_paths import CATEGORY_IMAGES, CATEGORY_UPSCALED
from . import ai_config
from .credit_manager import CreditManager
from .media_storage import download_and_store_images, download_and_store_video, store_thumbnail_from_url
from .replicate_provider import ReplicateProvider, get_replicate_provider, normalize_output_urls, parse_replicate_datetime
from .storage_provider import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

# What to do when outputs cannot be copied into storage
STORAGE_FAILURE_FAIL = "fail"
STORAGE_FAILURE_KEEP_TEMPORARY = "keep_temporary"

SYNC_BATCH_SIZE = 20
SYNC_MIN_AGE = timedelta(minutes=1)
SYNC_PAUSE_SECONDS = 0.1

_PROGRESS_PATTERN = re.compile(r"(\d{1,3})%\|")
_STEP_PATTERN = re.compile(r"step\s+(\d+)\s*/\s*(\d+)", re.IGNORECASE)


def _result(row_id: str, action: str, status: Optional[str] = None, **extra) -> Dict[str, Any]:
    return {"id": row_id, "action": action, "status": status, **extra}


def credit_action_for(generation: Generation) -> str:
    return "upscale" if generation.is_upscale else "generation"


def parse_training_progress(logs: Optional[str]) -> Optional[int]:
    """Last progress percentage found in trainer logs"""
    if not logs:
        return None
    percents = _PROGRESS_PATTERN.findall(logs)
    if percents:
        return min(int(percents[-1]), 100)
    steps = _STEP_PATTERN.findall(logs)
    if steps:
        current, total = steps[-1]
        if int(total) > 0:
            return min(int(int(current) * 100 / int(total)), 100)
    return None


def calculate_training_quality_score(training: Dict[str, Any]) -> int:
    """75 base, +10 on success, +5 under 30 min, -5 over 120 min, -5 when logs mention errors; clamped to [10, 100]"""
    score = 75
    if training.get("status") == ReplicateStatus.SUCCEEDED:
        score += 10

    total_seconds = (training.get("metrics") or {}).get("total_time")
    if total_seconds is None:
        started = parse_replicate_datetime(training.get("created_at"))
        completed = parse_replicate_datetime(training.get("completed_at"))
        if started and completed:
            total_seconds = (completed - started).total_seconds()
    if total_seconds is not None:
        minutes = total_seconds / 60
        if minutes < 30:
            score += 5
        elif minutes > 120:
            score -= 5

    if "error" in (training.get("logs") or "").lower():
        score -= 5
    return max(10, min(100, score))


class ReconciliationService:
    """Apply provider job state to local rows"""

    def __init__(
        self,
        db: Session,
        provider: Optional[ReplicateProvider] = None,
        storage: Optional[StorageProvider] = None
    ):
        self.db = db
        self._provider = provider
        self._storage = storage
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

    # ------------------------------------------------------------------
    # Generations (images and upscales)
    # ------------------------------------------------------------------

    def fail_generation(self, generation: Generation, message: str, status: str = GenerationStatus.FAILED.value) -> int:
        """Mark a generation failed or cancelled and refund its credits; returns credits refunded"""
        generation.status = status
        generation.error_message = message
        generation.completed_at = datetime.utcnow()
        return self.credit_manager.refund_credits(
            generation.user_id,
            credit_action_for(generation),
            generation.id,
            reason=message,
        )

    def reconcile_generation(
        self,
        generation: Generation,
        prediction: Optional[Dict[str, Any]] = None,
        processed_via: str = "webhook",
        on_storage_failure: str = STORAGE_FAILURE_KEEP_TEMPORARY,
        commit: bool = True
    ) -> Dict[str, Any]:
        """
        Reconcile a Generation against its prediction

        Args:
            prediction: normalized prediction; fetched from Replicate when omitted
            on_storage_failure: 'fail' marks the row FAILED, 'keep_temporary' keeps the provider URLs

        Returns:
            {id, action, status, ...} with action one of completed, failed,
            cancelled, processing, already_final
        """
        if is_completed(generation.status) or is_failed(generation.status):
            return _result(generation.id, "already_final", generation.status)
        if prediction is None:
            if not generation.job_id:
                return _result(generation.id, "no_job", generation.status)
            prediction = self.provider.get_prediction(generation.job_id)

        replicate_status = (prediction.get("status") or "").lower()
        mapped = map_replicate_to_generation_status(replicate_status)

        if mapped == GenerationStatus.PROCESSING:
            if generation.status != GenerationStatus.PROCESSING.value:
                generation.status = GenerationStatus.PROCESSING.value
                self._commit(commit)
            return _result(generation.id, "processing", generation.status)

        if mapped == GenerationStatus.FAILED:
            refunded = self.fail_generation(generation, prediction.get("error") or "Generation failed")
            self._commit(commit)
            logger.info(f"Generation {generation.id} failed via {processed_via}, refunded {refunded}")
            return _result(generation.id, "failed", generation.status, refunded=refunded)

        if mapped == GenerationStatus.CANCELLED:
            refunded = self.fail_generation(
                generation, "Generation was cancelled", status=GenerationStatus.CANCELLED.value
            )
            self._commit(commit)
            return _result(generation.id, "cancelled", generation.status, refunded=refunded)

        urls = prediction.get("urls") or normalize_output_urls(prediction.get("output"))
        if not urls:
            refunded = self.fail_generation(generation, "No output returned")
            self._commit(commit)
            return _result(generation.id, "failed", generation.status, refunded=refunded)

        return self._complete_generation(generation, urls, processed_via, on_storage_failure, commit)

    def _complete_generation(
        self,
        generation: Generation,
        urls,
        processed_via: str,
        on_storage_failure: str,
        commit: bool
    ) -> Dict[str, Any]:
        category = CATEGORY_UPSCALED if generation.is_upscale else CATEGORY_IMAGES
        try:
            stored = download_and_store_images(urls, generation.user_id, category, storage=self.storage)
        except Exception as e:
            stored = {"success": False, "errors": [{"error": str(e)}]}

        now = datetime.utcnow()
        metadata = dict(generation.extra_metadata or {})
        metadata.update({
            "processed_via": processed_via,
            "original_urls": list(urls),
            "processed_at": now.isoformat(),
        })

        if stored["success"]:
            generation.image_urls = stored["permanent_urls"]
            generation.thumbnail_urls = stored["thumbnail_urls"]
            generation.storage_keys = stored["storage_keys"]
            if stored["errors"]:
                metadata["storage_errors"] = stored["errors"]
        else:
            reason = "; ".join(err.get("error", "") for err in stored.get("errors", [])) or "unknown error"
            if on_storage_failure == STORAGE_FAILURE_FAIL:
                generation.extra_metadata = metadata
                refunded = self.fail_generation(generation, f"Auto-sync storage failed: {reason}")
                self._commit(commit)
                logger.error(f"Generation {generation.id} storage failed: {reason}")
                return _result(generation.id, "failed", generation.status, refunded=refunded)
            generation.image_urls = list(urls)
            generation.thumbnail_urls = list(urls)
            metadata["storage_warning"] = f"Stored temporary provider URLs: {reason}"
            logger.warning(f"Generation {generation.id} kept temporary URLs: {reason}")

        generation.status = GenerationStatus.COMPLETED.value
        generation.completed_at = now
        generation.error_message = None
        if generation.created_at:
            generation.processing_time = int((now - generation.created_at).total_seconds() * 1000)
        generation.extra_metadata = metadata
        self._commit(commit)

        logger.info(f"Generation {generation.id} completed via {processed_via} with {len(generation.image_urls)} images")
        return _result(generation.id, "completed", generation.status, image_count=len(generation.image_urls))

    def timeout_generation(self, generation: Generation, timeout_minutes: int = 10, now: Optional[datetime] = None) -> Dict[str, Any]:
        """FAILED with refund when PROCESSING longer than timeout_minutes, otherwise no_change"""
        now = now or datetime.utcnow()
        minutes_ago = int((now - generation.created_at).total_seconds() // 60) if generation.created_at else 0
        if generation.status == GenerationStatus.PROCESSING.value and minutes_ago > timeout_minutes:
            refunded = self.fail_generation(generation, f"Generation timed out after {minutes_ago} minutes")
            self.db.commit()
            return _result(generation.id, "timed_out", generation.status, minutes_ago=minutes_ago, refunded=refunded)
        return _result(generation.id, "no_change", generation.status, minutes_ago=minutes_ago)

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def fail_video(self, video: VideoGeneration, message: str, status: str = VideoStatus.FAILED.value) -> int:
        video.status = status
        video.error_message = message
        video.processing_completed_at = datetime.utcnow()
        return self.credit_manager.refund_credits(
            video.user_id, "video", video.id, reason=message
        )

    def reconcile_video(
        self,
        video: VideoGeneration,
        prediction: Optional[Dict[str, Any]] = None,
        processed_via: str = "webhook",
        on_storage_failure: str = STORAGE_FAILURE_KEEP_TEMPORARY,
        commit: bool = True
    ) -> Dict[str, Any]:
        if is_completed(video.status) or is_failed(video.status):
            return _result(video.id, "already_final", video.status)
        if prediction is None:
            if not video.job_id:
                return _result(video.id, "no_job", video.status)
            prediction = self.provider.get_prediction(video.job_id)

        mapped = map_replicate_to_video_status(prediction.get("status"))

        if mapped in (VideoStatus.STARTING, VideoStatus.PROCESSING):
            video.status = mapped.value
            if mapped == VideoStatus.PROCESSING and not video.processing_started_at:
                video.processing_started_at = datetime.utcnow()
                video.progress = max(video.progress or 0, 10)
            self._commit(commit)
            return _result(video.id, "processing", video.status)

        if mapped == VideoStatus.FAILED:
            refunded = self.fail_video(video, prediction.get("error") or "Video generation failed")
            self._commit(commit)
            return _result(video.id, "failed", video.status, refunded=refunded)

        if mapped == VideoStatus.CANCELLED:
            refunded = self.fail_video(video, "Video generation was cancelled", status=VideoStatus.CANCELLED.value)
            self._commit(commit)
            return _result(video.id, "cancelled", video.status, refunded=refunded)

        urls = prediction.get("urls") or normalize_output_urls(prediction.get("output"))
        if not urls:
            refunded = self.fail_video(video, "No output returned")
            self._commit(commit)
            return _result(video.id, "failed", video.status, refunded=refunded)

        metadata = dict(video.extra_metadata or {})
        metadata.update({"processed_via": processed_via, "original_url": urls[0]})
        try:
            stored = download_and_store_video(urls[0], video.user_id, storage=self.storage)
            video.video_url = stored["video_url"]
            video.storage_key = stored["storage_key"]
            metadata["size_bytes"] = stored["size_bytes"]
        except Exception as e:
            if on_storage_failure == STORAGE_FAILURE_FAIL:
                video.extra_metadata = metadata
                refunded = self.fail_video(video, f"Auto-sync storage failed: {e}")
                self._commit(commit)
                return _result(video.id, "failed", video.status, refunded=refunded)
            video.video_url = urls[0]
            metadata["storage_warning"] = f"Stored temporary provider URL: {e}"
            logger.warning(f"Video {video.id} kept temporary URL: {e}")

        if video.source_image_url and not video.thumbnail_url:
            video.thumbnail_url = store_thumbnail_from_url(video.source_image_url, video.user_id, self.storage)

        video.status = VideoStatus.COMPLETED.value
        video.progress = 100
        video.error_message = None
        video.processing_completed_at = datetime.utcnow()
        video.extra_metadata = metadata
        self._commit(commit)
        logger.info(f"Video {video.id} completed via {processed_via}")
        return _result(video.id, "completed", video.status, video_url=video.video_url)

    # ------------------------------------------------------------------
    # Trainings
    # ------------------------------------------------------------------

    def reconcile_training(
        self,
        model: AIModel,
        training: Optional[Dict[str, Any]] = None,
        processed_via: str = "webhook",
        commit: bool = True
    ) -> Dict[str, Any]:
        if model.status in (ModelStatus.READY.value, ModelStatus.DELETED.value):
            return _result(model.id, "already_final", model.status)
        if training is None:
            if not model.training_job_id:
                return _result(model.id, "no_job", model.status)
            training = self.provider.get_training(model.training_job_id)

        status = (training.get("status") or "").lower()

        if status in (ReplicateStatus.STARTING, ReplicateStatus.PROCESSING):
            model.status = ModelStatus.TRAINING.value
            progress = parse_training_progress(training.get("logs"))
            if progress is not None:
                model.progress = max(model.progress or 0, progress)
            self._commit(commit)
            return _result(model.id, "processing", model.status, progress=model.progress)

        if status == ReplicateStatus.SUCCEEDED:
            model_url = training.get("model_url") or ai_config.extract_model_url(training.get("output"))
            model.status = ModelStatus.READY.value
            model.progress = 100
            model.training_completed_at = datetime.utcnow()
            model.model_url = model_url
            model.quality_score = calculate_training_quality_score(training)
            model.error_message = None
            self._commit(commit)
            logger.info(f"Model {model.id} ready via {processed_via}: {model_url}")
            return _result(model.id, "completed", model.status, model_url=model_url)

        if model.status == ModelStatus.ERROR.value:
            return _result(model.id, "already_final", model.status)

        if status == ReplicateStatus.FAILED:
            message = training.get("error") or "Training failed"
            model.status = ModelStatus.ERROR.value
            model.error_message = message
            model.training_completed_at = datetime.utcnow()
            refunded = self.credit_manager.refund_credits(model.user_id, "training", model.id, reason=message)
            self._commit(commit)
            return _result(model.id, "failed", model.status, refunded=refunded)

        if status in (ReplicateStatus.CANCELED, ReplicateStatus.CANCELLED):
            model.status = ModelStatus.DRAFT.value
            model.error_message = "Training was cancelled"
            refunded = self.credit_manager.refund_credits(model.user_id, "training", model.id, reason="Training cancelled")
            self._commit(commit)
            return _result(model.id, "cancelled", model.status, refunded=refunded)

        return _result(model.id, "no_change", model.status)

    # ------------------------------------------------------------------
    # Cron sync
    # ------------------------------------------------------------------

    def sync_processing_jobs(
        self,
        batch_size: int = SYNC_BATCH_SIZE,
        pause_seconds: float = SYNC_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Reconcile in-flight generations, upscales, trainings and videos against Replicate"""
        now = now or datetime.utcnow()
        cutoff = now - SYNC_MIN_AGE
        summary: Dict[str, Any] = {"processed": 0, "updated": 0, "errors": 0, "results": []}

        in_flight = self.db.query(Generation).filter(
            Generation.status == GenerationStatus.PROCESSING.value,
            Generation.job_id.isnot(None),
            Generation.created_at < cutoff
        )
        generations = in_flight.filter(~Generation.prompt.startswith(UPSCALE_PROMPT_PREFIX)).order_by(
            Generation.created_at.asc()
        ).limit(batch_size).all()
        upscales = in_flight.filter(Generation.prompt.startswith(UPSCALE_PROMPT_PREFIX)).order_by(
            Generation.created_at.asc()
        ).limit(batch_size).all()
        models = self.db.query(AIModel).filter(
            AIModel.status == ModelStatus.TRAINING.value,
            AIModel.training_job_id.isnot(None)
        ).limit(batch_size).all()
        videos = self.db.query(VideoGeneration).filter(
            VideoGeneration.status.in_([VideoStatus.STARTING.value, VideoStatus.PROCESSING.value]),
            VideoGeneration.job_id.isnot(None),
            VideoGeneration.created_at < cutoff
        ).limit(batch_size).all()

        work = (
            [("generation", g, self.reconcile_generation) for g in generations]
            + [("upscale", g, self.reconcile_generation) for g in upscales]
            + [("training", m, self.reconcile_training) for m in models]
            + [("video", v, self.reconcile_video) for v in videos]
        )

        for index, (kind, row, reconcile) in enumerate(work):
            if index:
                sleep(pause_seconds)
            summary["processed"] += 1
            try:
                if kind == "training":
                    result = reconcile(row, processed_via="cron_sync")
                else:
                    result = reconcile(row, processed_via="cron_sync", on_storage_failure=STORAGE_FAILURE_FAIL)
                if result["action"] not in ("processing", "already_final", "no_change"):
                    summary["updated"] += 1
                summary["results"].append({"type": kind, **result})
            except AIError as e:
                self.db.rollback()
                summary["errors"] += 1
                summary["results"].append({"type": kind, "id": row.id, "action": "error", "error": e.message})
                logger.error(f"Sync failed for {kind} {row.id}: {e.message}")
            except Exception as e:
                self.db.rollback()
                summary["errors"] += 1
                summary["results"].append({"type": kind, "id": row.id, "action": "error", "error": str(e)})
                logger.error(f"Sync failed for {kind} {row.id}: {e}", exc_info=True)

        logger.info(
            f"Job sync: processed={summary['processed']} updated={summary['updated']} errors={summary['errors']}"
        )
        return summary

    def _commit(self, commit: bool):
        if commit:
            self.db.commit()
