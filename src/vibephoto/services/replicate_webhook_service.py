"""
Replicate Webhook Service
Authenticates Replicate callbacks, finds the row a job belongs to and hands
the payload to ReconciliationService.
"""
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, Tuple
import hashlib
import hmac
import logging

from ..config import config
from ..db.models import Generation, AIModel, VideoGeneration, UPSCALE_PROMPT_PREFIX
from .reconciliation_service import ReconciliationService
from .replicate_provider import ReplicateProvider
from .storage_provider import StorageProvider

logger = logging.getLogger(__name__)

JOB_TYPES = ("generation", "upscale", "training", "video")
SIGNATURE_PREFIX = "sha256="


def verify_shared_secret(provided: Optional[str], secret: Optional[str] = None) -> bool:
    """
    Constant-time comparison against REPLICATE_WEBHOOK_SECRET.
    Accepts everything when no secret is configured.
    """
    secret = secret if secret is not None else config.REPLICATE_WEBHOOK_SECRET
    if not secret:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), secret.encode())


def compute_signature(body: bytes, secret: str) -> str:
    return SIGNATURE_PREFIX + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """`Webhook-Signature: sha256=<hex HMAC-SHA256 of the raw body>`"""
    secret = secret if secret is not None else config.REPLICATE_WEBHOOK_SECRET
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(signature.encode(), compute_signature(body, secret).encode())


class ReplicateWebhookService:
    """Routes a Replicate webhook payload to the matching local row"""

    def __init__(
        self,
        db: Session,
        provider: Optional[ReplicateProvider] = None,
        storage: Optional[StorageProvider] = None
    ):
        self.db = db
        self.reconciler = ReconciliationService(db, provider, storage)

    def _find_by_record(self, job_type: str, record_id: str, user_id: Optional[str]):
        if job_type == "training":
            query = self.db.query(AIModel).filter(AIModel.id == record_id)
            if user_id:
                query = query.filter(AIModel.user_id == user_id)
        elif job_type == "video":
            query = self.db.query(VideoGeneration).filter(VideoGeneration.id == record_id)
            if user_id:
                query = query.filter(VideoGeneration.user_id == user_id)
        else:
            query = self.db.query(Generation).filter(Generation.id == record_id)
            if user_id:
                query = query.filter(Generation.user_id == user_id)
        return query.first()

    def detect_job(self, job_id: str) -> Optional[Tuple[str, Any]]:
        """Find a job by its Replicate ID when the webhook URL carries no routing parameters"""
        generation = self.db.query(Generation).filter(Generation.job_id == job_id).first()
        if generation:
            if generation.prompt and generation.prompt.startswith(UPSCALE_PROMPT_PREFIX):
                return "upscale", generation
            return "generation", generation

        model = self.db.query(AIModel).filter(AIModel.training_job_id == job_id).first()
        if model:
            return "training", model

        video = self.db.query(VideoGeneration).filter(VideoGeneration.job_id == job_id).first()
        if video:
            return "video", video
        return None

    def resolve_job(
        self,
        job_id: str,
        job_type: Optional[str] = None,
        record_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Optional[Tuple[str, Any]]:
        if job_type in JOB_TYPES and record_id:
            row = self._find_by_record(job_type, record_id, user_id)
            if row is not None:
                row_job_id = row.training_job_id if job_type == "training" else row.job_id
                if row_job_id is None:
                    # Webhook arrived before the job ID was saved
                    if job_type == "training":
                        row.training_job_id = job_id
                    else:
                        row.job_id = job_id
                    return job_type, row
                if row_job_id == job_id:
                    return job_type, row
            logger.warning(f"Webhook routing {job_type}/{record_id} did not match job {job_id}, detecting")
        return self.detect_job(job_id)

    def process(
        self,
        payload: Dict[str, Any],
        job_type: Optional[str] = None,
        record_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply one webhook payload

        Raises:
            ValueError: payload without a job ID
        """
        job_id = payload.get("id")
        if not job_id:
            raise ValueError("No job ID provided")

        resolved = self.resolve_job(job_id, job_type, record_id, user_id)
        if resolved is None:
            logger.info(f"Job {job_id} not found in any table")
            return {"success": True, "message": "Job not found", "job_id": job_id}

        kind, row = resolved
        prediction = ReplicateProvider._normalize_prediction(payload, job_id)
        logger.info(f"Webhook for {kind} {row.id}: job {job_id} is {prediction.get('status')}")

        if kind == "training":
            result = self.reconciler.reconcile_training(row, prediction, processed_via="webhook")
        elif kind == "video":
            result = self.reconciler.reconcile_video(row, prediction, processed_via="webhook")
        else:
            result = self.reconciler.reconcile_generation(row, prediction, processed_via="webhook")

        return {"success": True, "job_type": kind, "job_id": job_id, "result": result}
