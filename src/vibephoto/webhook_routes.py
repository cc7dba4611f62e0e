"""
Replicate webhook routes

Every endpoint resolves the job and hands it to ReconciliationService.
Routing parameters are optional; unknown jobs are acknowledged with 200.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import Optional
import json
import logging

from .db.engine import get_db
from .exceptions import to_http_exception
from .services.replicate_webhook_service import (
    ReplicateWebhookService,
    verify_shared_secret,
    verify_hmac_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _provided_secret(request: Request) -> Optional[str]:
    return request.query_params.get("secret") or request.headers.get("X-Webhook-Secret")


def _parse_body(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    return payload


async def _handle(request: Request, db: Session, job_type: Optional[str], allow_signature: bool = False):
    body = await request.body()

    authorized = verify_shared_secret(_provided_secret(request))
    if not authorized and allow_signature:
        authorized = verify_hmac_signature(body, request.headers.get("Webhook-Signature"))
    if not authorized:
        logger.warning(f"Replicate webhook rejected: invalid secret ({request.url.path})")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    payload = _parse_body(body)
    params = request.query_params
    record_id = params.get("id") or params.get("generationId") or params.get("modelId") or params.get("videoId")

    try:
        return ReplicateWebhookService(db).process(
            payload,
            job_type=job_type or params.get("type"),
            record_id=record_id,
            user_id=params.get("userId"),
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/replicate")
async def replicate_webhook(request: Request, db: Session = Depends(get_db)):
    """Unified endpoint: `?type=generation|upscale|training|video&id=&userId=&secret=`, or a signed body"""
    return await _handle(request, db, None, allow_signature=True)


@router.post("/generation")
async def generation_webhook(request: Request, db: Session = Depends(get_db)):
    return await _handle(request, db, "generation")


@router.post("/training")
async def training_webhook(request: Request, db: Session = Depends(get_db)):
    return await _handle(request, db, "training")


@router.post("/upscale")
async def upscale_webhook(request: Request, db: Session = Depends(get_db)):
    return await _handle(request, db, "upscale")


@router.post("/video")
async def video_webhook(request: Request, db: Session = Depends(get_db)):
    """Also accepts `Webhook-Signature: sha256=<hex>` over the raw body"""
    return await _handle(request, db, "video", allow_signature=True)
