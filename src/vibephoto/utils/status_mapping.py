"""
Status mapping between Replicate job states and local row states
Single source of truth used by webhooks, polling, cron sync and ops scripts.
"""
from typing import Optional

from ..db.models.generation import GenerationStatus
from ..db.models.video import VideoStatus


class ReplicateStatus:
    """Status strings reported by Replicate predictions and trainings"""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({SUCCEEDED, FAILED, CANCELED, CANCELLED})


def _normalize(status: Optional[str]) -> str:
    return (status or "").strip().lower()


def map_replicate_to_generation_status(replicate_status: Optional[str]) -> GenerationStatus:
    """Map a Replicate status to a Generation status (unknown values stay PROCESSING)"""
    status = _normalize(replicate_status)
    if status in (ReplicateStatus.STARTING, ReplicateStatus.PROCESSING):
        return GenerationStatus.PROCESSING
    if status == ReplicateStatus.SUCCEEDED:
        return GenerationStatus.COMPLETED
    if status == ReplicateStatus.FAILED:
        return GenerationStatus.FAILED
    if status in (ReplicateStatus.CANCELED, ReplicateStatus.CANCELLED):
        return GenerationStatus.CANCELLED
    return GenerationStatus.PROCESSING


def map_replicate_to_video_status(replicate_status: Optional[str]) -> VideoStatus:
    """Map a Replicate status to a VideoGeneration status (unknown values stay STARTING)"""
    mapping = {
        ReplicateStatus.STARTING: VideoStatus.STARTING,
        ReplicateStatus.PROCESSING: VideoStatus.PROCESSING,
        ReplicateStatus.SUCCEEDED: VideoStatus.COMPLETED,
        ReplicateStatus.FAILED: VideoStatus.FAILED,
        ReplicateStatus.CANCELED: VideoStatus.CANCELLED,
        ReplicateStatus.CANCELLED: VideoStatus.CANCELLED,
    }
    return mapping.get(_normalize(replicate_status), VideoStatus.STARTING)


def map_db_to_replicate_status(db_status: Optional[str]) -> str:
    """Map a local status (generation or video) back to the Replicate vocabulary"""
    mapping = {
        "STARTING": ReplicateStatus.STARTING,
        "PENDING": ReplicateStatus.PROCESSING,
        "PROCESSING": ReplicateStatus.PROCESSING,
        "COMPLETED": ReplicateStatus.SUCCEEDED,
        "FAILED": ReplicateStatus.FAILED,
        "CANCELLED": ReplicateStatus.CANCELED,
    }
    key = db_status.value if hasattr(db_status, "value") else (db_status or "")
    return mapping.get(key.upper(), ReplicateStatus.PROCESSING)


def is_terminal_replicate_status(replicate_status: Optional[str]) -> bool:
    return _normalize(replicate_status) in ReplicateStatus.TERMINAL


def _value(status) -> str:
    return (status.value if hasattr(status, "value") else (status or "")).upper()


def is_completed(status) -> bool:
    return _value(status) == "COMPLETED"


def is_failed(status) -> bool:
    return _value(status) in ("FAILED", "CANCELLED")


def is_processing(status) -> bool:
    return _value(status) in ("PENDING", "STARTING", "PROCESSING")
