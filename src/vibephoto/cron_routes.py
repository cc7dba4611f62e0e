"""
Cron endpoints for external schedulers, authorised with CRON_SECRET
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime
import logging

from .auth import require_cron_secret
from .db.engine import get_db, SessionLocal
from .services.maintenance_service import MaintenanceService
from .services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/sync-jobs")
async def sync_jobs(db: Session = Depends(get_db)):
    """Reconcile in-flight generations, upscales, trainings and videos with Replicate"""
    started = datetime.utcnow()
    summary = ReconciliationService(db).sync_processing_jobs()
    return {
        "success": True,
        "timestamp": started.isoformat(),
        "duration_ms": int((datetime.utcnow() - started).total_seconds() * 1000),
        **summary,
    }


@router.post("/cleanup")
async def cleanup(db: Session = Depends(get_db)):
    summary = MaintenanceService(db, session_factory=SessionLocal).daily_cleanup()
    return {"success": True, "timestamp": datetime.utcnow().isoformat(), **summary}
