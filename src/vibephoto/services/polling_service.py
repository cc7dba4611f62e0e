"""
Polling Service
Fallback for missed webhooks: polls a prediction with backoff through
one-shot APScheduler jobs until it reaches a terminal status.
"""
import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Optional, Dict, Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from ..db.models import Generation, VideoGeneration, GenerationStatus
from ..exceptions import AIError
from ..utils.status_mapping import is_terminal_replicate_status

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 120
BASE_INTERVAL_SECONDS = 5.0
MAX_INTERVAL_SECONDS = 30.0
BACKOFF_MULTIPLIER = 1.5


def calculate_poll_interval(
    attempt: int,
    base: float = BASE_INTERVAL_SECONDS,
    maximum: float = MAX_INTERVAL_SECONDS
) -> float:
    """Delay before poll number `attempt` (0-based)"""
    return min(base * BACKOFF_MULTIPLIER ** attempt, maximum)


class PredictionPoller:
    """Tracks active polls and schedules each attempt on the background scheduler"""

    def __init__(
        self,
        scheduler=None,
        session_factory: Optional[Callable] = None,
        provider_factory: Optional[Callable] = None,
        max_attempts: int = MAX_ATTEMPTS
    ):
        self._scheduler = scheduler
        self._session_factory = session_factory
        self._provider_factory = provider_factory
        self.max_attempts = max_attempts
        self._active: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    @property
    def scheduler(self):
        if self._scheduler is None:
            from .scheduled_jobs import get_scheduler
            self._scheduler = get_scheduler()
        return self._scheduler

    def _open_session(self):
        if self._session_factory is None:
            from ..db.engine import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory()

    def _get_provider(self):
        if self._provider_factory is None:
            from .replicate_provider import get_replicate_provider
            self._provider_factory = get_replicate_provider
        return self._provider_factory()

    @staticmethod
    def _job_id(prediction_id: str) -> str:
        return f"poll_{prediction_id}"

    def start_polling(self, prediction_id: str, record_id: str, user_id: str, kind: str = "generation") -> bool:
        """Begin polling; returns False when already polled or when the scheduler is not running"""
        if not self.scheduler.running:
            logger.warning(f"Scheduler not running; not polling {kind} {record_id} (prediction {prediction_id})")
            return False
        with self._lock:
            if prediction_id in self._active:
                return False
            self._active[prediction_id] = {
                "prediction_id": prediction_id,
                "record_id": record_id,
                "user_id": user_id,
                "kind": kind,
                "attempts": 0,
                "started_at": datetime.utcnow(),
                "last_status": None,
            }
        self._schedule(prediction_id, 0)
        logger.info(f"Polling started for {kind} {record_id} (prediction {prediction_id})")
        return True

    def _schedule(self, prediction_id: str, attempt: int):
        run_at = datetime.now() + timedelta(seconds=calculate_poll_interval(attempt))
        self.scheduler.add_job(
            func=self.poll_once,
            trigger=DateTrigger(run_date=run_at),
            args=[prediction_id],
            id=self._job_id(prediction_id),
            name=f"Poll prediction {prediction_id}",
            replace_existing=True
        )

    def poll_once(self, prediction_id: str) -> Optional[str]:
        """
        One polling attempt

        Returns:
            The Replicate status seen, or None when polling stopped without one
        """
        with self._lock:
            state = self._active.get(prediction_id)
            if state is None:
                return None
            state["attempts"] += 1
            attempt = state["attempts"]

        try:
            prediction = self._get_provider().get_prediction(prediction_id)
        except AIError as e:
            with self._lock:
                state["last_error"] = e.message
            logger.warning(f"Poll {attempt} for {prediction_id} failed: {e.message}")
            self._retry_or_give_up(prediction_id, state, e.message)
            return None

        status = prediction.get("status")
        with self._lock:
            state["last_status"] = status
        if is_terminal_replicate_status(status):
            self._apply(state, prediction)
            self.stop_polling(prediction_id)
            return status

        self._retry_or_give_up(prediction_id, state, f"status {status}")
        return status

    def _retry_or_give_up(self, prediction_id: str, state: Dict[str, Any], last_error: str):
        if state["attempts"] < self.max_attempts:
            self._schedule(prediction_id, state["attempts"])
            return
        self._give_up(state, last_error)
        self.stop_polling(prediction_id)

    def _apply(self, state: Dict[str, Any], prediction: Dict[str, Any]):
        from .reconciliation_service import ReconciliationService

        db = self._open_session()
        try:
            service = ReconciliationService(db)
            if state["kind"] == "video":
                video = db.query(VideoGeneration).filter(VideoGeneration.id == state["record_id"]).first()
                if video:
                    service.reconcile_video(video, prediction, processed_via="polling")
            else:
                generation = db.query(Generation).filter(Generation.id == state["record_id"]).first()
                if generation:
                    service.reconcile_generation(generation, prediction, processed_via="polling")
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to apply polled result for {state['record_id']}: {e}", exc_info=True)
        finally:
            db.close()

    def _give_up(self, state: Dict[str, Any], last_error: str):
        from .reconciliation_service import ReconciliationService

        message = f"Polling failed after {state['attempts']} attempts: {last_error}"
        logger.error(f"{state['kind']} {state['record_id']}: {message}")
        if state["kind"] == "video":
            return
        db = self._open_session()
        try:
            generation = db.query(Generation).filter(Generation.id == state["record_id"]).first()
            if generation and generation.status == GenerationStatus.PROCESSING.value:
                ReconciliationService(db).fail_generation(generation, message)
                db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to mark generation {state['record_id']} as failed: {e}")
        finally:
            db.close()

    def stop_polling(self, prediction_id: str):
        with self._lock:
            self._active.pop(prediction_id, None)
        try:
            self.scheduler.remove_job(self._job_id(prediction_id))
        except JobLookupError:
            # Job already ran or was never scheduled
            pass

    def stop_all_polling(self) -> int:
        with self._lock:
            ids = list(self._active.keys())
        for prediction_id in ids:
            self.stop_polling(prediction_id)
        logger.info(f"Stopped {len(ids)} active polls")
        return len(ids)

    def get_polling_status(self) -> Dict[str, Any]:
        with self._lock:
            states = [dict(state) for state in self._active.values()]
        return {
            "active_polls": len(states),
            "jobs": [
                {
                    "prediction_id": state["prediction_id"],
                    "record_id": state["record_id"],
                    "kind": state["kind"],
                    "attempts": state["attempts"],
                    "last_status": state["last_status"],
                    "started_at": state["started_at"].isoformat(),
                }
                for state in states
            ],
        }


_poller: Optional[PredictionPoller] = None


def get_poller() -> PredictionPoller:
    global _poller
    if _poller is None:
        _poller = PredictionPoller()
    return _poller


def start_polling(prediction_id: str, record_id: str, user_id: str, kind: str = "generation") -> bool:
    return get_poller().start_polling(prediction_id, record_id, user_id, kind)


def get_polling_status() -> Dict[str, Any]:
    return get_poller().get_polling_status()


def stop_all_polling() -> int:
    return get_poller().stop_all_polling()
