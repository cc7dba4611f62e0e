"""
System Logger - audit entries persisted to the system_logs table

Entries are mirrored to the standard logger. A failed write is logged and
swallowed so callers never fail because of audit logging.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, List
import logging
import traceback

from ..db.models import SystemLog
from ..logging_config import get_request_id

logger = logging.getLogger(__name__)

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


class SystemLogger:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from ..db.engine import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def log(
        self,
        level: str,
        message: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None
    ) -> bool:
        logger.log(LEVELS.get(level, logging.INFO), message)
        stack = None
        if error is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        db = self.session_factory()
        try:
            db.add(SystemLog(
                level=level,
                message=message,
                user_id=user_id,
                request_id=get_request_id(),
                extra_metadata=metadata or {},
                stack=stack,
            ))
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to persist system log: {e}")
            return False
        finally:
            db.close()

    def debug(self, message: str, **kwargs) -> bool:
        return self.log("debug", message, **kwargs)

    def info(self, message: str, **kwargs) -> bool:
        return self.log("info", message, **kwargs)

    def warn(self, message: str, **kwargs) -> bool:
        return self.log("warn", message, **kwargs)

    def error(self, message: str, error: Optional[BaseException] = None, **kwargs) -> bool:
        return self.log("error", message, error=error, **kwargs)

    def fatal(self, message: str, error: Optional[BaseException] = None, **kwargs) -> bool:
        return self.log("fatal", message, error=error, **kwargs)

    def get_logs(
        self,
        level: Optional[str] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: int = 100
    ) -> List[SystemLog]:
        db = self.session_factory()
        try:
            query = db.query(SystemLog)
            if level:
                query = query.filter(SystemLog.level == level)
            if user_id:
                query = query.filter(SystemLog.user_id == user_id)
            if since:
                query = query.filter(SystemLog.created_at >= since)
            if search:
                query = query.filter(SystemLog.message.ilike(f"%{search}%"))
            return query.order_by(SystemLog.created_at.desc()).limit(limit).all()
        finally:
            db.close()

    def cleanup_old_logs(self, days: int = 30) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        db = self.session_factory()
        try:
            deleted = db.query(SystemLog).filter(SystemLog.created_at < cutoff).delete(synchronize_session=False)
            db.commit()
            logger.info(f"Removed {deleted} system logs older than {days} days")
            return deleted
        except Exception as e:
            db.rollback()
            logger.error(f"System log cleanup failed: {e}")
            return 0
        finally:
            db.close()


_system_logger: Optional[SystemLogger] = None


def get_system_logger() -> SystemLogger:
    global _system_logger
    if _system_logger is None:
        _system_logger = SystemLogger()
    return _system_logger
