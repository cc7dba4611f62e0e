"""
Logging setup for the API and background jobs

Every record carries the environment and the request ID of the HTTP request
(or webhook delivery) that produced it. Provider tokens, webhook secrets and
CPF/CNPJ numbers are masked before anything reaches a handler.
"""
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from typing import Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
REDACTED = "[REDACTED]"

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


def get_request_id() -> Optional[str]:
    """Request ID of the request being handled, None outside a request"""
    return request_id_var.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagates X-Request-ID (or a fresh UUID) to logs and the response"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecretRedactionFilter(logging.Filter):
    """Masks credentials and Brazilian tax IDs in log messages"""

    PATTERNS = [
        re.compile(r'r8_[A-Za-z0-9]{20,}'),                      # Replicate API token
        re.compile(r'\$aact_[A-Za-z0-9_\-=]{20,}'),              # Asaas API key
        re.compile(r'vp_[A-Za-z0-9_\-]{20,}'),                   # VibePhoto API key
        re.compile(r'(?<=[?&]secret=)[^&\s]+'),                  # webhook secret in a query string
        re.compile(r'(?<=asaas-access-token: )\S+', re.IGNORECASE),
        re.compile(r'(?<=Bearer )[A-Za-z0-9_\-\.]{20,}'),
        re.compile(r'\b\d{3}\.\d{3}\.\d{3}-\d{2}\b'),            # formatted CPF
        re.compile(r'\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b'),      # formatted CNPJ
    ]

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern in cls.PATTERNS:
            text = pattern.sub(REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        return True


class StructuredFormatter(logging.Formatter):
    """`timestamp [env] [request id] level logger: message`"""

    DEFAULT_FORMAT = "%(asctime)s [%(env)s] [%(request_id)s] %(levelname)-8s %(name)s: %(message)s"

    def __init__(self, env: str = "dev", fmt: str = None, datefmt: str = None):
        self.env = env
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = get_request_id() or "-"
        record.env = self.env
        return super().format(record)


def setup_logging(env: str = "dev", log_level: str = "INFO"):
    """
    Configure the root logger for the API process

    Args:
        env: Environment name (dev, test, staging, prod)
        log_level: Logging level name; unknown names fall back to INFO
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(StructuredFormatter(env=env))
    handler.addFilter(SecretRedactionFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Request logs stay visible; client libraries only report problems
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.INFO)
    for name in ("sqlalchemy.engine", "httpx", "botocore", "boto3", "PIL", "apscheduler"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
