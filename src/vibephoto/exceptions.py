"""
Domain exceptions and exception handlers with request ID support
Standardized error response format: { code, message, details?, request_id }
"""
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any, List

from .logging_config import get_request_id

logger = logging.getLogger(__name__)


class AIError(Exception):
    """Error raised by AI provider operations (training, generation, upscale, video, edit)"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AsaasAPIError(Exception):
    """Error returned by the Asaas payment API"""

    def __init__(self, status_code: int, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(f"Asaas API Error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class InsufficientCreditsError(Exception):
    """Raised when a user cannot afford an operation"""

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient credits: required {required}, available {available}")
        self.required = required
        self.available = available


class StorageError(Exception):
    """Raised when media could not be persisted to object storage"""
    pass


class RateLimitExceededError(Exception):
    """Raised when a per-plan rate limit window is exhausted"""

    def __init__(self, action: str, retry_after: Optional[int] = None, reset_time=None):
        super().__init__(f"Rate limit exceeded for {action}")
        self.action = action
        self.retry_after = retry_after
        self.reset_time = reset_time


class ContentPolicyError(Exception):
    """Raised when a prompt is blocked by content moderation"""

    def __init__(self, reason: str, categories: Optional[List[str]] = None):
        super().__init__(reason)
        self.reason = reason
        self.categories = categories or []


class ErrorResponse:
    """
    Standard error response format

    Schema: { code, message, details?, request_id }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        use_legacy_format: bool = False
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code (e.g., "VALIDATION_ERROR", "AUTH_ERROR", "INSUFFICIENT_CREDITS")
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details
            use_legacy_format: If True, use the flat { detail, error_code } format

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        if use_legacy_format:
            response = {
                "detail": message,
                "status_code": status_code,
            }
            if request_id:
                response["request_id"] = request_id
            if code:
                response["error_code"] = code
            if details:
                response.update(details)
        else:
            response = {
                "code": code,
                "message": message,
                "status_code": status_code,
            }
            if request_id:
                response["request_id"] = request_id
            if details:
                response["details"] = details

        return response


def _use_legacy_format(request: Request) -> bool:
    """Flat error bodies for /api endpoints, standard bodies for /api/v1 and everything else"""
    return request.url.path.startswith("/api/") and not request.url.path.startswith("/api/v1/")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    request_id = get_request_id()

    error_code_map = {
        400: "BAD_REQUEST",
        401: "AUTH_ERROR",
        402: "INSUFFICIENT_CREDITS",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE"
    }
    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    # Dict details carry their own error code (rate limits, moderation, credits)
    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("error", detail.get("code", error_code))
        error_details = {k: v for k, v in detail.items() if k not in ["error", "message", "code"]} or None

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=exc.status_code,
        request_id=request_id,
        details=error_details,
        use_legacy_format=_use_legacy_format(request)
    )

    logger.warning(
        f"HTTP {exc.status_code}: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    headers = getattr(exc, "headers", None)
    return JSONResponse(status_code=exc.status_code, content=error_response, headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions with request ID"""
    request_id = get_request_id()

    errors = exc.errors()
    error_messages = [f"{err['loc']}: {err['msg']}" for err in errors]
    detail = "; ".join(error_messages)

    error_response = ErrorResponse.create(
        message=f"Validation error: {detail}",
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        request_id=request_id,
        details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
        use_legacy_format=_use_legacy_format(request)
    )

    logger.warning(
        f"Validation error: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=error_response)


async def ai_error_handler(request: Request, exc: AIError) -> JSONResponse:
    """Render AI provider errors with their own code and status"""
    request_id = get_request_id()

    error_response = ErrorResponse.create(
        message=exc.message,
        code=exc.code,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details or None,
        use_legacy_format=_use_legacy_format(request)
    )

    logger.error(
        f"AI provider error [{exc.code}]: {exc.message}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(status_code=exc.status_code, content=error_response)


async def insufficient_credits_handler(request: Request, exc: InsufficientCreditsError) -> JSONResponse:
    """Render credit shortfalls as 402 with required/available amounts"""
    error_response = ErrorResponse.create(
        message="Insufficient credits. Upgrade your plan or wait for monthly reset.",
        code="INSUFFICIENT_CREDITS",
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        details={"required": exc.required, "available": exc.available},
        use_legacy_format=_use_legacy_format(request)
    )
    return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=error_response)


async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    details = {"action": exc.action, "retry_after": exc.retry_after}
    if exc.reset_time is not None:
        details["reset_time"] = exc.reset_time.isoformat()

    error_response = ErrorResponse.create(
        message=f"Too many {exc.action} requests. Please try again later.",
        code="RATE_LIMITED",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        details=details,
        use_legacy_format=_use_legacy_format(request)
    )
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=error_response, headers=headers)


async def content_policy_handler(request: Request, exc: ContentPolicyError) -> JSONResponse:
    error_response = ErrorResponse.create(
        message=exc.reason,
        code="CONTENT_POLICY_VIOLATION",
        status_code=status.HTTP_400_BAD_REQUEST,
        details={"categories": exc.categories} if exc.categories else None,
        use_legacy_format=_use_legacy_format(request)
    )
    logger.warning(f"Prompt blocked by moderation: {exc.reason}", extra={"path": request.url.path})
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_response)


async def asaas_error_handler(request: Request, exc: AsaasAPIError) -> JSONResponse:
    """Asaas failures are reported as 502 with the Portuguese user message"""
    from .services.billing_gateway import handle_asaas_error

    mapped = handle_asaas_error(exc)
    error_response = ErrorResponse.create(
        message=mapped["message"],
        code="PAYMENT_PROVIDER_ERROR",
        status_code=status.HTTP_502_BAD_GATEWAY,
        details={"provider_status": exc.status_code, "errors": exc.errors} if exc.errors else {"provider_status": exc.status_code},
        use_legacy_format=_use_legacy_format(request)
    )
    logger.error(f"Asaas error: {exc}", extra={"path": request.url.path})
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=error_response)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    request_id = get_request_id()

    # Don't expose internal error details outside dev
    from .config import config
    error_message = "Internal server error"
    error_details = None

    if config.ENV == "dev":
        error_message = f"Internal server error: {str(exc)}"
        error_details = {"exception_type": type(exc).__name__}

    error_response = ErrorResponse.create(
        message=error_message,
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
        details=error_details,
        use_legacy_format=_use_legacy_format(request)
    )

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_response)


def to_http_exception(exc: Exception) -> HTTPException:
    """Map service-layer validation errors to HTTP errors: ValueError 400, LookupError 404, PermissionError 403"""
    if isinstance(exc, LookupError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionError):
        status_code = status.HTTP_403_FORBIDDEN
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=str(exc))
