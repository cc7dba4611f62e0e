"""
FastAPI application for VibePhoto
Wires routers, middleware, exception handlers and the background scheduler
"""
from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import config
from .logging_config import setup_logging, RequestIDMiddleware
from .exceptions import (
    AIError,
    AsaasAPIError,
    ContentPolicyError,
    InsufficientCreditsError,
    RateLimitExceededError,
    http_exception_handler,
    validation_exception_handler,
    ai_error_handler,
    insufficient_credits_handler,
    rate_limit_handler,
    content_policy_handler,
    asaas_error_handler,
    general_exception_handler,
)
from .auth_routes import router as auth_router
from .model_routes import router as model_router
from .generation_routes import router as generation_router
from .upscale_routes import router as upscale_router
from .editor_routes import router as editor_router
from .video_routes import router as video_router
from .collection_routes import router as collection_router
from .credit_routes import router as credit_router
from .payment_routes import router as payment_router
from .webhook_routes import router as webhook_router
from .cron_routes import router as cron_router

setup_logging(config.ENV, config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import start_scheduler
        start_scheduler()
    else:
        logger.info("Background scheduler disabled (ENABLE_SCHEDULER=false)")

    yield

    if config.ENABLE_SCHEDULER:
        from .services.polling_service import stop_all_polling
        from .services.scheduled_jobs import stop_scheduler
        stop_all_polling()
        stop_scheduler()


app = FastAPI(title="VibePhoto API", version=config.BUILD_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(AIError, ai_error_handler)
app.add_exception_handler(InsufficientCreditsError, insufficient_credits_handler)
app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
app.add_exception_handler(ContentPolicyError, content_policy_handler)
app.add_exception_handler(AsaasAPIError, asaas_error_handler)
app.add_exception_handler(Exception, general_exception_handler)

for router in (
    auth_router,
    model_router,
    generation_router,
    upscale_router,
    editor_router,
    video_router,
    collection_router,
    credit_router,
    payment_router,
    webhook_router,
    cron_router,
):
    app.include_router(router)


@app.get("/")
async def root():
    return {"message": "VibePhoto API", "status": "running"}


@app.get("/health")
async def health():
    """Liveness plus database check"""
    from .db.engine import test_connection

    database_ok = test_connection()
    body = {
        "status": "healthy" if database_ok else "unhealthy",
        "service": "vibephoto",
        "version": config.BUILD_VERSION,
        "database": "connected" if database_ok else "unavailable",
        "timestamp": datetime.utcnow().isoformat(),
    }
    return JSONResponse(status_code=200 if database_ok else 503, content=body)
