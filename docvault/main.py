from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError
import logging

from docvault.core.config import settings
from docvault.core.database import create_tables
from docvault.core.logging import setup_logging
from docvault.core.redis import RedisClient, get_redis, redis_client
from docvault.core.minio import MinioClient, get_minio, minio_client
from docvault.api.v1.router import api_router
from docvault.schemas.common import ErrorResponse
from docvault.services.notifications import notification_client
from docvault.utils.exceptions import DocVaultException, StorageUnavailableError

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    try:
        await redis_client.connect()
        await redis_client.ping()
    except (RedisError, OSError) as e:
        # Locks and repair queues degrade to log-only without Redis
        logger.warning("Redis unavailable, continuing without it: %s", e)
        await redis_client.disconnect()
    try:
        await minio_client.ensure_bucket_exists()
    except StorageUnavailableError as e:
        logger.error("Object storage unavailable at startup: %s", e)
    if settings.AUTO_CREATE_TABLES:
        await create_tables()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await notification_client.drain()
    await redis_client.disconnect()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocVaultException)
async def docvault_exception_handler(request: Request, exc: DocVaultException):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    payload = ErrorResponse(error=exc.error, message=exc.message, data=exc.data)
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump(mode="json"))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    payload = ErrorResponse(error="Validation error", message="Invalid request", data=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=400, content=payload.model_dump(mode="json"))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("%s %s violated a constraint: %s", request.method, request.url.path, exc.orig)
    payload = ErrorResponse(error="Conflict", message="Resource already exists or is still referenced")
    return JSONResponse(status_code=409, content=payload.model_dump(mode="json"))


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "redoc": "/api/redoc",
        "health": "/health",
        "api": "/api/v1"
    }


# Health check endpoint
@app.get("/health")
async def health_check(
    storage: MinioClient = Depends(get_minio),
    redis: RedisClient = Depends(get_redis)
):
    redis_status = "healthy"
    try:
        if not await redis.ping():
            redis_status = "unavailable"
    except (RedisError, OSError) as e:
        logger.warning("Redis health check failed: %s", e)
        redis_status = "unhealthy"

    minio_status = "healthy"
    try:
        await storage.ensure_bucket_exists()
    except StorageUnavailableError as e:
        logger.warning("MinIO health check failed: %s", e)
        minio_status = "unhealthy"

    return {
        "status": "healthy" if redis_status == "healthy" and minio_status == "healthy" else "degraded",
        "services": {
            "redis": redis_status,
            "minio": minio_status
        }
    }
