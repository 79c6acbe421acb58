import os
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from heatcare.core.config.logging_config import setup_logging
from heatcare.core.config.settings import get_settings
from heatcare.core.exceptions import VerificationError
from heatcare.db.base import Base
from heatcare.db.session import engine
from heatcare.models import heatmeter, user, verification  # noqa: F401  (registers tables)
from heatcare.routers import heatmeters

settings = get_settings()
logger = setup_logging()

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)

# Shared per-IP request counter, only when REDIS_URL is set
redis: Optional[Redis] = None


async def _connect_redis() -> Optional[Redis]:
    if not settings.REDIS_URL:
        return None
    client = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except Exception as e:
        logger.error(f"Redis unavailable, request limiting disabled: {e}")
        return None
    logger.info("Redis connection established")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis
    redis = await _connect_redis()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield
    if redis:
        await redis.close()
        logger.info("Redis connection closed")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"in {time.perf_counter() - started:.3f}s"
    )
    return response


@app.middleware("http")
async def limit_requests(request: Request, call_next: Callable):
    if redis is None or request.client is None:
        return await call_next(request)

    key = f"rate_limit:{request.client.host}"
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, 60)
    if count > settings.REQUESTS_PER_MINUTE:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests", "code": "rate_limited"},
            headers={"Retry-After": "60"},
        )
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(heatmeters.router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(VerificationError)
async def handle_verification_error(request: Request, exc: VerificationError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}")
    headers = None
    if "retry_after" in exc.extra:
        headers = {"Retry-After": str(exc.extra["retry_after"])}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException):
    logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health_check():
    report = {
        "status": "healthy",
        "timestamp": time.time(),
        "database": "connected",
        "redis": "not configured",
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        report.update(database="disconnected", status="unhealthy")
        logger.error(f"Database health check failed: {e}")

    if redis:
        try:
            await redis.ping()
            report["redis"] = "connected"
        except Exception as e:
            report.update(redis="disconnected", status="unhealthy")
            logger.error(f"Redis health check failed: {e}")

    return report


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
