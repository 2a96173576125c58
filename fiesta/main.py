"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from secure import Secure
from asgi_correlation_id import CorrelationIdMiddleware
from fastapi_limiter import FastAPILimiter
import redis.asyncio as redis  # type: ignore[import-untyped]

from fiesta.api import api_router
from fiesta.api.errors import register_exception_handlers
from fiesta.core.config import get_settings
from fiesta.db.session import get_sessionmaker
from fiesta.security.logging_filters import SensitiveFilter
from fiesta.services.auth_service import ensure_default_admin

logger = logging.getLogger(__name__)

settings = get_settings()

_ALLOWED_ORIGINS = [origin for origin in settings.cors_allowlist if origin]
if not _ALLOWED_ORIGINS:
    _ALLOWED_ORIGINS = [origin for origin in settings.cors_allow_origins if origin]


async def _bootstrap_admin() -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await ensure_default_admin(session)


@asynccontextmanager
async def lifespan(_: FastAPI):
    redis_pool = None
    if settings.redis_url:
        try:
            redis_pool = redis.from_url(
                settings.redis_url, encoding="utf-8", decode_responses=True
            )
            await FastAPILimiter.init(redis_pool)
        except Exception:  # pragma: no cover - limiter startup is best effort
            logger.exception("Failed to initialize rate limiter")
    try:
        await _bootstrap_admin()
    except Exception:  # pragma: no cover - best effort bootstrap
        logger.exception("Failed to ensure default admin account")
    try:
        yield
    finally:
        if redis_pool is not None:
            try:
                await FastAPILimiter.close()
                await redis_pool.aclose()
            except Exception:  # pragma: no cover - limiter shutdown
                logger.exception("Failed to close rate limiter")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware, header_name="X-Request-ID")

_secure_headers = Secure()


@app.middleware("http")
async def _apply_security_headers(request, call_next):
    response = await call_next(request)
    _secure_headers.set_headers(response)
    return response


for _logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", ""):
    _logger = logging.getLogger(_logger_name)
    if not any(isinstance(flt, SensitiveFilter) for flt in _logger.filters):
        _logger.addFilter(SensitiveFilter())

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Fiesta Marketplace API"}
