from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
import structlog

from fidogate.api.v1 import health, users, webauthn
from fidogate.core.config import ChallengeBackend, settings
from fidogate.core.errors import FidogateError, InternalError
from fidogate.core.logging import setup_logging
from fidogate.db import postgres, redis
from fidogate.api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware

# Setup structured logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info("Starting fidogate API", version=settings.VERSION, rp_id=settings.FIDO2_RP_ID)

    await postgres.init_db()
    if settings.CHALLENGE_BACKEND is ChallengeBackend.REDIS:
        await redis.init_pool()

    logger.info("Application startup complete.")
    yield

    # Shutdown
    logger.info("Shutting down fidogate API")
    await postgres.close_db()
    if settings.CHALLENGE_BACKEND is ChallengeBackend.REDIS:
        await redis.close_pool()
    logger.info("Application shutdown complete.")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)


@app.exception_handler(FidogateError)
async def fidogate_error_handler(request: Request, exc: FidogateError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Internal error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": InternalError.default_message})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": InternalError.default_message})


# Middleware
app.add_middleware(RequestIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Prometheus metrics
Instrumentator().instrument(app).expose(app)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(webauthn.router, prefix=f"{settings.API_V1_STR}/webauthn", tags=["webauthn"])
app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["users"])


@app.get("/")
def read_root():
    return {"project": settings.PROJECT_NAME, "version": settings.VERSION}
