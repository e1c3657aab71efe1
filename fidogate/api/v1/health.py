from typing import Any, Dict

from fastapi import APIRouter
import structlog

from fidogate.core.config import ChallengeBackend, settings
from fidogate.db.redis import redis_client

router = APIRouter()
logger = structlog.get_logger()


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Liveness plus reachability of the challenge backend."""
    backend_ok = True
    if settings.CHALLENGE_BACKEND is ChallengeBackend.REDIS:
        try:
            backend_ok = await redis_client.ping()
        except Exception as e:
            logger.warning("Challenge backend unreachable", error=str(e))
            backend_ok = False

    return {
        "status": "ok" if backend_ok else "degraded",
        "version": settings.VERSION,
        "challenge_backend": settings.CHALLENGE_BACKEND.value,
    }
