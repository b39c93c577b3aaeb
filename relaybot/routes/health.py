# relaybot/routes/health.py
"""
Health check endpoints: liveness plus configuration presence.
"""

import time

from fastapi import APIRouter

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import log_health_check
from relaybot.models.api.health_response import HealthResponse
from relaybot.services.kv_store import ping

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "topic-relay-bot"}


@router.get("/health", response_model=HealthResponse)
async def health():
    """Report which configuration is present and whether the store answers."""
    env_check = {
        name: "configured" if present else "missing"
        for name, present in settings.config_presence().items()
    }

    t0 = time.time()
    try:
        redis_ok = await ping()
        redis_check = {"ok": bool(redis_ok), "latency_ms": round((time.time() - t0) * 1000, 1)}
    except Exception as e:
        redis_check = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    log_health_check(
        "redis",
        bool(redis_check["ok"]),
        redis_check.get("latency_ms", 0.0),
        redis_check.get("error"),
    )

    return HealthResponse(
        status="ok", timestamp=time.time(), env_check=env_check, redis=redis_check
    )
