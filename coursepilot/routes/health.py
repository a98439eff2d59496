"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter

from coursepilot.config import settings
from coursepilot.db.pool import db_health_check
from coursepilot.jobs.background import background_queue
from coursepilot.services.canvas.session import session_registry

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "coursepilot"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check for the app's dependencies.

    Postgres is optional: without SUPABASE_DB_URL conversations and recordings
    are kept in process memory and the check reports that mode.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    if settings.database_configured():
        try:
            db_health = await db_health_check()
            is_healthy = bool(db_health.get("healthy", False))
            checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
            if "pool_stats" in db_health:
                pool_stats = db_health["pool_stats"]
                checks["database"].update(
                    {
                        "pool_size": pool_stats.get("pool_size", 0),
                        "pool_available": pool_stats.get("pool_available", 0),
                    }
                )
            if not is_healthy:
                checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            overall_ok = overall_ok and is_healthy
        except Exception as e:
            checks["database"] = {
                "ok": False,
                "error": f"{type(e).__name__}: {e}",
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = False
    else:
        checks["database"] = {"ok": True, "mode": "in_memory"}

    # 2) Background queue
    queue_stats = background_queue.stats()
    checks["background_queue"] = {"ok": queue_stats["running"], **queue_stats}
    overall_ok = overall_ok and queue_stats["running"]

    # 3) Configuration
    config_issues = []
    if not (settings.SUPABASE_JWT_SECRET or settings.SUPABASE_URL):
        config_issues.append("SUPABASE_JWT_SECRET or SUPABASE_URL not set")
    if not settings.openai_configured():
        config_issues.append("OPENAI_API_KEY not set (assistant runs with rule-based analysis only)")

    auth_ok = bool(settings.SUPABASE_JWT_SECRET or settings.SUPABASE_URL)
    checks["configuration"] = {
        "ok": auth_ok,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and auth_ok

    checks["canvas_sessions"] = {"ok": True, "active": len(session_registry)}

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
