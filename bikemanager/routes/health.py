"""
Health check endpoints with dependency monitoring.
"""

import time

from fastapi import APIRouter, Depends

from bikemanager.dependencies import get_services

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "bikemanager-notifications"}


@router.get("/readyz")
async def readyz(services=Depends(get_services)):
    """
    Readiness check covering the database pool, Redis and the delivery queue.
    Backends that are not configured report as in-memory and count as ready.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    if services.db_pool is None:
        checks["database"] = {"ok": True, "backend": "memory"}
    else:
        try:
            db_health = await services.db_pool.health_check()
            is_healthy = db_health.get("healthy", False)
            checks["database"] = {
                "ok": is_healthy,
                "backend": "postgres",
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            if "pool_stats" in db_health:
                checks["database"]["pool_stats"] = db_health["pool_stats"]
            if not is_healthy:
                checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            overall_ok = overall_ok and is_healthy
        except Exception as e:
            checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 2) Redis
    t0 = time.time()
    if services.redis_client is None:
        checks["redis"] = {"ok": True, "backend": "memory"}
    else:
        redis_ok = await services.redis_client.ping()
        checks["redis"] = {
            "ok": redis_ok,
            "backend": "redis",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and redis_ok

    # 3) Delivery queue and scheduler
    checks["delivery_queue"] = {"ok": services.started, **services.delivery_queue.stats()}
    checks["reminder_cron"] = {
        "enabled": services.reminder_cron.enabled,
        "is_scanning": services.reminder_scanner.is_scanning,
    }
    overall_ok = overall_ok and services.started

    checks["configuration"] = {
        "environment": services.settings.environment,
        "email_sender": type(services.email_sender).__name__,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
