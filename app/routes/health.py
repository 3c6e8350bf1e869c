# app/routes/health.py
"""
Health check endpoints. Unauthenticated so orchestrators can probe them.
"""

import time

from fastapi import APIRouter, Request

from app.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "family-events"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: database pool, browser pool, scheduler and payment guard.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if "pool_stats" in db_health:
            checks["database"]["pool_size"] = db_health["pool_stats"].get("pool_size", 0)
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    container = getattr(request.app.state, "container", None)
    if container is None:
        checks["services"] = {"ok": False, "error": "Services not initialized"}
        overall_ok = False
    else:
        # 2) Browser pool (not started yet is fine; it launches on first use)
        if container.browser_pool is not None:
            checks["browser"] = {"ok": True, **container.browser_pool.health_check()}

        # 3) Scheduler
        scheduler_status = container.scheduler.status()
        checks["scheduler"] = {
            "ok": not container.shutdown_requested,
            "running": scheduler_status["running"],
            "tasks": {task["name"]: task["last_run_time"] for task in scheduler_status["tasks"]},
        }
        overall_ok = overall_ok and checks["scheduler"]["ok"]

        # 4) Payment guard
        guard_summary = container.guard.violation_summary()
        checks["payment_guard"] = {"ok": True, "violations": guard_summary["total"]}

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
