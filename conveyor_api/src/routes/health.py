from fastapi import APIRouter, Depends

from conveyor_api.src.dependencies import get_controller
from conveyor_controller.src.controller import Controller

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "conveyor-api"}

@router.get("/health/db")
async def db_health_check(controller: Controller = Depends(get_controller)):
    try:
        controller.recorder.ping()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": str(e)}

@router.get("/health/scheduler")
async def scheduler_health_check(controller: Controller = Depends(get_controller)):
    scheduler = controller.scheduler
    return {
        "status": "healthy" if scheduler.running else "unhealthy",
        "queue_length": scheduler.queue_length,
        "active_runs": len(scheduler.active_runs()),
        "slots": scheduler.max_concurrent,
    }

@router.get("/health/all")
async def full_health_check(controller: Controller = Depends(get_controller)):
    """Combined health check for all services."""
    health = {
        "api": "healthy",
        "database": "unknown",
        "scheduler": "unknown",
        "queue_length": controller.scheduler.queue_length,
    }

    # Check database
    try:
        controller.recorder.ping()
        health["database"] = "healthy"
    except Exception as e:
        health["database"] = f"unhealthy: {e}"

    # Check scheduler
    health["scheduler"] = "healthy" if controller.scheduler.running else "stopped"

    overall = "healthy" if all(
        v == "healthy" for k, v in health.items()
        if k not in ["queue_length"]
    ) else "degraded"

    return {"status": overall, "services": health}
