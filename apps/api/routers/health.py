"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

import database

router = APIRouter()


async def _database_status() -> str:
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns overall system health status.
    """
    fusion = getattr(request.app.state, "fusion", None)
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_status(),
        "fusion": "ready" if fusion is not None else "not_initialized",
        "trainer": fusion.trainer.name if fusion is not None else "unknown",
    }
    if health_status["database"] != "up" or fusion is None:
        health_status["status"] = "degraded"
    return health_status


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes-style readiness probe."""
    missing = []
    if await _database_status() != "up":
        missing.append("database")
    if getattr(request.app.state, "fusion", None) is None:
        missing.append("fusion")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
