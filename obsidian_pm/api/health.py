"""
Liveness and readiness probes.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from obsidian_pm.core.database import get_engine, metadata
from obsidian_pm.core.logging import log_event

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Process is up. Touches nothing else."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Database reachable and every table the app defines exists."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        inspector = inspect(engine)
        missing = sorted(name for name in metadata.tables if not inspector.has_table(name))
    except Exception as e:
        log_event("error", "readyz.db_unreachable", error_code="db_unreachable", extra={"error": e})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        log_event("warning", "readyz.missing_tables", extra={"tables": ",".join(missing)})
        return JSONResponse(status_code=503, content={"status": "error", "detail": f"missing tables: {', '.join(missing)}"})
    return {"status": "ok"}
