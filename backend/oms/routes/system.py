# backend/oms/routes/system.py
"""
System health endpoints.

/api/health checks the central database; /api/health/stores lists the store
handles this process has opened (endpoints rendered without passwords).
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services.store_router import get_router

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Central database connectivity with latency."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {"status": "connected" if healthy else "degraded", "database": database}
    return body, 200 if healthy else 503


@system_bp.get("/health/stores")
def store_health():
    router = get_router()
    handles = [router.get_handle(endpoint) for endpoint in router.cached_endpoints()]
    return {
        "count": len(handles),
        "stores": [repr(h) for h in handles],
    }
