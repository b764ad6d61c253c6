"""
Health Check Router
==================

Simple health check endpoints for system monitoring.
"""

from fastapi import APIRouter, Depends
from typing import Dict, Any
from sqlalchemy import text
import datetime
import sys

from ..dependencies import get_lending_engine
from ...domain.services import LendingEngine
from ... import __version__

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
def health_check() -> Dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.datetime.now().isoformat(),
        "version": __version__
    }


@router.get("/detailed")
def detailed_health(engine: LendingEngine = Depends(get_lending_engine)) -> Dict[str, Any]:
    """Detailed health check with database status and current policy"""
    try:
        with engine.store.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        database = f"unavailable: {e}"

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "timestamp": datetime.datetime.now().isoformat(),
        "version": __version__,
        "python_version": sys.version,
        "services": {
            "api": "running",
            "database": database,
        },
        "policy": engine.policy.current().model_dump(mode="json"),
    }
