"""
Health Check Endpoints.

Provides health status for the API and its store.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..models import HealthStatus
from ..deps import get_store
from ...database.mfa_db import MFADB
from ...database.stores import MFAStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("", response_model=HealthStatus)
def health_check(store: MFAStore = Depends(get_store)):
    """
    Basic health check endpoint.

    Returns overall system status.
    """
    services = {}
    overall_healthy = True

    if isinstance(store, MFADB):
        try:
            start = time.time()
            with store.get_session() as session:
                session.execute(text("SELECT 1"))
            latency = (time.time() - start) * 1000
            services["database"] = f"healthy ({latency:.1f}ms)"
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            services["database"] = f"unhealthy: {str(e)}"
            overall_healthy = False
        services["ledger_locks"] = "advisory" if store.uses_advisory_locks else "process-local"
    else:
        services["store"] = f"healthy ({type(store).__name__})"
        services["ledger_locks"] = "process-local"

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )
