"""
FastAPI Dependencies for the TOTPGATE API.

Provides:
- Store and engine construction
- Session context from request headers
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..auth.engine import MFAEngine
from ..auth.models import FactorConfig, SessionContext
from ..database.mfa_db import get_mfa_db
from ..database.stores import MFAStore

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_KEY = "login"


# ============================================
# Store / Engine Dependencies
# ============================================

def get_store() -> MFAStore:
    """Get the MFA store (SQL-backed singleton)."""
    return get_mfa_db()


def get_engine(store: MFAStore = Depends(get_store)) -> MFAEngine:
    """Get an MFA engine bound to the store."""
    return MFAEngine(store)


# ============================================
# Session Context
# ============================================

def get_session_context(
    x_user_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
    x_workflow_key: Optional[str] = Header(None),
) -> SessionContext:
    """
    Build the session context from headers set by the session layer.

    Raises:
        HTTPException: If the user or session header is missing.
    """
    if not x_user_id or not x_session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session required",
        )

    return SessionContext(
        user_id=x_user_id,
        session_id=x_session_id,
        workflow_key=x_workflow_key or DEFAULT_WORKFLOW_KEY,
    )


def get_owned_config(
    config_id: str,
    session: SessionContext,
    store: MFAStore,
) -> FactorConfig:
    """
    Load a factor config belonging to the session's user.

    Raises:
        HTTPException: 404 if the config does not exist or belongs to someone else.
    """
    config = store.get_config(config_id)
    if config is None or config.user_id != session.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Factor not found",
        )
    return config
