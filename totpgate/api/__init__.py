"""
TOTPGATE REST API.

Thin FastAPI layer over the MFA engine.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
