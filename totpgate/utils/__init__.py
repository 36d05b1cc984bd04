"""
Shared utilities for TOTPGATE.

This package provides:
- Secrets management
"""
from .secrets import (
    get_secret,
    get_required_secret,
    get_digest_key,
    get_database_password,
    mask_secret,
)

__all__ = [
    "get_secret",
    "get_required_secret",
    "get_digest_key",
    "get_database_password",
    "mask_secret",
]
