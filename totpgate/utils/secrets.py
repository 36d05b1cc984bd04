"""
Secrets management utilities for TOTPGATE.

Secrets are looked up, in order, in:
1. The file named by ``{NAME}_FILE`` (Docker/Kubernetes secret mounts)
2. The ``{NAME}`` environment variable (development)
3. ``/run/secrets/{name}`` (Docker secrets default path)

Usage:
    from totpgate.utils.secrets import get_digest_key

    key = get_digest_key()  # bytes, from TOTPGATE_DIGEST_KEY[_FILE]
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)

DIGEST_KEY_SECRET = "TOTPGATE_DIGEST_KEY"

# HMAC keys shorter than this are rejected outright.
MIN_DIGEST_KEY_BYTES = 16

DOCKER_SECRETS_DIR = "/run/secrets"


def _read_secret_file(path: str, name: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    try:
        with open(path, 'r') as f:
            value = f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret {name} from {path}: {e}")
        return None
    logger.debug(f"Loaded secret {name} from {path}")
    return value or None


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from the first source that has it.

    Results are cached per (name, default); call ``get_secret.cache_clear()``
    after changing the environment.

    Args:
        name: Secret name (e.g., "TOTPGATE_DIGEST_KEY")
        default: Value returned when no source has the secret

    Returns:
        Secret value or default
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path:
        value = _read_secret_file(file_path, name)
        if value is not None:
            return value

    value = os.environ.get(name)
    if value:
        logger.debug(f"Loaded secret {name} from environment")
        return value

    value = _read_secret_file(os.path.join(DOCKER_SECRETS_DIR, name.lower()), name)
    if value is not None:
        return value

    if default is None:
        logger.warning(f"Secret {name} not found, no default provided")
    return default


def get_required_secret(name: str) -> str:
    """
    Get a required secret.

    Raises:
        ValueError: If no source has the secret
    """
    value = get_secret(name)
    if value is None:
        raise ValueError(
            f"Required secret '{name}' not found. "
            f"Set {name} or {name}_FILE environment variable."
        )
    return value


def get_digest_key() -> bytes:
    """
    Installation key for named-key HMAC digests (enrollment tokens).

    Raises:
        ValueError: If the key is missing or shorter than MIN_DIGEST_KEY_BYTES
    """
    key = get_required_secret(DIGEST_KEY_SECRET).encode("utf-8")
    if len(key) < MIN_DIGEST_KEY_BYTES:
        raise ValueError(
            f"{DIGEST_KEY_SECRET} must be at least {MIN_DIGEST_KEY_BYTES} bytes"
        )
    return key


def get_database_password() -> str:
    """PostgreSQL password; empty when the server trusts the connection."""
    return get_secret("POSTGRES_PASSWORD", "")


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """
    Mask an identifier for log lines, e.g. "sess...9a1b".
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"
