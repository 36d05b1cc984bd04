"""
Pytest configuration and shared fixtures for TOTPGATE tests.

This module provides common test fixtures for:
- A controllable clock and timestep policy
- In-memory and SQLite-backed stores
- An enrolled TOTP factor and session context
"""
import pytest
from pathlib import Path

import pyotp
from pydantic import SecretStr

# Add repository root to Python path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from totpgate.auth.engine import MFAEngine
from totpgate.auth.models import FactorConfig, FactorKind, SessionContext
from totpgate.auth.timesteps import TimestepPolicy
from totpgate.database.memory_store import InMemoryMFAStore
from totpgate.database.mfa_db import MFADB


# RFC 6238 test secret ("12345678901234567890") in base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"

# Start every test at the beginning of timestep 1000
START_TIMESTEP = 1000


class FakeClock:
    """Manually advanced clock (epoch seconds)."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set_timestep(self, timestep: int, offset: int = 0) -> None:
        self.now = timestep * 30 + offset


# ============================================
# Time Fixtures
# ============================================

@pytest.fixture
def clock():
    return FakeClock(START_TIMESTEP * 30)


@pytest.fixture
def policy(clock):
    return TimestepPolicy(clock=clock)


# ============================================
# Store / Engine Fixtures
# ============================================

@pytest.fixture
def digest_key():
    return b"test-installation-digest-key"


@pytest.fixture
def store():
    return InMemoryMFAStore()


@pytest.fixture
def sql_store(tmp_path):
    """SQLite-backed store with schema created."""
    db = MFADB(f"sqlite:///{tmp_path / 'mfa.db'}")
    db.init_schema()
    yield db
    db.engine.dispose()


@pytest.fixture
def engine(store, policy, digest_key):
    return MFAEngine(store, policy=policy, digest_key=digest_key)


# ============================================
# Factor / Session Fixtures
# ============================================

@pytest.fixture
def secret():
    return SecretStr(RFC_SECRET)


@pytest.fixture
def code_at(secret):
    """Independent oracle: the code pyotp computes for a timestep."""
    totp = pyotp.TOTP(secret.get_secret_value())

    def _code_at(timestep: int) -> str:
        return totp.at(timestep * 30)

    return _code_at


@pytest.fixture
def user_id():
    return "550e8400-e29b-41d4-a716-446655440000"


@pytest.fixture
def session(user_id):
    return SessionContext(
        user_id=user_id,
        session_id="sess-7f3c9a1b2d4e",
        workflow_key="login",
    )


@pytest.fixture
def make_config(user_id, secret):
    def _make_config(target_store, config_id="cfg-totp-1"):
        config = FactorConfig(
            config_id=config_id,
            user_id=user_id,
            factor_kind=FactorKind.TOTP,
            factor_name="Mobile App (TOTP)",
            secret=secret,
            created_at=START_TIMESTEP * 30,
        )
        target_store.save_config(config)
        return config

    return _make_config


@pytest.fixture
def config(store, make_config):
    """A TOTP factor enrolled in the in-memory store."""
    return make_config(store)
