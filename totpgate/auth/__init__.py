"""
TOTP multi-factor authentication for TOTPGATE.

This package provides:
- Base32 secret decoding and TOTP code generation (RFC 4226 / RFC 6238)
- Timestep window policy
- Enrollment with secret provenance checking
- Challenge issuance and anti-replay validation
"""
from .base32 import Base32DecodeError
from .engine import MFAEngine
from .models import (
    Challenge,
    EnrollmentResult,
    EnrollmentState,
    FactorConfig,
    FactorKind,
    SessionContext,
    ValidationResult,
)
from .timesteps import TimestepPolicy
from .totp import compute_code, generate_totp_secret
from .validator import ChallengeLedgerError

__all__ = [
    "Base32DecodeError",
    "MFAEngine",
    "Challenge",
    "EnrollmentResult",
    "EnrollmentState",
    "FactorConfig",
    "FactorKind",
    "SessionContext",
    "ValidationResult",
    "TimestepPolicy",
    "compute_code",
    "generate_totp_secret",
    "ChallengeLedgerError",
]
