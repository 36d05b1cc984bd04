"""
Data model for the TOTP factor: factor configurations, enrollment tokens,
challenges and validation results.
"""
import hashlib
import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import SecretStr


class FactorKind(str, Enum):
    """Closed set of factor kinds known to the engine."""
    TOTP = "totp"


PROVENANCE_VERIFIED = "verified"
PROVENANCE_GENERATED = "generated"


def digest_response_token(token: str) -> str:
    """SHA-256 hex digest of a response token; only the digest is stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class SessionContext:
    """Who is asking: user, login session and workflow (e.g. login vs. settings)."""
    user_id: str
    session_id: str
    workflow_key: str


@dataclass
class FactorConfig:
    """An enrolled factor. The secret is immutable once enrollment completes."""
    config_id: str
    user_id: str
    factor_kind: FactorKind
    factor_name: str
    secret: SecretStr
    created_at: int = 0


@dataclass
class EnrollmentToken:
    """
    Proof that a candidate secret was generated by the server.

    ``code_hash`` is a keyed digest of the candidate secret, never the secret.
    """
    resource_id: str
    token_type: str
    code_hash: str
    expires_at: int
    token_id: Optional[str] = None


@dataclass
class Challenge:
    """
    One issued authentication opportunity, tied to one timestep.

    ``answered`` and ``reused`` depend on the response token presented by the
    current request; call :meth:`present_response_token` before reading them.
    """
    challenge_id: str
    config_id: str
    user_id: str
    session_id: str
    workflow_key: str
    challenge_key: int
    challenge_ttl: int
    response_digest: Optional[str] = None
    response_ttl: Optional[int] = None
    is_completed: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    _token_valid: bool = field(default=False, init=False, repr=False, compare=False)

    def present_response_token(self, token: Optional[str], now: int) -> None:
        """Record whether this request carries a live token for the stored answer."""
        self._token_valid = bool(
            token
            and self.response_digest is not None
            and self.response_ttl is not None
            and self.response_ttl > now
            and hmac.compare_digest(digest_response_token(token), self.response_digest)
        )

    @property
    def answered(self) -> bool:
        return self.response_digest is not None and self._token_valid

    @property
    def reused(self) -> bool:
        if self.is_completed:
            return True
        return self.response_digest is not None and not self._token_valid


@dataclass
class ValidationResult:
    """Outcome of one validation attempt. Never persisted."""
    value: str = ""
    answered_challenge: Optional[Challenge] = None
    error_message: Optional[str] = None
    is_wait: bool = False
    wait_seconds: Optional[int] = None
    response_token: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.answered_challenge is not None


@dataclass
class EnrollmentState:
    """Secret to show the user, and whether it came from a verified token."""
    secret: SecretStr
    provenance: str

    @property
    def is_generated(self) -> bool:
        return self.provenance == PROVENANCE_GENERATED


@dataclass
class EnrollmentResult:
    """Outcome of an enrollment attempt; ``config`` is set only on success."""
    secret: SecretStr
    provenance: str
    config: Optional[FactorConfig] = None
    error_message: Optional[str] = None
