"""
Enrollment with secret provenance checking.

When a client round-trips a candidate secret during enrollment (for example
when the form is re-rendered after a wrong code), we only accept it if we
generated it. Each generated secret is recorded as a temporary token holding
a keyed digest of the secret, so the token table never contains the secret
itself. A candidate without a matching, unexpired token is discarded and a
fresh secret is generated. CSRF protection already covers most of this; the
token is a second, independent barrier against a caller planting a known key.
"""
import hashlib
import hmac
import logging
import uuid
from typing import Optional

from pydantic import SecretStr

from ..database.stores import FactorConfigStore, TokenStore
from ..utils.secrets import get_digest_key, mask_secret
from .models import (
    PROVENANCE_GENERATED,
    PROVENANCE_VERIFIED,
    EnrollmentResult,
    EnrollmentState,
    EnrollmentToken,
    FactorConfig,
    FactorKind,
)
from .timesteps import TimestepPolicy
from .totp import find_valid_timestep, generate_totp_secret

logger = logging.getLogger(__name__)

TOKEN_TYPE_TOTP_KEY = "mfa:totp:key"
DIGEST_KEY_NAME = "mfa.totp.sync"

# Generated secrets can be confirmed for one hour.
ENROLLMENT_TOKEN_TTL = 3600

DEFAULT_FACTOR_NAME = "Mobile App (TOTP)"


def digest_with_named_key(value: str, key_name: str, master_key: bytes) -> str:
    """
    HMAC-SHA256 digest of ``value`` under a key derived for ``key_name``.

    Deriving one key per purpose keeps digests made for different features
    from being interchangeable.

    Args:
        value: Text to digest.
        key_name: Purpose label (e.g. "mfa.totp.sync").
        master_key: Installation secret.

    Returns:
        Hex digest.
    """
    named_key = hmac.new(master_key, key_name.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(named_key, value.encode("utf-8"), hashlib.sha256).hexdigest()


class EnrollmentTokenVerifier:
    """
    Issues and verifies candidate secrets for TOTP enrollment.

    Example usage:
        verifier = EnrollmentTokenVerifier(store, store, TimestepPolicy())

        state = verifier.begin_enrollment(user_id, None)
        # show state.secret to the user, they add it to their app ...

        result = verifier.complete_enrollment(user_id, secret_from_form, code)
        if result.config:
            ...  # factor enrolled
    """

    def __init__(
        self,
        token_store: TokenStore,
        config_store: FactorConfigStore,
        policy: TimestepPolicy,
        digest_key: Optional[bytes] = None,
    ):
        self.token_store = token_store
        self.config_store = config_store
        self.policy = policy
        self._digest_key = digest_key

    def _digest(self, secret: str) -> str:
        if self._digest_key is None:
            self._digest_key = get_digest_key()
        return digest_with_named_key(secret, DIGEST_KEY_NAME, self._digest_key)

    def begin_enrollment(
        self,
        user_id: str,
        candidate_secret: Optional[str],
    ) -> EnrollmentState:
        """
        Settle which secret the user should enroll.

        Args:
            user_id: The enrolling user; tokens are scoped to this identity.
            candidate_secret: Secret sent back by the client, or None.

        Returns:
            EnrollmentState with the secret to display and whether it was
            verified from a token or freshly generated.
        """
        now = self.policy.now()
        candidate = (candidate_secret or "").strip()

        if candidate:
            token = self.token_store.find_token(
                resource_id=user_id,
                token_type=TOKEN_TYPE_TOTP_KEY,
                code_hash=self._digest(candidate),
                now=now,
            )
            if token is not None:
                return EnrollmentState(
                    secret=SecretStr(candidate),
                    provenance=PROVENANCE_VERIFIED,
                )

            logger.warning(
                f"Discarding enrollment secret without provenance for user {mask_secret(user_id)}"
            )

        secret = generate_totp_secret()
        self.token_store.save_token(
            EnrollmentToken(
                resource_id=user_id,
                token_type=TOKEN_TYPE_TOTP_KEY,
                code_hash=self._digest(secret.get_secret_value()),
                expires_at=now + ENROLLMENT_TOKEN_TTL,
            )
        )
        logger.debug(f"Generated enrollment secret for user {mask_secret(user_id)}")

        return EnrollmentState(secret=secret, provenance=PROVENANCE_GENERATED)

    def complete_enrollment(
        self,
        user_id: str,
        candidate_secret: Optional[str],
        code: Optional[str],
        factor_name: Optional[str] = None,
    ) -> EnrollmentResult:
        """
        Confirm that the user's device is in sync and enroll the factor.

        The code must match the (provenance-checked) secret at a timestep in
        the window around now.

        Returns:
            EnrollmentResult with ``config`` set on success, otherwise an
            error message ("Required" or "Invalid") and the secret to show
            again, which is a new one if the candidate was rejected.
        """
        state = self.begin_enrollment(user_id, candidate_secret)
        code = (code or "").strip()

        timestep = None
        if code:
            allowed = self.policy.allowed_timesteps(self.policy.current_timestep())
            timestep = find_valid_timestep(state.secret, code, allowed)

        if timestep is None:
            return EnrollmentResult(
                secret=state.secret,
                provenance=state.provenance,
                error_message="Invalid" if code else "Required",
            )

        config = FactorConfig(
            config_id=str(uuid.uuid4()),
            user_id=user_id,
            factor_kind=FactorKind.TOTP,
            factor_name=factor_name or DEFAULT_FACTOR_NAME,
            secret=state.secret,
            created_at=self.policy.now(),
        )
        self.config_store.save_config(config)

        logger.info(f"Enrolled TOTP factor {config.config_id} for user {mask_secret(user_id)}")

        return EnrollmentResult(
            secret=state.secret,
            provenance=state.provenance,
            config=config,
        )
