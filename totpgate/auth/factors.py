"""
Factor kinds and their capabilities.

Each factor kind is one entry in ``FACTOR_TYPES``, implementing the
``AuthFactor`` interface. The engine dispatches on ``FactorConfig.factor_kind``;
a new kind is a new enum member plus a new entry, with no shared base logic
to override.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type, Union

from ..database.stores import ChallengeStore
from .challenges import ChallengeIssuer
from .models import Challenge, FactorConfig, FactorKind, SessionContext, ValidationResult
from .provisioning import generate_qr_code_base64, get_totp_provisioning_uri
from .timesteps import TimestepPolicy
from .totp import Secret
from .validator import ChallengeValidator


class AuthFactor(ABC):
    """Capability interface every factor kind provides."""

    kind: FactorKind
    display_name: str

    @abstractmethod
    def issue_challenges(
        self,
        config: FactorConfig,
        session: SessionContext,
        challenges: List[Challenge],
    ) -> List[Challenge]:
        """New challenges to record, given the live ones."""
        pass

    @abstractmethod
    def validate_response(
        self,
        config: FactorConfig,
        session: SessionContext,
        challenges: List[Challenge],
        code: Optional[str],
        response_token: Optional[str] = None,
    ) -> ValidationResult:
        pass

    @abstractmethod
    def enrollment_hint(self, account_name: str, secret: Secret) -> Dict[str, str]:
        """Data the presentation layer needs to render enrollment."""
        pass


class TOTPFactor(AuthFactor):
    """Mobile authenticator app (Google Authenticator, Authy, ...)."""

    kind = FactorKind.TOTP
    display_name = "Mobile Phone App (TOTP)"
    description = (
        "Attach a mobile authenticator application to your account. When you "
        "need to authenticate, you will enter a code shown on your phone."
    )

    def __init__(self, policy: TimestepPolicy, store: ChallengeStore):
        self.policy = policy
        self.issuer = ChallengeIssuer(policy)
        self.validator = ChallengeValidator(policy, store)

    def issue_challenges(self, config, session, challenges):
        return self.issuer.issue_if_needed(config, session, challenges)

    def validate_response(self, config, session, challenges, code, response_token=None):
        return self.validator.validate(config, session, challenges, code, response_token)

    def enrollment_hint(self, account_name: str, secret: Secret) -> Dict[str, str]:
        uri = get_totp_provisioning_uri(secret, account_name)
        return {
            "factor_name": self.display_name,
            "provisioning_uri": uri,
            "qr_code_base64": generate_qr_code_base64(uri),
        }


FACTOR_TYPES: Dict[FactorKind, Type[AuthFactor]] = {
    FactorKind.TOTP: TOTPFactor,
}


def build_factor(
    kind: Union[FactorKind, str],
    policy: TimestepPolicy,
    store: ChallengeStore,
) -> AuthFactor:
    """
    Instantiate the factor implementation for a kind.

    Raises:
        LookupError: If the kind is not registered.
    """
    try:
        factor_type = FACTOR_TYPES[FactorKind(kind)]
    except (KeyError, ValueError):
        raise LookupError(f"Unknown factor kind: {kind!r}")
    return factor_type(policy, store)
