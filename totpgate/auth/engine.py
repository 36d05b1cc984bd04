"""
MFA engine: the entry point used by the web layer.

Wraps enrollment, challenge issuance and response validation, and owns the
critical sections around the challenge ledger. Every read-check-write on the
ledger happens inside ``store.locked(config_id)``.
"""
import logging
from typing import Dict, List, Optional

from ..database.stores import MFAStore
from .enrollment import EnrollmentTokenVerifier
from .factors import AuthFactor, build_factor
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
from .totp import Secret

logger = logging.getLogger(__name__)


class MFAEngine:
    """
    TOTP multi-factor authentication engine.

    Example usage:
        engine = MFAEngine(InMemoryMFAStore())

        state = engine.begin_enrollment(user_id, None)
        result = engine.complete_enrollment(user_id, secret, code)

        engine.issue_challenges(result.config, session)
        outcome = engine.validate_response(result.config, session, "123456")
        if outcome.is_valid:
            engine.complete_challenge(result.config, session, outcome.response_token)
    """

    def __init__(
        self,
        store: MFAStore,
        policy: Optional[TimestepPolicy] = None,
        digest_key: Optional[bytes] = None,
    ):
        self.store = store
        self.policy = policy or TimestepPolicy()
        self.enrollment = EnrollmentTokenVerifier(
            token_store=store,
            config_store=store,
            policy=self.policy,
            digest_key=digest_key,
        )

    def factor_for(self, kind) -> AuthFactor:
        return build_factor(kind, self.policy, self.store)

    # ==========================================
    # Enrollment
    # ==========================================

    def begin_enrollment(
        self,
        user_id: str,
        candidate_secret: Optional[str] = None,
    ) -> EnrollmentState:
        return self.enrollment.begin_enrollment(user_id, candidate_secret)

    def complete_enrollment(
        self,
        user_id: str,
        candidate_secret: Optional[str],
        code: Optional[str],
        factor_name: Optional[str] = None,
    ) -> EnrollmentResult:
        return self.enrollment.complete_enrollment(user_id, candidate_secret, code, factor_name)

    def enrollment_hint(
        self,
        account_name: str,
        secret: Secret,
        kind: FactorKind = FactorKind.TOTP,
    ) -> Dict[str, str]:
        return self.factor_for(kind).enrollment_hint(account_name, secret)

    # ==========================================
    # Challenges
    # ==========================================

    def issue_challenges(
        self,
        config: FactorConfig,
        session: SessionContext,
    ) -> List[Challenge]:
        """
        Issue a challenge for the config unless a live one exists.

        Returns:
            Newly issued challenges (empty when one was already live).
        """
        factor = self.factor_for(config.factor_kind)
        with self.store.locked(config.config_id):
            live = self.store.find_live_challenges(config.config_id, self.policy.now())
            return self._issue(factor, config, session, live)

    def validate_response(
        self,
        config: FactorConfig,
        session: SessionContext,
        code: Optional[str],
        response_token: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate a submitted code (or a response token from an earlier answer).

        A challenge is issued first if none is live, so a response is always
        checked against a challenge bound to some session.

        Raises:
            ChallengeLedgerError: If more than one challenge is live.
            Base32DecodeError: If the stored secret is malformed; the
                challenge is left unanswered.
        """
        factor = self.factor_for(config.factor_kind)
        with self.store.locked(config.config_id):
            return self._validate(factor, config, session, code, response_token)

    def complete_challenge(
        self,
        config: FactorConfig,
        session: SessionContext,
        response_token: str,
    ) -> ValidationResult:
        """
        Consume an answered challenge.

        Call this once the answer has been acted on (e.g. the session was
        upgraded). Any further response while the challenge is live is
        rejected as reused.
        """
        factor = self.factor_for(config.factor_kind)
        with self.store.locked(config.config_id):
            result = self._validate(factor, config, session, None, response_token)
            if result.is_valid:
                self.store.mark_completed(result.answered_challenge)
                logger.info(
                    f"Challenge {result.answered_challenge.challenge_id} completed "
                    f"for config {config.config_id}"
                )
        return result

    def _issue(
        self,
        factor: AuthFactor,
        config: FactorConfig,
        session: SessionContext,
        live: List[Challenge],
    ) -> List[Challenge]:
        issued = factor.issue_challenges(config, session, live)
        for challenge in issued:
            self.store.save_challenge(challenge)
        return issued

    def _validate(
        self,
        factor: AuthFactor,
        config: FactorConfig,
        session: SessionContext,
        code: Optional[str],
        response_token: Optional[str],
    ) -> ValidationResult:
        live = self.store.find_live_challenges(config.config_id, self.policy.now())
        if not live:
            live = self._issue(factor, config, session, live)
        return factor.validate_response(config, session, live, code, response_token)
