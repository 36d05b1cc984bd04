"""
Challenge response validation (anti-replay core).

A response is checked against the single live challenge for a factor config.
Before any code is compared, the challenge must belong to the caller's
session and workflow, the current time must still be an acceptable response
time for it, and it must not already have been used. Failing one of these is
a *wait* result: a timing or session race, not a wrong credential.
"""
import logging
import secrets
from typing import List, Optional

from ..database.stores import ChallengeStore
from ..utils.secrets import mask_secret
from .models import (
    Challenge,
    FactorConfig,
    SessionContext,
    ValidationResult,
    digest_response_token,
)
from .timesteps import TimestepPolicy
from .totp import find_valid_timestep

logger = logging.getLogger(__name__)

# How long a response token proves an answer after the code was accepted.
RESPONSE_TTL = 60

PROPERTY_TIMESTEP = "totp.timestep"


class ChallengeLedgerError(RuntimeError):
    """The ledger holds an unexpected number of live challenges for a config."""


def _wait(challenge: Challenge, now: int, reason: str) -> ValidationResult:
    wait_seconds = (challenge.challenge_ttl - now) + 1
    return ValidationResult(
        is_wait=True,
        wait_seconds=wait_seconds,
        error_message=(
            f"{reason} Wait {wait_seconds} second(s) for the code to cycle, "
            f"then try again."
        ),
    )


class ChallengeValidator:
    """
    Validates a submitted TOTP code against the live challenge.

    Must be called inside ``store.locked(config_id)`` with the challenges read
    in that same section, so that checking and answering are atomic.
    """

    def __init__(self, policy: TimestepPolicy, store: ChallengeStore):
        self.policy = policy
        self.store = store

    def validate(
        self,
        config: FactorConfig,
        session: SessionContext,
        challenges: List[Challenge],
        code: Optional[str],
        response_token: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate a response.

        Args:
            config: Factor configuration holding the secret.
            session: Caller's session and workflow.
            challenges: Live challenges for the config (exactly one expected).
            code: Code submitted by the user.
            response_token: Token returned by an earlier successful answer,
                if the client is re-confirming it.

        Returns:
            ValidationResult: answered, error ("Required"/"Invalid") or wait.

        Raises:
            ChallengeLedgerError: If there is not exactly one live challenge.
        """
        code = (code or "").strip()

        if len(challenges) != 1:
            logger.error(
                f"Reached TOTP validation for config {config.config_id} with "
                f"{len(challenges)} unexpired challenges, expected exactly one"
            )
            raise ChallengeLedgerError(
                f"Unexpected number of unexpired challenges ({len(challenges)}), "
                f"expected exactly one."
            )

        challenge = challenges[0]
        now = self.policy.now()
        current_timestep = self.policy.timestep_at(now)

        challenge.present_response_token(response_token, now)

        wait = self._check_preconditions(challenge, session, now, current_timestep)
        if wait is not None:
            wait.value = code
            return wait

        result = ValidationResult(value=code)

        # The client already answered this challenge and holds the token.
        if challenge.answered:
            result.answered_challenge = challenge
            result.response_token = response_token
            return result

        # Codes must be valid for the challenge *and* for now, so a long
        # challenge TTL never widens the skew window.
        timesteps = (
            self.policy.allowed_timesteps(challenge.challenge_key)
            & self.policy.allowed_timesteps(current_timestep)
        )
        timestep = find_valid_timestep(config.secret, code, timesteps) if code else None

        if timestep is None:
            result.error_message = "Invalid" if code else "Required"
            return result

        token = secrets.token_hex(16)
        self.store.mark_answered(
            challenge,
            response_digest=digest_response_token(token),
            response_ttl=now + RESPONSE_TTL,
            properties={PROPERTY_TIMESTEP: timestep},
        )
        challenge.present_response_token(token, now)

        logger.info(
            f"Challenge {challenge.challenge_id} answered at timestep {timestep} "
            f"for config {config.config_id}"
        )

        result.answered_challenge = challenge
        result.response_token = token
        return result

    def _check_preconditions(
        self,
        challenge: Challenge,
        session: SessionContext,
        now: int,
        current_timestep: int,
    ) -> Optional[ValidationResult]:
        # Someone reading the code off the user's phone and typing it faster
        # than they do lands here.
        if challenge.session_id != session.session_id:
            logger.warning(
                f"Challenge {challenge.challenge_id} belongs to another session "
                f"(caller {mask_secret(session.session_id)})"
            )
            return _wait(
                challenge,
                now,
                "This factor recently issued a challenge to a different login session.",
            )

        if challenge.workflow_key != session.workflow_key:
            logger.warning(
                f"Challenge {challenge.challenge_id} belongs to workflow "
                f"{challenge.workflow_key}, not {session.workflow_key}"
            )
            return _wait(
                challenge,
                now,
                "This factor recently issued a challenge for a different workflow.",
            )

        # The challenge is still live but now is no longer a valid response
        # time for it. Locking out until it expires keeps two challenge
        # windows from ever accepting the same code.
        if current_timestep not in self.policy.allowed_timesteps(challenge.challenge_key):
            logger.warning(
                f"Challenge {challenge.challenge_id} window has passed "
                f"(issued at {challenge.challenge_key}, now {current_timestep})"
            )
            return _wait(
                challenge,
                now,
                "This factor recently issued a challenge which has expired. "
                "A new challenge can not be issued yet.",
            )

        if challenge.reused:
            logger.warning(f"Challenge {challenge.challenge_id} response reused")
            return _wait(
                challenge,
                now,
                "You recently provided a response to this factor. "
                "Responses may not be reused.",
            )

        return None
