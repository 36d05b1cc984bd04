"""
Challenge issuance for the TOTP factor.
"""
import logging
import uuid
from typing import List

from ..utils.secrets import mask_secret
from .models import Challenge, FactorConfig, SessionContext
from .timesteps import TimestepPolicy

logger = logging.getLogger(__name__)


class ChallengeIssuer:
    """Decides whether a factor config needs a new challenge, and builds it."""

    def __init__(self, policy: TimestepPolicy):
        self.policy = policy

    def issue_if_needed(
        self,
        config: FactorConfig,
        session: SessionContext,
        existing: List[Challenge],
    ) -> List[Challenge]:
        """
        Issue a challenge for the current timestep unless one is live.

        Args:
            config: Factor configuration being challenged.
            session: Session and workflow the challenge is bound to.
            existing: Unexpired challenges already in the ledger.

        Returns:
            List with the new challenge, or an empty list if a live
            challenge already exists.
        """
        if existing:
            return []

        now = self.policy.now()
        challenge = Challenge(
            challenge_id=str(uuid.uuid4()),
            config_id=config.config_id,
            user_id=config.user_id,
            session_id=session.session_id,
            workflow_key=session.workflow_key,
            challenge_key=self.policy.timestep_at(now),
            challenge_ttl=now + self.policy.challenge_ttl_seconds(),
            created_at=now,
        )

        logger.info(
            f"Issued challenge {challenge.challenge_id} for config {config.config_id} "
            f"at timestep {challenge.challenge_key} "
            f"(session {mask_secret(session.session_id)}, workflow {session.workflow_key})"
        )
        return [challenge]
