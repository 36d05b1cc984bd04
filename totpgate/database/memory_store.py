"""
In-memory MFA store.

Used by tests and single-process deployments. State lives in plain dicts;
ledger sections are serialized per config id with a process-local lock.
"""
import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..auth.models import Challenge, EnrollmentToken, FactorConfig
from .stores import KeyedLock, MFAStore

logger = logging.getLogger(__name__)


class InMemoryMFAStore(MFAStore):
    """
    Dict-backed implementation of every store interface.

    Stored objects are copied on the way in and out so callers cannot mutate
    ledger state except through the store methods.
    """

    def __init__(self):
        self._tokens: List[EnrollmentToken] = []
        self._challenges: Dict[str, Challenge] = {}
        self._configs: Dict[str, FactorConfig] = {}
        self._data_lock = threading.Lock()
        self._ledger_locks = KeyedLock()

    # ==========================================
    # Enrollment Tokens
    # ==========================================

    def find_token(
        self,
        resource_id: str,
        token_type: str,
        code_hash: str,
        now: int,
    ) -> Optional[EnrollmentToken]:
        with self._data_lock:
            for token in self._tokens:
                if (
                    token.resource_id == resource_id
                    and token.token_type == token_type
                    and token.code_hash == code_hash
                    and token.expires_at > now
                ):
                    return copy.copy(token)
        return None

    def save_token(self, token: EnrollmentToken) -> None:
        if token.token_id is None:
            token.token_id = str(uuid.uuid4())
        with self._data_lock:
            self._tokens.append(copy.copy(token))

    # ==========================================
    # Challenge Ledger
    # ==========================================

    @contextmanager
    def locked(self, config_id: str) -> Iterator[None]:
        with self._ledger_locks.hold(config_id):
            yield

    def find_live_challenges(self, config_id: str, now: int) -> List[Challenge]:
        with self._data_lock:
            live = [
                copy.deepcopy(challenge)
                for challenge in self._challenges.values()
                if challenge.config_id == config_id and challenge.challenge_ttl > now
            ]
        for challenge in live:
            challenge.present_response_token(None, now)
        return sorted(live, key=lambda c: (c.created_at, c.challenge_key))

    def save_challenge(self, challenge: Challenge) -> None:
        with self._data_lock:
            self._challenges[challenge.challenge_id] = copy.deepcopy(challenge)

    def mark_answered(
        self,
        challenge: Challenge,
        response_digest: str,
        response_ttl: int,
        properties: Dict[str, Any],
    ) -> None:
        challenge.response_digest = response_digest
        challenge.response_ttl = response_ttl
        challenge.properties.update(properties)
        self.save_challenge(challenge)

    def mark_completed(self, challenge: Challenge) -> None:
        challenge.is_completed = True
        self.save_challenge(challenge)

    # ==========================================
    # Factor Configs
    # ==========================================

    def save_config(self, config: FactorConfig) -> None:
        with self._data_lock:
            self._configs[config.config_id] = copy.copy(config)
        logger.debug(f"Saved factor config {config.config_id}")

    def get_config(self, config_id: str) -> Optional[FactorConfig]:
        with self._data_lock:
            config = self._configs.get(config_id)
            return copy.copy(config) if config else None

    def list_configs(self, user_id: str) -> List[FactorConfig]:
        with self._data_lock:
            return [
                copy.copy(config)
                for config in self._configs.values()
                if config.user_id == user_id
            ]
