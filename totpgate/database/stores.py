"""
Store interfaces for the MFA core.

The challenge ledger is the only shared mutable state: concurrent requests
for the same factor configuration must see a consistent answer to "is there a
live challenge, and has it been answered". ``ChallengeStore.locked`` makes
that explicit: every read and write issued inside the block, for that config
id, is mutually exclusive with any other ``locked`` block for the same id.
"""
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from ..auth.models import Challenge, EnrollmentToken, FactorConfig


class KeyedLock:
    """
    Process-local mutual exclusion per key.

    Entries are reference counted and dropped when the last holder leaves, so
    the table does not grow with the number of configs ever seen.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class TokenStore(ABC):
    """Temporary enrollment tokens."""

    @abstractmethod
    def find_token(
        self,
        resource_id: str,
        token_type: str,
        code_hash: str,
        now: int,
    ) -> Optional["EnrollmentToken"]:
        """Return a matching token with ``expires_at > now``, or None."""
        pass

    @abstractmethod
    def save_token(self, token: "EnrollmentToken") -> None:
        pass


class ChallengeStore(ABC):
    """The challenge ledger."""

    @abstractmethod
    def locked(self, config_id: str):
        """
        Context manager serializing ledger access for one factor config.

        Callers must keep the block short: read, decide, write, leave.
        """
        pass

    @abstractmethod
    def find_live_challenges(self, config_id: str, now: int) -> List["Challenge"]:
        """Challenges for the config with ``challenge_ttl > now``, oldest first."""
        pass

    @abstractmethod
    def save_challenge(self, challenge: "Challenge") -> None:
        pass

    @abstractmethod
    def mark_answered(
        self,
        challenge: "Challenge",
        response_digest: str,
        response_ttl: int,
        properties: Dict[str, Any],
    ) -> None:
        """Persist the answer and update ``challenge`` in place."""
        pass

    @abstractmethod
    def mark_completed(self, challenge: "Challenge") -> None:
        """Persist completion and update ``challenge`` in place."""
        pass


class FactorConfigStore(ABC):
    """Enrolled factor configurations, including their secrets."""

    @abstractmethod
    def save_config(self, config: "FactorConfig") -> None:
        pass

    @abstractmethod
    def get_config(self, config_id: str) -> Optional["FactorConfig"]:
        pass

    @abstractmethod
    def list_configs(self, user_id: str) -> List["FactorConfig"]:
        pass


class MFAStore(TokenStore, ChallengeStore, FactorConfigStore):
    """A single backend providing all three stores."""
