"""
SQL Database Manager for the MFA ledger.

This module provides connection management and operations for:
- Enrolled factor configurations (including TOTP secrets)
- Temporary enrollment tokens
- The challenge ledger

PostgreSQL is the production target. SQLite works for development and tests;
the schema sticks to portable types (epoch seconds as BIGINT, ids as VARCHAR).

SECURITY NOTE: Enrollment tokens hold keyed digests of candidate secrets and
challenges hold digests of response tokens. Enrolled TOTP secrets are stored
as-is because codes must be recomputed from them.
"""
import os
import json
import logging
import threading
import uuid
from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Iterator, List, Optional

from pydantic import SecretStr
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ..auth.models import Challenge, EnrollmentToken, FactorConfig, FactorKind
from ..utils.secrets import get_database_password
from .stores import KeyedLock, MFAStore

logger = logging.getLogger(__name__)

_CHALLENGE_COLUMNS = """
    challenge_id, config_id, user_id, session_id, workflow_key,
    challenge_key, challenge_ttl, response_digest, response_ttl,
    is_completed, properties, created_at
"""


class MFADB(MFAStore):
    """
    SQL-backed store for factor configs, enrollment tokens and challenges.

    Ledger sections (``locked``) run in one transaction. On PostgreSQL the
    transaction takes an advisory lock keyed by the config id, which also
    covers the case where no challenge row exists yet. Other dialects fall
    back to a process-local lock per config id.

    Example usage:
        mfa_db = MFADB()
        mfa_db.init_schema()

        with mfa_db.locked(config_id):
            live = mfa_db.find_live_challenges(config_id, now)
            ...
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy database URL.
                             Uses TOTPGATE_DATABASE_URL or POSTGRES_* variables if not provided.
        """
        if connection_string is None:
            connection_string = os.getenv("TOTPGATE_DATABASE_URL")

        if connection_string is None:
            host = os.getenv("POSTGRES_HOST", "localhost")
            port = os.getenv("POSTGRES_PORT", "5432")
            db = os.getenv("POSTGRES_DB", "totpgate")
            user = os.getenv("POSTGRES_USER", "totpgate_user")
            password = get_database_password()
            connection_string = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        if connection_string.startswith("sqlite"):
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,  # Test connections before use (detect stale)
                pool_recycle=300,    # Recycle connections every 5 minutes
            )
        self.Session = sessionmaker(bind=self.engine)

        self._local = threading.local()
        self._ledger_locks = KeyedLock()

    @property
    def uses_advisory_locks(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Inside a ``locked`` block this yields the block's session, so all
        ledger statements share its transaction and lock.

        Usage:
            with mfa_db.get_session() as session:
                result = session.execute(query)
        """
        active = getattr(self._local, "session", None)
        if active is not None:
            yield active
            return

        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==========================================
    # Challenge Ledger
    # ==========================================

    @contextmanager
    def locked(self, config_id: str) -> Iterator[None]:
        """Serialize ledger access for one factor config (one transaction)."""
        if getattr(self._local, "session", None) is not None:
            raise RuntimeError("Ledger sections can not be nested")

        if self.uses_advisory_locks:
            process_lock = nullcontext()
        else:
            process_lock = self._ledger_locks.hold(config_id)

        with process_lock:
            with self.get_session() as session:
                if self.uses_advisory_locks:
                    session.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
                        {"lock_key": f"mfa.challenge:{config_id}"}
                    )
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None

    def find_live_challenges(self, config_id: str, now: int) -> List[Challenge]:
        """
        Get unexpired challenges for a factor config.

        Args:
            config_id: Factor config id.
            now: Current time (epoch seconds).

        Returns:
            Challenges with challenge_ttl > now, oldest first.
        """
        with self.get_session() as session:
            rows = session.execute(
                text(f"""
                    SELECT {_CHALLENGE_COLUMNS}
                    FROM mfa_challenges
                    WHERE config_id = :config_id
                      AND challenge_ttl > :now
                    ORDER BY created_at, challenge_key
                """),
                {"config_id": config_id, "now": now}
            ).fetchall()

        challenges = [self._row_to_challenge(row) for row in rows]
        for challenge in challenges:
            challenge.present_response_token(None, now)
        return challenges

    def save_challenge(self, challenge: Challenge) -> None:
        """Insert a newly issued challenge."""
        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO mfa_challenges (
                        challenge_id, config_id, user_id, session_id, workflow_key,
                        challenge_key, challenge_ttl, response_digest, response_ttl,
                        is_completed, properties, created_at
                    ) VALUES (
                        :challenge_id, :config_id, :user_id, :session_id, :workflow_key,
                        :challenge_key, :challenge_ttl, :response_digest, :response_ttl,
                        :is_completed, :properties, :created_at
                    )
                """),
                {
                    "challenge_id": challenge.challenge_id,
                    "config_id": challenge.config_id,
                    "user_id": challenge.user_id,
                    "session_id": challenge.session_id,
                    "workflow_key": challenge.workflow_key,
                    "challenge_key": challenge.challenge_key,
                    "challenge_ttl": challenge.challenge_ttl,
                    "response_digest": challenge.response_digest,
                    "response_ttl": challenge.response_ttl,
                    "is_completed": challenge.is_completed,
                    "properties": json.dumps(challenge.properties),
                    "created_at": challenge.created_at,
                }
            )
        logger.debug(f"Saved challenge {challenge.challenge_id}")

    def mark_answered(
        self,
        challenge: Challenge,
        response_digest: str,
        response_ttl: int,
        properties: Dict[str, Any],
    ) -> None:
        """
        Record an accepted response.

        Args:
            challenge: Challenge that was answered (updated in place).
            response_digest: Digest of the response token handed to the client.
            response_ttl: Epoch second until which the token proves the answer.
            properties: Audit properties (e.g. the matched timestep).
        """
        merged = dict(challenge.properties)
        merged.update(properties)

        with self.get_session() as session:
            session.execute(
                text("""
                    UPDATE mfa_challenges
                    SET response_digest = :response_digest,
                        response_ttl = :response_ttl,
                        properties = :properties
                    WHERE challenge_id = :challenge_id
                """),
                {
                    "response_digest": response_digest,
                    "response_ttl": response_ttl,
                    "properties": json.dumps(merged),
                    "challenge_id": challenge.challenge_id,
                }
            )

        challenge.response_digest = response_digest
        challenge.response_ttl = response_ttl
        challenge.properties = merged

    def mark_completed(self, challenge: Challenge) -> None:
        with self.get_session() as session:
            session.execute(
                text("""
                    UPDATE mfa_challenges
                    SET is_completed = :is_completed
                    WHERE challenge_id = :challenge_id
                """),
                {"is_completed": True, "challenge_id": challenge.challenge_id}
            )
        challenge.is_completed = True

    @staticmethod
    def _row_to_challenge(row) -> Challenge:
        return Challenge(
            challenge_id=row[0],
            config_id=row[1],
            user_id=row[2],
            session_id=row[3],
            workflow_key=row[4],
            challenge_key=int(row[5]),
            challenge_ttl=int(row[6]),
            response_digest=row[7],
            response_ttl=int(row[8]) if row[8] is not None else None,
            is_completed=bool(row[9]),
            properties=json.loads(row[10]) if row[10] else {},
            created_at=int(row[11]),
        )

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
        """
        Find an unexpired enrollment token.

        Returns:
            EnrollmentToken or None if no live token matches.
        """
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT token_id, resource_id, token_type, token_code, expires_at
                    FROM mfa_temporary_tokens
                    WHERE resource_id = :resource_id
                      AND token_type = :token_type
                      AND token_code = :token_code
                      AND expires_at > :now
                """),
                {
                    "resource_id": resource_id,
                    "token_type": token_type,
                    "token_code": code_hash,
                    "now": now,
                }
            ).fetchone()

            if not result:
                return None

            return EnrollmentToken(
                token_id=result[0],
                resource_id=result[1],
                token_type=result[2],
                code_hash=result[3],
                expires_at=int(result[4]),
            )

    def save_token(self, token: EnrollmentToken) -> None:
        if token.token_id is None:
            token.token_id = str(uuid.uuid4())

        with self.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO mfa_temporary_tokens (
                        token_id, resource_id, token_type, token_code, expires_at
                    ) VALUES (
                        :token_id, :resource_id, :token_type, :token_code, :expires_at
                    )
                """),
                {
                    "token_id": token.token_id,
                    "resource_id": token.resource_id,
                    "token_type": token.token_type,
                    "token_code": token.code_hash,
                    "expires_at": token.expires_at,
                }
            )

    def purge_expired_tokens(self, now: int) -> int:
        """
        Delete expired enrollment tokens.

        Returns:
            Number of tokens removed.
        """
        with self.get_session() as session:
            result = session.execute(
                text("DELETE FROM mfa_temporary_tokens WHERE expires_at <= :now"),
                {"now": now}
            )
            count = result.rowcount

        logger.info(f"Purged {count} expired enrollment tokens")
        return count

    # ==========================================
    # Factor Configs
    # ==========================================

    def save_config(self, config: FactorConfig) -> None:
        """
        Store a newly enrolled factor.

        Raises:
            ValueError: If a config with the same id already exists.
        """
        with self.get_session() as session:
            existing = session.execute(
                text("SELECT config_id FROM mfa_factor_configs WHERE config_id = :config_id"),
                {"config_id": config.config_id}
            ).fetchone()

            if existing:
                raise ValueError(f"Factor config '{config.config_id}' already exists")

            session.execute(
                text("""
                    INSERT INTO mfa_factor_configs (
                        config_id, user_id, factor_kind, factor_name,
                        factor_secret, created_at
                    ) VALUES (
                        :config_id, :user_id, :factor_kind, :factor_name,
                        :factor_secret, :created_at
                    )
                """),
                {
                    "config_id": config.config_id,
                    "user_id": config.user_id,
                    "factor_kind": FactorKind(config.factor_kind).value,
                    "factor_name": config.factor_name,
                    "factor_secret": config.secret.get_secret_value(),
                    "created_at": config.created_at,
                }
            )

        logger.info(f"Stored factor config {config.config_id} ({FactorKind(config.factor_kind).value})")

    def get_config(self, config_id: str) -> Optional[FactorConfig]:
        with self.get_session() as session:
            result = session.execute(
                text("""
                    SELECT config_id, user_id, factor_kind, factor_name,
                           factor_secret, created_at
                    FROM mfa_factor_configs
                    WHERE config_id = :config_id
                """),
                {"config_id": config_id}
            ).fetchone()

            if not result:
                return None

            return self._row_to_config(result)

    def list_configs(self, user_id: str) -> List[FactorConfig]:
        with self.get_session() as session:
            rows = session.execute(
                text("""
                    SELECT config_id, user_id, factor_kind, factor_name,
                           factor_secret, created_at
                    FROM mfa_factor_configs
                    WHERE user_id = :user_id
                    ORDER BY created_at
                """),
                {"user_id": user_id}
            ).fetchall()

        return [self._row_to_config(row) for row in rows]

    @staticmethod
    def _row_to_config(row) -> FactorConfig:
        return FactorConfig(
            config_id=row[0],
            user_id=row[1],
            factor_kind=FactorKind(row[2]),
            factor_name=row[3],
            secret=SecretStr(row[4]),
            created_at=int(row[5]),
        )

    # ==========================================
    # Schema Initialization
    # ==========================================

    def init_schema(self) -> None:
        """
        Initialize database schema (create tables if not exist).

        Call this once during application setup.
        """
        with self.get_session() as session:
            # Enrolled factors
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS mfa_factor_configs (
                    config_id VARCHAR(64) PRIMARY KEY,
                    user_id VARCHAR(64) NOT NULL,
                    factor_kind VARCHAR(32) NOT NULL,
                    factor_name VARCHAR(255) NOT NULL,
                    factor_secret VARCHAR(255) NOT NULL,
                    created_at BIGINT NOT NULL
                )
            """))

            # Temporary enrollment tokens
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS mfa_temporary_tokens (
                    token_id VARCHAR(64) PRIMARY KEY,
                    resource_id VARCHAR(64) NOT NULL,
                    token_type VARCHAR(64) NOT NULL,
                    token_code VARCHAR(128) NOT NULL,
                    expires_at BIGINT NOT NULL
                )
            """))

            # Challenge ledger
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS mfa_challenges (
                    challenge_id VARCHAR(64) PRIMARY KEY,
                    config_id VARCHAR(64) NOT NULL REFERENCES mfa_factor_configs(config_id) ON DELETE CASCADE,
                    user_id VARCHAR(64) NOT NULL,
                    session_id VARCHAR(128) NOT NULL,
                    workflow_key VARCHAR(64) NOT NULL,
                    challenge_key BIGINT NOT NULL,
                    challenge_ttl BIGINT NOT NULL,
                    response_digest VARCHAR(128),
                    response_ttl BIGINT,
                    is_completed BOOLEAN NOT NULL,
                    properties TEXT,
                    created_at BIGINT NOT NULL
                )
            """))

            # Create indexes
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_mfa_configs_user ON mfa_factor_configs(user_id)
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_mfa_tokens_lookup
                ON mfa_temporary_tokens(resource_id, token_type, token_code)
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_mfa_challenges_live
                ON mfa_challenges(config_id, challenge_ttl)
            """))

        logger.info("MFA schema initialized")


# Singleton instance
_mfa_db_instance: Optional[MFADB] = None


def get_mfa_db() -> MFADB:
    """
    Get singleton MFADB instance.

    Returns:
        MFADB instance.
    """
    global _mfa_db_instance
    if _mfa_db_instance is None:
        _mfa_db_instance = MFADB()
    return _mfa_db_instance
