"""Tests for challenge issuance."""

from totpgate.auth.challenges import ChallengeIssuer
from totpgate.auth.models import SessionContext


class TestChallengeIssuer:
    """Test the issuance decision in isolation."""

    def test_issues_when_none_live(self, policy, config, session, clock):
        (challenge,) = ChallengeIssuer(policy).issue_if_needed(config, session, [])

        assert challenge.config_id == config.config_id
        assert challenge.user_id == config.user_id
        assert challenge.session_id == session.session_id
        assert challenge.workflow_key == session.workflow_key
        assert challenge.challenge_key == 1000
        assert challenge.challenge_ttl == int(clock.now) + 90
        assert challenge.response_digest is None
        assert not challenge.is_completed

    def test_no_issue_when_one_live(self, policy, config, session):
        issuer = ChallengeIssuer(policy)
        existing = issuer.issue_if_needed(config, session, [])
        assert issuer.issue_if_needed(config, session, existing) == []

    def test_key_and_ttl_share_one_clock_reading(self, policy, config, session, clock):
        """Issued in the last second of a step: key and TTL agree."""
        clock.set_timestep(1000, offset=29)
        (challenge,) = ChallengeIssuer(policy).issue_if_needed(config, session, [])

        assert challenge.challenge_key == 1000
        assert challenge.challenge_ttl == 1000 * 30 + 29 + 90


class TestEngineIssuance:
    """Test issuance through the engine and ledger."""

    def test_issue_is_idempotent_while_live(self, engine, store, config, session, clock):
        first = engine.issue_challenges(config, session)
        clock.advance(45)
        second = engine.issue_challenges(config, session)

        assert len(first) == 1
        assert second == []
        assert len(store.find_live_challenges(config.config_id, int(clock.now))) == 1

    def test_other_session_does_not_get_new_challenge(self, engine, config, session):
        engine.issue_challenges(config, session)
        other = SessionContext(session.user_id, "sess-other", "login")
        assert engine.issue_challenges(config, other) == []

    def test_new_challenge_after_expiry(self, engine, store, config, session, clock):
        (first,) = engine.issue_challenges(config, session)
        clock.advance(90)

        (second,) = engine.issue_challenges(config, session)
        assert second.challenge_id != first.challenge_id
        assert second.challenge_key == 1003
        assert store.find_live_challenges(config.config_id, int(clock.now)) == [second]
