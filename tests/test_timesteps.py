"""Tests for the timestep window policy."""

import pytest

from totpgate.auth.timesteps import TimestepPolicy


class TestTimestepPolicy:
    """Test timestep arithmetic."""

    def test_current_timestep_floors(self, clock, policy):
        clock.now = 30029.9
        assert policy.current_timestep() == 1000
        clock.now = 30030
        assert policy.current_timestep() == 1001

    def test_now_is_whole_seconds(self, clock, policy):
        clock.now = 30012.7
        assert policy.now() == 30012

    def test_allowed_timesteps_default_window(self, policy):
        assert policy.allowed_timesteps(1000) == {999, 1000, 1001}

    def test_allowed_timesteps_wider_window(self, clock):
        policy = TimestepPolicy(window_size=2, clock=clock)
        assert policy.allowed_timesteps(10) == {8, 9, 10, 11, 12}

    def test_zero_window_accepts_only_center(self, clock):
        policy = TimestepPolicy(window_size=0, clock=clock)
        assert policy.allowed_timesteps(10) == {10}

    def test_challenge_ttl_default(self, policy):
        """(2 * 1 + 1) * 30 seconds."""
        assert policy.challenge_ttl_seconds() == 90

    def test_challenge_ttl_wider_window(self, clock):
        policy = TimestepPolicy(window_size=2, clock=clock)
        assert policy.challenge_ttl_seconds() == 150

    def test_challenge_outlives_every_acceptable_code(self, policy):
        """A challenge at T stays live until T + 2w has fully elapsed."""
        issued_at = 1000 * 30
        expires_at = issued_at + policy.challenge_ttl_seconds()
        last_useful_step = max(policy.allowed_timesteps(1000)) + policy.window_size
        assert policy.timestep_at(expires_at - 1) == last_useful_step

    def test_default_clock(self):
        policy = TimestepPolicy()
        assert policy.current_timestep() > 0

    @pytest.mark.parametrize("kwargs", [
        {"step_duration": 0},
        {"step_duration": -30},
        {"window_size": -1},
    ])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            TimestepPolicy(**kwargs)
