"""
Timestep window policy.

Maps wall-clock time onto TOTP counters and decides which neighbouring
counters are acceptable. The clock is injectable so tests (and callers with
their own notion of "now") can pin time.
"""
import time
from typing import Callable, Optional, Set

# Seconds per TOTP counter step.
STEP_DURATION = 30

# The user may provide a code from the recent past or the near future, to
# absorb clock skew between client and server and the time taken to type it.
WINDOW_SIZE = 1


class TimestepPolicy:
    """
    Timestep arithmetic for TOTP challenges.

    Example usage:
        policy = TimestepPolicy()
        step = policy.current_timestep()
        policy.allowed_timesteps(step)   # {step - 1, step, step + 1}
        policy.challenge_ttl_seconds()   # 90
    """

    def __init__(
        self,
        step_duration: int = STEP_DURATION,
        window_size: int = WINDOW_SIZE,
        clock: Optional[Callable[[], float]] = None,
    ):
        if step_duration <= 0:
            raise ValueError("step_duration must be positive")
        if window_size < 0:
            raise ValueError("window_size must not be negative")

        self.step_duration = step_duration
        self.window_size = window_size
        self._clock = clock or time.time

    def now(self) -> int:
        """Current wall-clock time in whole seconds."""
        return int(self._clock())

    def timestep_at(self, timestamp: float) -> int:
        return int(timestamp // self.step_duration)

    def current_timestep(self) -> int:
        return self.timestep_at(self._clock())

    def allowed_timesteps(self, center: int) -> Set[int]:
        """Timesteps accepted as responses around ``center``."""
        return set(range(center - self.window_size, center + self.window_size + 1))

    def challenge_ttl_seconds(self) -> int:
        """
        Lifetime of an issued challenge.

        A challenge issued at step T accepts codes for T-w..T+w. The code for
        T+w is itself valid at steps up to T+2w, so the challenge must stay
        live through T+2w; otherwise a new challenge could be issued that
        accepts the same code again.
        """
        ttl_steps = (self.window_size * 2) + 1
        return ttl_steps * self.step_duration
