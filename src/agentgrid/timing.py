"""Timing policy for polling, retries and termination.

Every interval, timeout and fixed delay used by the supervisor, the health
loop and the delivery protocol lives in one immutable value that callers
construct and pass in. Nothing here reads the environment.
"""

from dataclasses import dataclass, fields


class TimingPolicyError(ValueError):
    """Raised when a timing policy value is invalid."""

    pass


@dataclass(frozen=True)
class TimingPolicy:
    """Intervals, deadlines and delays in seconds."""

    # Termination escalation
    termination_deadline: float = 3.0
    termination_poll_interval: float = 0.1

    # Background health loop
    health_check_interval: float = 5.0

    # Readiness polling
    pane_ready_timeout: float = 5.0
    pane_ready_interval: float = 0.1
    process_ready_timeout: float = 10.0
    process_ready_interval: float = 0.5

    # Delivery
    delivery_retry_delay: float = 1.0
    post_send_delay: float = 2.0
    confirm_delay: float = 1.0
    submit_interval: float = 0.5

    # Sequential team startup
    spawn_interval: float = 5.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise TimingPolicyError(f"{f.name} must be a number, got {value!r}")
            if value <= 0:
                raise TimingPolicyError(f"{f.name} must be > 0, got {value}")
        if self.termination_poll_interval > self.termination_deadline:
            raise TimingPolicyError("termination_poll_interval must not exceed termination_deadline")

    @classmethod
    def fast(cls) -> "TimingPolicy":
        """Short timings for tests and mock environments."""
        return cls(
            termination_deadline=0.5,
            termination_poll_interval=0.05,
            health_check_interval=0.05,
            pane_ready_timeout=0.2,
            pane_ready_interval=0.01,
            process_ready_timeout=0.2,
            process_ready_interval=0.01,
            delivery_retry_delay=0.01,
            post_send_delay=0.01,
            confirm_delay=0.01,
            submit_interval=0.01,
            spawn_interval=0.01,
        )

    @classmethod
    def from_dict(cls, data: dict, base: "TimingPolicy | None" = None) -> "TimingPolicy":
        """Build a policy from a mapping, starting from ``base`` (default: production values).

        Raises:
            TimingPolicyError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise TimingPolicyError(f"Unknown timing keys: {', '.join(unknown)}")

        values = {f.name: getattr(base or cls(), f.name) for f in fields(cls)}
        values.update(data)
        return cls(**values)

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = ["TimingPolicy", "TimingPolicyError"]
