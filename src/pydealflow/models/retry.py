"""
Retry policy configuration for node execution.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates retry behavior, allowing different retry strategies
without modifying the node execution code.

Design Rationale:
- Safe default: a single attempt, no automatic retries
- Simple retry: fixed delay between attempts (the common case for agents)
- Advanced control: optional backoff multiplier capped by max_delay_ms
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for node retry behavior.

    Controls how many times a node's execute phase is attempted and how
    long to wait between attempts.

    Examples:
        # Fixed delay: 3 attempts, 500ms apart
        policy = RetryPolicy.fixed(3, delay_ms=500)

        # No retries: the default for every Node
        policy = RetryPolicy.NONE

        # Custom policy: exponential backoff
        policy = RetryPolicy(
            max_attempts=5,
            initial_delay_ms=100,
            max_delay_ms=5000,
            backoff_multiplier=2.0
        )
    """

    max_attempts: int
    """Maximum number of attempts (including the first try).

    For example, max_attempts = 3 means:
    - Attempt 1: immediate (first try)
    - Attempt 2: after initial_delay_ms
    - Attempt 3: after initial_delay_ms * backoff_multiplier

    Default: 1 (no retries)
    """

    initial_delay_ms: int = 0
    """Delay before the first retry in milliseconds."""

    max_delay_ms: int = 60000
    """Maximum delay between retries in milliseconds (caps backoff)."""

    backoff_multiplier: float = 1.0
    """Multiplier applied per retry. 1.0 keeps the delay fixed."""

    # =========================================================================
    # Predefined Policies
    # =========================================================================

    if TYPE_CHECKING:
        NONE: RetryPolicy
    else:
        NONE = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay_ms < 0:
            raise ValueError(f"initial_delay_ms must be >= 0, got {self.initial_delay_ms}")

    @classmethod
    def fixed(cls, max_attempts: int, delay_ms: int = 0) -> RetryPolicy:
        """
        Create a policy with a fixed delay between attempts.

        Args:
            max_attempts: Maximum number of attempts
            delay_ms: Delay between attempts in milliseconds

        Example:
            policy = RetryPolicy.fixed(3, delay_ms=250)
        """
        return cls(
            max_attempts=max_attempts,
            initial_delay_ms=delay_ms,
            max_delay_ms=max(delay_ms, 0),
            backoff_multiplier=1.0,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        """Build a policy from `{"max_attempts": n, "delay_ms": d}` style config."""
        if "initial_delay_ms" in data:
            return cls(
                max_attempts=int(data["max_attempts"]),
                initial_delay_ms=int(data["initial_delay_ms"]),
                max_delay_ms=int(data.get("max_delay_ms", 60000)),
                backoff_multiplier=float(data.get("backoff_multiplier", 1.0)),
            )
        return cls.fixed(int(data["max_attempts"]), int(data.get("delay_ms", 0)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay_ms": self.initial_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "backoff_multiplier": self.backoff_multiplier,
        }

    def delay_for_attempt(self, attempt: int) -> int | None:
        """
        Calculate the delay before the next retry attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Delay in milliseconds before the next attempt, or None if no
            attempts remain.

        Example:
            policy = RetryPolicy.fixed(3, delay_ms=100)
            policy.delay_for_attempt(1)  # 100
            policy.delay_for_attempt(2)  # 100
            policy.delay_for_attempt(3)  # None
        """
        if attempt >= self.max_attempts:
            return None

        exponent = attempt - 1
        delay_ms = self.initial_delay_ms * (self.backoff_multiplier**exponent)

        # Cap at max_delay, but never below the initial delay for fixed policies
        delay_ms = min(delay_ms, max(self.max_delay_ms, self.initial_delay_ms))

        return int(delay_ms)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_delay_ms={self.initial_delay_ms}, "
            f"max_delay_ms={self.max_delay_ms}, "
            f"backoff_multiplier={self.backoff_multiplier})"
        )


RetryPolicy.NONE = RetryPolicy(max_attempts=1, initial_delay_ms=0, max_delay_ms=0)


# =============================================================================
# RetryableError - Fine-grained error retry control
# =============================================================================


class RetryableError(Exception):
    """
    Base class for errors that can specify whether they should be retried.

    A node that raises a non-retryable error skips its remaining attempts
    and goes straight to its fallback.

    Example:
        class PricingError(RetryableError):
            def __init__(self, message: str, is_retryable: bool = True):
                super().__init__(message)
                self._retryable = is_retryable

            def is_retryable(self) -> bool:
                return self._retryable

        # Transient error - retried
        raise PricingError("Quote service timeout", is_retryable=True)

        # Permanent error - not retried
        raise PricingError("Unknown product code", is_retryable=False)
    """

    def is_retryable(self) -> bool:
        """Return True if the failed attempt may be retried."""
        return True
