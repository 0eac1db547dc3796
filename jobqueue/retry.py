"""
Retry and backoff policy.

Decides whether a failed attempt is retried and how long the broker should
hold the retry before making it visible again.
"""

import random
from dataclasses import dataclass, field

from jobqueue.constants import FailureKind
from jobqueue.errors import FatalFailure, MalformedEnvelope, UnknownTaskType
from jobqueue.types.envelope import TaskEnvelope


@dataclass(frozen=True)
class Failure:
    """A classified failure of one execution attempt."""

    kind: FailureKind
    error: str

    @classmethod
    def transient(cls, error: str) -> "Failure":
        return cls(FailureKind.TRANSIENT, error)

    @classmethod
    def fatal(cls, error: str) -> "Failure":
        return cls(FailureKind.FATAL, error)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Failure":
        """
        Classify an exception raised during execution.

        Fatal: ``FatalFailure``, ``UnknownTaskType``, ``MalformedEnvelope``.
        Everything else, including timeouts, is transient.
        """
        message = str(exc) or type(exc).__name__
        if isinstance(exc, (FatalFailure, UnknownTaskType, MalformedEnvelope)):
            return cls.fatal(message)
        return cls.transient(message)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of applying the retry policy to a failure."""

    retry: bool
    delay_seconds: float = 0.0
    envelope: TaskEnvelope | None = None
    reason: str = ""


@dataclass
class RetryPolicy:
    """
    Exponential backoff: ``base * 2**attempt``.

    Attributes:
        base_delay_seconds: Delay after the first failed attempt.
        jitter_factor: Fraction of the delay added or removed at random.
        rng: Random source, injectable for deterministic tests.
    """

    base_delay_seconds: float = 1.0
    jitter_factor: float = 0.0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be between 0 and 1")

    def next_delay(self, attempt: int, jitter: bool = True) -> float:
        """
        Delay before the retry that follows a failed ``attempt``.

        Attempts 0, 1, 2 give 1x, 2x, 4x the base delay before jitter.
        """
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        delay = self.base_delay_seconds * (2**attempt)
        if jitter and self.jitter_factor > 0:
            spread = delay * self.jitter_factor
            delay += self.rng.uniform(-spread, spread)
        return max(0.0, delay)

    def decide(self, envelope: TaskEnvelope, failure: Failure) -> RetryDecision:
        """Apply the decision rule to a failed attempt of ``envelope``."""
        if failure.kind == FailureKind.FATAL:
            return RetryDecision(retry=False, reason=f"fatal: {failure.error}")

        if envelope.attempt + 1 > envelope.max_retries:
            return RetryDecision(
                retry=False,
                reason=f"retries exhausted after {envelope.attempt + 1} attempt(s): {failure.error}",
            )

        return RetryDecision(
            retry=True,
            delay_seconds=self.next_delay(envelope.attempt),
            envelope=envelope.next_attempt(),
            reason=failure.error,
        )
