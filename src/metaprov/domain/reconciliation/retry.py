"""Conflict/retry controller for remote calls.

Each remote call runs through a small state machine::

    ATTEMPTING -> SUCCESS | NOT_FOUND | CONFLICT | TRANSIENT_ERROR | FATAL_ERROR

Failures are classified by HTTP status or by the absence of a response, never by
response body content. ``TRANSIENT_ERROR`` loops back to ``ATTEMPTING`` after a delay
of ``base * 2**attempt`` until the attempt budget is spent, then escalates to
``FATAL_ERROR``. ``NOT_FOUND`` and ``CONFLICT`` are terminal here and handed back to
the resolver, which owns their recovery paths.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Generic, TypeVar

from metaprov.domain.errors import (
    ConflictError,
    NotFoundError,
    RemoteFatalError,
    RemoteStatusError,
    TransientError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class CallState(StrEnum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT_ERROR = "transient_error"
    FATAL_ERROR = "fatal_error"


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    base_seconds: float = 1.0
    max_attempts: int = 3
    max_delay_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_seconds < 0:
            raise ValueError("base_seconds must be non-negative")

    def delay(self, attempt: int) -> float:
        """Delay before retrying after the ``attempt``-th failure (zero-based)."""

        delay = self.base_seconds * (2**attempt)
        if self.max_delay_seconds is not None:
            return min(delay, self.max_delay_seconds)
        return delay


@dataclass(slots=True)
class CallOutcome(Generic[T]):
    description: str
    state: CallState = CallState.ATTEMPTING
    value: T | None = None
    error: Exception | None = None
    attempts: int = 0
    transitions: list[CallState] = field(default_factory=lambda: [CallState.ATTEMPTING])

    @property
    def ok(self) -> bool:
        return self.state is CallState.SUCCESS

    @property
    def status_code(self) -> int | None:
        if isinstance(self.error, RemoteStatusError):
            return self.error.status_code
        return None

    def move(self, state: CallState) -> None:
        self.state = state
        self.transitions.append(state)

    def unwrap(self) -> T:
        """Return the value or raise the domain error matching the final state."""

        if self.state is CallState.SUCCESS:
            return self.value  # type: ignore[return-value]
        detail = f"{self.description}: {self.error}" if self.error else self.description
        if self.state is CallState.NOT_FOUND:
            raise NotFoundError(detail) from self.error
        if self.state is CallState.CONFLICT:
            raise ConflictError(detail) from self.error
        raise RemoteFatalError(detail, status_code=self.status_code) from self.error


def classify_failure(error: Exception) -> CallState:
    """Map an adapter failure onto a controller state."""

    if isinstance(error, TransientError):
        return CallState.TRANSIENT_ERROR
    if isinstance(error, RemoteStatusError):
        code = error.status_code
        if code == 404:
            return CallState.NOT_FOUND
        if code == 409:
            return CallState.CONFLICT
        if code in TRANSIENT_STATUS_CODES or code >= 500:
            return CallState.TRANSIENT_ERROR
        return CallState.FATAL_ERROR
    return CallState.FATAL_ERROR


class RetryController:
    """Drive remote calls through the retry state machine."""

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep

    def attempt(
        self,
        operation: Callable[[], T],
        *,
        description: str,
        retry_not_found: bool = False,
    ) -> CallOutcome[T]:
        """Run ``operation`` until it reaches a terminal state.

        With ``retry_not_found`` a 404 is treated as propagation lag (a freshly created
        reference not visible yet) and retried with the same backoff as transient
        failures.
        """

        outcome: CallOutcome[T] = CallOutcome(description=description)
        while True:
            outcome.attempts += 1
            try:
                outcome.value = operation()
            except (RemoteStatusError, TransientError) as exc:
                outcome.error = exc
                state = classify_failure(exc)
            else:
                outcome.error = None
                outcome.move(CallState.SUCCESS)
                return outcome

            outcome.move(state)
            retryable = state is CallState.TRANSIENT_ERROR or (
                retry_not_found and state is CallState.NOT_FOUND
            )
            if not retryable:
                return outcome

            if outcome.attempts >= self.policy.max_attempts:
                log.warning(
                    "Giving up on %s after %s attempts: %s",
                    description,
                    outcome.attempts,
                    outcome.error,
                )
                outcome.move(CallState.FATAL_ERROR)
                return outcome

            delay = self.policy.delay(outcome.attempts - 1)
            log.info(
                "Retrying %s in %.2fs (attempt %s/%s): %s",
                description,
                delay,
                outcome.attempts + 1,
                self.policy.max_attempts,
                outcome.error,
            )
            self._sleep(delay)
            outcome.move(CallState.ATTEMPTING)
