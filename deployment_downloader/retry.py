"""
Retry decisions for file downloads.

Backoff is exponential: the first retry waits ``base_delay`` seconds and every
retry multiplies the wait by ``backoff_factor`` (``exhausted_backoff_factor``
after a 507 from the storage backend). Authentication failures are never
retried.
"""
from dataclasses import dataclass

from .exceptions import (
    ResourceExhausted,
    TerminalDownloadFailure,
)


@dataclass
class RetryState:
    attempt: int
    current_delay: float
    max_attempts: int

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0
    failure: Exception | None = None


class RetryPolicy:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        base_delay: float = 5.0,
        backoff_factor: float = 2.0,
        exhausted_backoff_factor: float = 4.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.exhausted_backoff_factor = exhausted_backoff_factor

    def new_state(self) -> RetryState:
        return RetryState(
            attempt=1,
            current_delay=self.base_delay,
            max_attempts=self.max_attempts,
        )

    def decide(
        self,
        error: Exception,
        state: RetryState,
        resource: str,
    ) -> RetryDecision:
        """Decide what to do after ``error`` ended attempt ``state.attempt``.

        Advances ``state`` when a retry is granted. A stop decision carries the
        exception the caller should raise.
        """
        if not getattr(error, 'retryable', True):
            return RetryDecision(retry=False, failure=error)
        if state.exhausted:
            return RetryDecision(
                retry=False,
                failure=TerminalDownloadFailure(
                    resource,
                    state.attempt,
                    f'Failed to download {resource} after {state.attempt} attempts: {error}',
                ),
            )
        delay = state.current_delay
        factor = (
            self.exhausted_backoff_factor
            if isinstance(error, ResourceExhausted)
            else self.backoff_factor
        )
        state.attempt += 1
        state.current_delay = delay * factor
        return RetryDecision(retry=True, delay=delay)
