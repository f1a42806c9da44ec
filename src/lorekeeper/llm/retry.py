"""Fixed-delay retry around a step's model invocation.

The retried unit is the whole of "prepare context, build the budgeted string,
call the model". A failure in any part consumes one attempt, so a fresh
attempt gathers its evidence again. Persistence errors are never retried.
"""

import logging
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import backoff

from lorekeeper.context.builder import ContextBuilder
from lorekeeper.llm.client import Agent
from lorekeeper.storage.db import StorageError

if TYPE_CHECKING:
    from lorekeeper.context.summarizer import Summarizer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retried operation failed.

    Attributes:
        last_error: Error raised by the final attempt
        attempts: Number of attempts made
    """

    def __init__(self, last_error: BaseException, attempts: int, description: str = "operation"):
        self.last_error = last_error
        self.attempts = attempts
        self.description = description
        super().__init__(f"{description} failed after {attempts} attempt(s): {last_error}")


@dataclass
class RetryPolicy:
    """Retry settings shared by every role.

    Attributes:
        max_retries: Total number of attempts (not additional retries)
        retry_delay_seconds: Fixed delay between failed attempts
        deadline_seconds: Optional overall deadline for all attempts
    """

    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    deadline_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1. Got: {self.max_retries}")
        if self.retry_delay_seconds < 0:
            raise ValueError(
                f"retry_delay_seconds must be non-negative. Got: {self.retry_delay_seconds}"
            )
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError(
                f"deadline_seconds must be positive. Got: {self.deadline_seconds}"
            )


def is_retryable(error: Exception) -> bool:
    """Return False for errors that indicate a broken local environment."""
    return not isinstance(error, StorageError)


def fixed_delay(
    interval: float,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    description: str = "operation",
) -> Generator[float | None, Any, None]:
    """Wait generator yielding a constant delay until a deadline would pass.

    Exhausting the generator makes backoff give up and re-raise the last error.
    """
    started = clock()
    # Primed by backoff with send(None)
    yield None
    while True:
        if deadline is not None and clock() - started + interval >= deadline:
            logger.warning("%s: deadline of %ss reached, not retrying", description, deadline)
            return
        yield interval


def retry_call(
    attempt: Callable[[], T],
    policy: RetryPolicy,
    clock: Callable[[], float] = time.monotonic,
    retryable: Callable[[Exception], bool] = is_retryable,
    description: str = "operation",
) -> T:
    """Run attempt until it succeeds or the policy gives up.

    Delays are slept by backoff through time.sleep.

    Args:
        attempt: Zero-argument operation, re-invoked from scratch on failure
        policy: Attempt count, delay and optional deadline
        clock: Monotonic clock used for the deadline
        retryable: Errors for which it returns False propagate immediately
        description: Label used in logs and the final error

    Returns:
        The first successful result

    Raises:
        RetryExhaustedError: If every allowed attempt failed
    """
    tries = 0

    def on_backoff(details: dict[str, Any]) -> None:
        logger.warning(
            "%s failed (attempt %d/%d): %s",
            description,
            details["tries"],
            policy.max_retries,
            details["exception"],
        )
        logger.info("Retrying %s in %ss", description, details["wait"])

    def on_giveup(details: dict[str, Any]) -> None:
        nonlocal tries
        tries = details["tries"]
        if retryable(details["exception"]):
            logger.warning(
                "%s failed (attempt %d/%d): %s",
                description,
                tries,
                policy.max_retries,
                details["exception"],
            )

    retrying = backoff.on_exception(
        fixed_delay,
        Exception,
        max_tries=policy.max_retries,
        max_time=policy.deadline_seconds,
        jitter=None,
        giveup=lambda e: not retryable(e),
        on_backoff=on_backoff,
        on_giveup=on_giveup,
        raise_on_giveup=True,
        logger=None,
        interval=policy.retry_delay_seconds,
        deadline=policy.deadline_seconds,
        clock=clock,
        description=description,
    )(attempt)

    try:
        return retrying()
    except Exception as e:
        if not retryable(e):
            raise
        raise RetryExhaustedError(e, tries, description) from e


class RetryingCompletionClient:
    """Role agent wrapped in the step-level retry loop."""

    def __init__(
        self,
        agent: Agent,
        summarizer: "Summarizer",
        policy: RetryPolicy,
        clock: Callable[[], float] = time.monotonic,
        name: str = "completion",
    ) -> None:
        self.agent = agent
        self.summarizer = summarizer
        self.policy = policy
        self.clock = clock
        self.name = name

    def complete(self, prompt: str, prepare: Callable[[], ContextBuilder]) -> str:
        """Prepare, budget and complete, retrying the whole unit on failure.

        Args:
            prompt: Step instruction, identical for every attempt
            prepare: Builds a fresh ContextBuilder holding the step's evidence

        Returns:
            Model output text

        Raises:
            RetryExhaustedError: If every attempt failed
            StorageError: Immediately, without retrying
        """

        def attempt() -> str:
            builder = prepare()
            context = builder.build(self.summarizer)
            return self.agent.complete(prompt, context)

        return retry_call(
            attempt,
            self.policy,
            clock=self.clock,
            description=self.name,
        )
