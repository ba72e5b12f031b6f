"""Retry, reconnection, conviction and speculative execution policies."""

from __future__ import annotations

import enum
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

__all__ = [
    "RetryType",
    "UnknownRetryTypeError",
    "RequestErrUnavailable",
    "RequestErrWriteTimeout",
    "RequestErrReadTimeout",
    "RetryableQuery",
    "SimpleRetryPolicy",
    "ExponentialBackoffRetryPolicy",
    "DowngradingConsistencyRetryPolicy",
    "SimpleConvictionPolicy",
    "ConstantReconnectionPolicy",
    "ExponentialReconnectionPolicy",
    "NonSpeculativeExecution",
    "SimpleSpeculativeExecution",
    "exponential_time",
]

_log = logging.getLogger(__name__)

_DEFAULT_MIN = 0.1
_DEFAULT_MAX = 10.0
# The largest 16-bit signed integer, in seconds.
_RECONNECT_MAX = 32767.0


class RetryType(enum.IntEnum):
    """What the executor does after a failed attempt."""

    RETRY = 0x00  # retry on the same connection
    RETRY_NEXT_HOST = 0x01  # retry on another connection
    IGNORE = 0x02  # ignore the error and return the result
    RETHROW = 0x03  # raise the error and stop retrying


class UnknownRetryTypeError(Exception):
    """A retry policy returned a retry type the executor does not know."""

    def __init__(self, message: str = "unknown retry type returned by retry policy") -> None:
        super().__init__(message)


class RequestErrUnavailable(Exception):
    """Not enough replicas were alive to serve the request."""

    def __init__(self, message: str = "unavailable", *, consistency: Any = None,
                 required: int = 0, alive: int = 0) -> None:
        super().__init__(message)
        self.consistency = consistency
        self.required = required
        self.alive = alive


class RequestErrWriteTimeout(Exception):
    """The coordinator timed out waiting for write acknowledgements."""

    def __init__(self, message: str = "write timeout", *, consistency: Any = None,
                 received: int = 0, block_for: int = 0, write_type: str = "") -> None:
        super().__init__(message)
        self.consistency = consistency
        self.received = received
        self.block_for = block_for
        self.write_type = write_type


class RequestErrReadTimeout(Exception):
    """The coordinator timed out waiting for read responses."""

    def __init__(self, message: str = "read timeout", *, consistency: Any = None,
                 received: int = 0, block_for: int = 0, data_present: bool = False) -> None:
        super().__init__(message)
        self.consistency = consistency
        self.received = received
        self.block_for = block_for
        self.data_present = data_present


class RetryableQuery(Protocol):
    """A query or batch as seen by a retry policy."""

    def attempts(self) -> int: ...

    def set_consistency(self, consistency: Any) -> None: ...

    def get_consistency(self) -> Any: ...


def exponential_time(minimum: float, maximum: float, attempts: int) -> float:
    """Return an exponentially growing delay in seconds, with jitter, capped at ``maximum``.

    A non-positive ``minimum`` means 0.1 s and a non-positive ``maximum`` 10 s.
    """
    if minimum <= 0:
        minimum = _DEFAULT_MIN
    if maximum <= 0:
        maximum = _DEFAULT_MAX
    nap = minimum * 2.0 ** (attempts - 1)
    nap += random.random() * minimum - minimum / 2
    if nap > maximum:
        return maximum
    return nap


@dataclass
class SimpleRetryPolicy:
    """Allow a query a fixed number of retries."""

    num_retries: int = 0

    def attempt(self, query: RetryableQuery) -> bool:
        """Return True while the query has been tried no more than ``num_retries`` times."""
        return query.attempts() <= self.num_retries

    def get_retry_type(self, error: BaseException | None) -> RetryType:
        """Always move on to the next host."""
        return RetryType.RETRY_NEXT_HOST


@dataclass
class ExponentialBackoffRetryPolicy:
    """Retry a fixed number of times, sleeping longer before each attempt.

    ``min`` and ``max`` are in seconds; zero selects the defaults.
    """

    num_retries: int = 0
    min: float = 0.0
    max: float = 0.0

    def attempt(self, query: RetryableQuery) -> bool:
        """Sleep and return True unless the retries are used up."""
        attempts = query.attempts()
        if attempts > self.num_retries:
            return False
        time.sleep(self.nap_time(attempts))
        return True

    def get_retry_type(self, error: BaseException | None) -> RetryType:
        """Always move on to the next host."""
        return RetryType.RETRY_NEXT_HOST

    def nap_time(self, attempts: int) -> float:
        """Return the delay in seconds before the given attempt."""
        return exponential_time(self.min, self.max, attempts)


@dataclass
class DowngradingConsistencyRetryPolicy:
    """Retry with each of the given consistency levels in turn.

    Read timeouts are retried; unavailable errors are retried when at least
    one replica is alive; write timeouts on unlogged batches are retried, and
    on simple, batch and counter writes are ignored once a replica has
    acknowledged.
    """

    consistency_levels_to_try: Sequence[Any] = field(default_factory=list)

    def attempt(self, query: RetryableQuery) -> bool:
        """Lower the query's consistency for this attempt, or refuse when none is left."""
        current = query.attempts()
        levels = self.consistency_levels_to_try
        if current > len(levels):
            return False
        if current > 0:
            level = levels[current - 1]
            query.set_consistency(level)
            _log.debug("%s: set consistency to %r", type(self).__name__, level)
        return True

    def get_retry_type(self, error: BaseException | None) -> RetryType:
        """Decide how to go on after ``error``."""
        if isinstance(error, RequestErrUnavailable):
            return RetryType.RETRY if error.alive > 0 else RetryType.RETHROW
        if isinstance(error, RequestErrWriteTimeout):
            if error.write_type in ("SIMPLE", "BATCH", "COUNTER"):
                return RetryType.IGNORE if error.received > 0 else RetryType.RETHROW
            if error.write_type == "UNLOGGED_BATCH":
                return RetryType.RETRY
            return RetryType.RETHROW
        if isinstance(error, RequestErrReadTimeout):
            return RetryType.RETRY
        return RetryType.RETRY_NEXT_HOST


@dataclass
class SimpleConvictionPolicy:
    """Convict a host on any failure, counting failures per host until reset."""

    failures: Counter = field(default_factory=Counter)

    def add_failure(self, error: BaseException | None, host: Any) -> bool:
        """Count the failure and return True: the host is to be marked down."""
        self.failures[host] += 1
        return self.failures[host] > 0

    def reset(self, host: Any) -> None:
        """Forget the failures counted for the host."""
        self.failures.pop(host, None)


@dataclass
class ConstantReconnectionPolicy:
    """Reconnect at a fixed interval in seconds."""

    max_retries: int = 0
    interval: float = 0.0

    def get_interval(self, current_retry: int) -> float:
        """Return the fixed interval."""
        return self.interval


@dataclass
class ExponentialReconnectionPolicy:
    """Reconnect at a growing interval starting from ``initial_interval`` seconds."""

    max_retries: int = 0
    initial_interval: float = 0.0

    def get_interval(self, current_retry: int) -> float:
        """Return the interval, grown as for the last of ``max_retries`` attempts."""
        return exponential_time(self.initial_interval, _RECONNECT_MAX, self.max_retries)


@dataclass(frozen=True)
class NonSpeculativeExecution:
    """No speculative executions."""

    attempts: int = field(default=0, init=False)
    # Positive so that it can drive a timer.
    delay: float = field(default=1e-9, init=False)


@dataclass(frozen=True)
class SimpleSpeculativeExecution:
    """A fixed number of extra executions, ``delay`` seconds apart."""

    attempts: int = 0
    delay: float = 0.0