"""Bounded retry for optimistic-concurrency writes."""

from __future__ import annotations

import copy
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from homer_operator.core.errors import (
    ConflictError,
    NotFoundError,
    ReconcileCancelled,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class wait_proportional_jitter(wait_base):
    """Exponential delay with jitter proportional to the delay, capped."""

    def __init__(
        self,
        base: float,
        factor: float,
        jitter: float,
        cap: float,
        rand: Callable[[], float] = random.random,
    ):
        self.base = base
        self.factor = factor
        self.jitter = jitter
        self.cap = cap
        self.rand = rand

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base * self.factor ** (retry_state.attempt_number - 1)
        if self.jitter > 0:
            delay *= 1 + self.rand() * self.jitter
        return min(self.cap, delay)


def cancellable_sleep(cancel: threading.Event | None) -> Callable[[float], None]:
    if cancel is None:
        return time.sleep

    def _sleep(seconds: float) -> None:
        if cancel.wait(seconds):
            raise ReconcileCancelled("cancelled while backing off")

    return _sleep


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.1
    factor: float = 2.0
    jitter: float = 0.1
    cap: float = 5.0

    def retrying(
        self,
        cancel: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_proportional_jitter(self.base_delay, self.factor, self.jitter, self.cap),
            retry=retry_if_exception_type(ConflictError),
            sleep=sleep or cancellable_sleep(cancel),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )


def read_modify_write(
    fetch: Callable[[], dict | None],
    mutate: Callable[[dict], dict | None],
    write: Callable[[dict], T],
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T | dict:
    """Re-fetch, mutate and write until the write is accepted.

    ``mutate`` receives a private copy of the latest object and returns the
    body to write, or None when nothing needs writing. Conflicts are retried
    under ``policy``; a vanished object raises :class:`NotFoundError` at once.
    """
    policy = policy or RetryPolicy()

    def attempt():
        if cancel is not None and cancel.is_set():
            raise ReconcileCancelled("cancelled before write")
        latest = fetch()
        if latest is None:
            raise NotFoundError("object disappeared during update")
        desired = mutate(copy.deepcopy(latest))
        if desired is None:
            return latest
        return write(desired)

    try:
        return policy.retrying(cancel=cancel, sleep=sleep)(attempt)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise RetryExhaustedError(policy.max_attempts, last) from last
