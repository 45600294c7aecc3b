"""
http_helper.py — single-slot request queue with backoff on HTTP 429.

Every call to the chain node goes through one RequestQueue:
  - one request in flight at a time, waiting callers served FIFO,
  - a minimum delay between consecutive dispatches,
  - 429 responses and transport errors retried with exponential backoff
    and ±20% jitter. The slot is held for the whole retry cycle so nothing
    else fires while the node is rate-limiting us.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests

from . import config

logger = logging.getLogger(__name__)

RATE_LIMITED = 429

# Worth retrying; anything else (bad URL, missing schema, ...) is raised at once
TRANSIENT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


@dataclass(frozen=True)
class QueueConfig:
    min_delay_ms: int = 500          # between two dispatch starts
    base_backoff_ms: int = 2_000     # backoff after the first failure
    max_backoff_ms: int = 30_000     # cap
    backoff_multiplier: float = 2.0  # per consecutive failure
    max_retries: int = 4             # retries after the initial attempt

    @classmethod
    def from_env(cls) -> "QueueConfig":
        return cls(
            min_delay_ms=config.RPC_MIN_DELAY_MS,
            base_backoff_ms=config.RPC_BASE_BACKOFF_MS,
            max_backoff_ms=config.RPC_MAX_BACKOFF_MS,
            backoff_multiplier=config.RPC_BACKOFF_MULTIPLIER,
            max_retries=config.RPC_MAX_RETRIES,
        )


class RequestQueue:
    def __init__(
        self,
        cfg: QueueConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = cfg or QueueConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self._cond = threading.Condition()
        self._next_ticket = 0
        self._now_serving = 0

        self._last_dispatch: float | None = None
        self._backoff_until = 0.0
        self.consecutive_failures = 0
        self.last_backoff_ms: float | None = None

    # ----------------------
    # Public API
    # ----------------------

    @property
    def active(self) -> bool:
        """Whether a request currently holds the slot."""
        with self._cond:
            return self._now_serving < self._next_ticket

    @property
    def queued(self) -> int:
        """Number of callers waiting behind the active one."""
        with self._cond:
            return max(0, self._next_ticket - self._now_serving - 1)

    def submit(self, request_fn: Callable[[], requests.Response]) -> requests.Response:
        """
        Run request_fn once the slot is ours, retrying on 429/transport errors.

        Returns the response (the last 429 if retries ran out) or re-raises
        the last transient network error. Other requests exceptions are not
        retried.
        """
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._now_serving != ticket:
                self._cond.wait()
        try:
            return self._dispatch(request_fn)
        finally:
            with self._cond:
                self._now_serving += 1
                self._cond.notify_all()

    # ----------------------
    # Internals
    # ----------------------

    def _dispatch(self, request_fn):
        max_retries = self.config.max_retries
        for attempt in range(max_retries + 1):
            self._wait_for_backoff()
            self._enforce_min_delay()
            self._last_dispatch = self._clock()

            try:
                response = request_fn()
            except TRANSIENT_ERRORS as e:
                if attempt == max_retries:
                    logger.error(f"Network error after {max_retries} retries: {e}")
                    raise
                self._apply_backoff(f"network error ({e.__class__.__name__})")
                continue

            if response.status_code != RATE_LIMITED:
                self.consecutive_failures = 0
                return response

            self._apply_backoff("429 rate limited")
            if attempt == max_retries:
                logger.error(f"Still rate limited after {max_retries} retries, giving up")
                return response

        raise RuntimeError("unreachable: retry loop exited without a result")

    def _wait_for_backoff(self) -> None:
        remaining = self._backoff_until - self._clock()
        if remaining > 0:
            self._sleep(remaining)

    def _enforce_min_delay(self) -> None:
        if self._last_dispatch is None:
            return
        elapsed_ms = (self._clock() - self._last_dispatch) * 1000.0
        if elapsed_ms < self.config.min_delay_ms:
            self._sleep((self.config.min_delay_ms - elapsed_ms) / 1000.0)

    def backoff_midpoint_ms(self, failures: int) -> float:
        cfg = self.config
        base = cfg.base_backoff_ms * cfg.backoff_multiplier ** (failures - 1)
        return min(base, cfg.max_backoff_ms)

    def _apply_backoff(self, reason: str) -> None:
        self.consecutive_failures += 1
        capped = self.backoff_midpoint_ms(self.consecutive_failures)
        jittered = capped * (0.8 + self._rng() * 0.4)
        self.last_backoff_ms = jittered
        self._backoff_until = self._clock() + jittered / 1000.0
        logger.warning(
            f"{reason} (x{self.consecutive_failures}). Backoff: {round(jittered)}ms"
        )
