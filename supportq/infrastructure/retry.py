"""
Circuit breaker for outbound API stages.

The Gmail client records each request outcome here; once a stage fails
fail_max times in a row the circuit opens and callers short-circuit until
reset_timeout passes. The circuit then goes half-open and admits a single
trial request; its outcome closes or reopens the circuit.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock

from supportq.observability.telemetry import counter, log_event


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_started: float | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        with self._lock:
            now = time.monotonic()
            if self._state == "open" and now - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._trial_started = None

            if self._state == "closed":
                return True
            if self._state == "half_open":
                # A trial whose outcome was never recorded expires after reset_timeout
                if self._trial_started is None or now - self._trial_started >= self.reset_timeout:
                    self._trial_started = now
                    return True

            counter(f"circuit.{self.stage}.rejected")
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = "closed"
            self._trial_started = None

    def record_failure(self) -> None:
        """
        Count a failure; open the circuit at fail_max (or immediately when half-open).

        Side Effects:
            - Emits circuit.opened event when the state flips to open
        """
        with self._lock:
            self._failures += 1
            self._trial_started = None
            if self._state == "half_open" or self._failures >= self.fail_max:
                self._state = "open"
                self._opened_at = time.monotonic()
                counter(f"circuit.{self.stage}.opened")
                log_event("circuit.opened", stage=self.stage, failures=self._failures)

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = "closed"
            self._opened_at = 0.0
            self._trial_started = None
