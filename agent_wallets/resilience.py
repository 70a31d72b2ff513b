"""
Circuit breaker guarding the inference collaborator.

A dead backend would otherwise cost a full inference timeout on every
decision cycle of every agent. While the circuit is OPEN, decisions go
straight to the rule fallback.

    CLOSED --(fail_threshold failures)--> OPEN
    OPEN --(cooldown elapsed, next acquire)--> HALF_OPEN
    HALF_OPEN --(probe_successes successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger("agent_wallets.resilience")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised by acquire() while the circuit is rejecting calls."""

    def __init__(self, service: str, remaining_seconds: float):
        self.service = service
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Circuit breaker open for '{service}', retry in {remaining_seconds:.1f}s"
        )


@dataclass
class CircuitBreaker:
    """
    One breaker per collaborator instance; nothing is shared between breakers.

    Successes while CLOSED decay the failure count by one, so sporadic
    failures never accumulate into an open circuit.
    """

    service: str
    fail_threshold: int = 5
    cooldown_sec: float = 60
    probe_successes: int = 2

    state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    failure_count: int = field(default=0, init=False)
    last_failure_time: float = field(default=0.0, init=False)
    success_count_in_half_open: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def _elapsed_since_failure(self) -> float:
        return time.monotonic() - self.last_failure_time

    @property
    def time_until_retry(self) -> float:
        if self.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.cooldown_sec - self._elapsed_since_failure())

    @property
    def is_open(self) -> bool:
        """True while calls would be rejected."""
        return self.state == CircuitState.OPEN and self.time_until_retry > 0

    def _transition(self, new_state: CircuitState, detail: str = "") -> None:
        if new_state == self.state:
            return
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"Circuit '{self.service}': {self.state.value} -> {new_state.value}{' | ' + detail if detail else ''}")
        self.state = new_state
        self.success_count_in_half_open = 0

    async def acquire(self) -> bool:
        """
        Ask permission for one call.

        Returns True when the call may proceed; raises CircuitBreakerOpen
        while the cooldown is running.
        """
        async with self._lock:
            if self.state == CircuitState.OPEN:
                remaining = self.time_until_retry
                if remaining > 0:
                    raise CircuitBreakerOpen(self.service, remaining)
                self._transition(CircuitState.HALF_OPEN, "cooldown elapsed, probing")
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state != CircuitState.HALF_OPEN:
                self.failure_count = max(0, self.failure_count - 1)
                return
            self.success_count_in_half_open += 1
            if self.success_count_in_half_open >= self.probe_successes:
                self.failure_count = 0
                self._transition(CircuitState.CLOSED, "backend recovered")

    async def record_failure(self, error: Optional[BaseException] = None) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.monotonic()

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, f"probe failed: {error}")
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.fail_threshold:
                self._transition(
                    CircuitState.OPEN,
                    f"{self.failure_count} failures, cooling down {self.cooldown_sec}s",
                )

    def get_state_info(self) -> Dict[str, Any]:
        """Snapshot for decision-source stats."""
        return {
            "service": self.service,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "time_until_retry": self.time_until_retry,
        }

    async def reset(self) -> None:
        async with self._lock:
            self.failure_count = 0
            self.last_failure_time = 0.0
            self._transition(CircuitState.CLOSED, "manual reset")
