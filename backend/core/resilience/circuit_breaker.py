"""Circuit Breaker

Protects calls to an external collaborator (the code runner). After
``failure_threshold`` collaborator faults the circuit opens and calls fail
fast with ``E1012_CIRCUIT_OPEN`` until ``timeout_seconds`` have passed.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Awaitable, Callable, Generic, TypeVar

from core.errors import AppError, ErrorCode, Err, Ok, Result, circuit_open
from core.logging import engine_logger

T = TypeVar("T")

log = engine_logger()


class CircuitState(Enum):
    CLOSED = auto()     # Requests pass through
    OPEN = auto()       # Requests rejected immediately
    HALF_OPEN = auto()  # Probing whether the collaborator recovered


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    # Failures caused by the caller's input, not by the collaborator
    excluded_codes: frozenset[ErrorCode] = field(
        default_factory=lambda: frozenset({
            ErrorCode.E1002_TIMEOUT,
            ErrorCode.E1011_EXTERNAL_SERVICE_ERROR,
            ErrorCode.E2000_VALIDATION_GENERIC,
            ErrorCode.E4010_NOT_FOUND,
        })
    )


@dataclass
class CircuitStats:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure: datetime | None
    last_state_change: datetime
    total_requests: int
    total_failures: int


class CircuitBreaker(Generic[T]):
    """Circuit breaker around Result-returning async calls.

    Usage:
        breaker = CircuitBreaker("code-execution")
        result = await breaker.call(lambda: runner.run(code))
    """

    def __init__(self, name: str, config: CircuitBreakerConfig | None = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure: datetime | None = None
        self._last_state_change = datetime.now(timezone.utc)
        self._total_requests = 0
        self._total_failures = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitStats:
        return CircuitStats(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure=self._last_failure,
            last_state_change=self._last_state_change,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
        )

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            log.warning("circuit_state_changed", circuit=self.name, old=self._state.name, new=new_state.name)
        self._state = new_state
        self._last_state_change = self._now()
        self._success_count = 0
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0

    async def _record_success(self) -> None:
        async with self._lock:
            self._success_count += 1
            if self._state == CircuitState.HALF_OPEN and self._success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _record_failure(self, error: AppError) -> None:
        if error.code in self.config.excluded_codes:
            # The collaborator answered; treat it as healthy
            await self._record_success()
            return

        async with self._lock:
            self._failure_count += 1
            self._total_failures += 1
            self._last_failure = self._now()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def _can_execute(self) -> Result[None, AppError]:
        async with self._lock:
            self._total_requests += 1

            if self._state == CircuitState.OPEN:
                elapsed = (self._now() - self._last_state_change).total_seconds()
                if elapsed < self.config.timeout_seconds:
                    return circuit_open(self.name, origin="circuit_breaker")
                self._transition_to(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    return circuit_open(self.name, origin="circuit_breaker")
                self._half_open_calls += 1

            return Ok(None)

    async def call(
        self,
        fn: Callable[[], Awaitable[Result[T, AppError]]],
    ) -> Result[T, AppError]:
        """Run ``fn`` unless the circuit is open."""
        can_exec = await self._can_execute()
        if can_exec.is_err():
            return can_exec  # type: ignore

        try:
            result = await fn()
        except Exception as e:
            error = AppError(
                code=ErrorCode.E1010_EXTERNAL_SERVICE_UNAVAILABLE,
                message=str(e) or type(e).__name__,
            ).chain(e)
            await self._record_failure(error)
            return Err(error)

        match result:
            case Ok(_):
                await self._record_success()
            case Err(error):
                await self._record_failure(error)
        return result

    def reset(self) -> None:
        self._transition_to(CircuitState.CLOSED)


class CircuitBreakerRegistry:
    """Process-wide named circuit breakers."""

    _breakers: dict[str, CircuitBreaker] = {}
    _configs: dict[str, CircuitBreakerConfig] = {}

    @classmethod
    def configure(cls, name: str, config: CircuitBreakerConfig) -> None:
        cls._configs[name] = config

    @classmethod
    def get(cls, name: str) -> CircuitBreaker:
        if name not in cls._breakers:
            cls._breakers[name] = CircuitBreaker(name, cls._configs.get(name))
        return cls._breakers[name]

    @classmethod
    def stats(cls) -> dict[str, CircuitStats]:
        return {name: breaker.stats for name, breaker in cls._breakers.items()}

    @classmethod
    def reset_all(cls) -> None:
        for breaker in cls._breakers.values():
            breaker.reset()
