"""Timeout policy for Result-returning async operations."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

from core.errors import AppError, Result, timeout_error

T = TypeVar("T")


class TimeoutPolicy(Generic[T]):
    """Bound an async operation in time.

    Usage:
        policy = TimeoutPolicy(timeout_seconds=5.0, operation_name="run_python")
        result = await policy.execute(lambda: runner.run(code))
    """

    def __init__(self, timeout_seconds: float, operation_name: str = "operation"):
        self.timeout_seconds = timeout_seconds
        self.operation_name = operation_name

    async def execute(
        self,
        fn: Callable[[], Awaitable[Result[T, AppError]]],
    ) -> Result[T, AppError]:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return timeout_error(
                self.operation_name,
                self.timeout_seconds,
                origin="timeout_policy",
            )
