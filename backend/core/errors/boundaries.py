"""Error Boundary Mappers

Map exceptions raised below a module boundary (SQLAlchemy, collaborators)
into AppErrors so callers only ever see ``Result`` values.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from functools import wraps
from typing import Awaitable, Callable, Generic, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from .types import AppError, ErrorCode, ErrorContext, Err, Ok, Result
from .builders import (
    db_connection_failed,
    duplicate_key,
    foreign_key_violation,
    internal_error,
    timeout_error,
    transaction_failed,
)

T = TypeVar("T")


class ErrorMapper(ABC, Generic[T]):
    """Abstract base for error mappers at module boundaries."""

    @abstractmethod
    def map_error(self, error: AppError) -> AppError:
        pass

    @abstractmethod
    def map_exception(self, exc: Exception) -> AppError:
        pass

    def map_result(self, result: Result[T, AppError]) -> Result[T, AppError]:
        match result:
            case Ok(_):
                return result
            case Err(e):
                return Err(self.map_error(e))


class DatabaseErrorMapper(ErrorMapper[T]):
    """Maps SQLAlchemy exceptions to database error codes."""

    def __init__(self, origin: str = "database"):
        self.origin = origin

    def map_error(self, error: AppError) -> AppError:
        if 4000 <= error.code.value < 5000:
            return error
        return error.with_context(origin=self.origin)

    def map_exception(self, exc: Exception) -> AppError:
        if isinstance(exc, IntegrityError):
            return self._map_integrity_error(exc)
        if isinstance(exc, OperationalError):
            return self._map_operational_error(exc)
        if isinstance(exc, SQLAlchemyError):
            return transaction_failed(str(exc), origin=self.origin).error
        return internal_error(
            f"Database error: {exc}",
            origin=self.origin,
            cause=exc,
        ).error

    def _map_integrity_error(self, exc: IntegrityError) -> AppError:
        message = str(exc.orig) if exc.orig else str(exc)
        lowered = message.lower()

        if "duplicate key" in lowered or "unique constraint" in lowered:
            return duplicate_key("record", "unknown", "unknown", origin=self.origin).error
        if "foreign key" in lowered:
            return foreign_key_violation("record", "unknown", origin=self.origin).error

        return AppError(
            code=ErrorCode.E4013_CHECK_CONSTRAINT,
            message=f"Constraint violation: {message}",
            context=ErrorContext(origin=self.origin),
            cause=exc,
        )

    def _map_operational_error(self, exc: OperationalError) -> AppError:
        message = str(exc.orig) if exc.orig else str(exc)
        lowered = message.lower()

        if "timeout" in lowered:
            return timeout_error("database query", 30.0, origin=self.origin).error
        if "connect" in lowered:
            return db_connection_failed(message, origin=self.origin).error
        return transaction_failed(message, origin=self.origin).error


class EngineErrorMapper(ErrorMapper[T]):
    """Tags errors with the engine they came from."""

    def __init__(self, engine_name: str):
        self.engine_name = engine_name
        self.origin = f"engine.{engine_name}"

    def map_error(self, error: AppError) -> AppError:
        if error.context.origin:
            return error
        return error.with_context(origin=self.origin)

    def map_exception(self, exc: Exception) -> AppError:
        if isinstance(exc, SQLAlchemyError):
            return DatabaseErrorMapper(self.origin).map_exception(exc)
        return internal_error(
            f"Engine error in {self.engine_name}: {exc}",
            origin=self.origin,
            cause=exc,
        ).error


def map_errors(mapper: ErrorMapper[T]):
    """Decorator mapping errors and exceptions at an async function boundary.

    Usage:
        @map_errors(EngineErrorMapper("progression"))
        async def submit(...) -> Result[SubmissionOutcome, AppError]:
            ...
    """
    def decorator(fn: Callable[..., Awaitable[Result[T, AppError]]]):
        @wraps(fn)
        async def wrapper(*args, **kwargs) -> Result[T, AppError]:
            try:
                result = await fn(*args, **kwargs)
            except Exception as e:
                return Err(mapper.map_exception(e))
            return mapper.map_result(result)
        return wrapper
    return decorator
