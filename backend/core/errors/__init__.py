"""Monadic Error Handling

- Result[T, E]: ``Ok(value)`` or ``Err(AppError)``
- AppError: typed error with code, message, metadata and tracing context
- ErrorCode: code taxonomy mapped to HTTP status and category
- Builders: ``not_found``, ``dependency_not_met`` and friends

Usage:
    from core.errors import Ok, Result, AppError, not_found

    async def load_lesson(session, lesson_id) -> Result[Lesson, AppError]:
        lesson = await session.get(Lesson, lesson_id)
        if lesson is None:
            return not_found("Lesson", lesson_id, origin="catalog")
        return Ok(lesson)
"""
from .types import (
    Result,
    Ok,
    Err,
    AppError,
    ErrorCode,
    ErrorContext,
)

from .builders import (
    # External (E1xxx)
    network_error,
    timeout_error,
    external_service_unavailable,
    circuit_open,
    execution_failed,
    # Validation (E2xxx)
    validation_error,
    invalid_uuid,
    constraint_violation,
    # Auth (E3xxx)
    auth_error,
    token_missing,
    insufficient_permissions,
    # Database (E4xxx)
    db_error,
    not_found,
    duplicate_key,
    foreign_key_violation,
    db_connection_failed,
    transaction_failed,
    # Business (E5xxx)
    business_error,
    dependency_not_met,
    # Internal (E9xxx)
    internal_error,
    configuration_error,
)

from .boundaries import (
    ErrorMapper,
    DatabaseErrorMapper,
    EngineErrorMapper,
    map_errors,
)

from .handlers import (
    AppErrorException,
    register_error_handlers,
    result_to_response,
    raise_error,
    raise_result,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "AppError",
    "ErrorCode",
    "ErrorContext",
    "network_error",
    "timeout_error",
    "external_service_unavailable",
    "circuit_open",
    "execution_failed",
    "validation_error",
    "invalid_uuid",
    "constraint_violation",
    "auth_error",
    "token_missing",
    "insufficient_permissions",
    "db_error",
    "not_found",
    "duplicate_key",
    "foreign_key_violation",
    "db_connection_failed",
    "transaction_failed",
    "business_error",
    "dependency_not_met",
    "internal_error",
    "configuration_error",
    "ErrorMapper",
    "DatabaseErrorMapper",
    "EngineErrorMapper",
    "map_errors",
    "AppErrorException",
    "register_error_handlers",
    "result_to_response",
    "raise_error",
    "raise_result",
]
