"""Error builders.

Each builder returns ``Err(AppError)`` with the right code so engines can
``return not_found("Lesson", lesson_id, origin=...)`` directly.
"""
from uuid import UUID

from .types import AppError, ErrorCode, ErrorContext, Err


# =============================================================================
# External collaborators (E1xxx)
# =============================================================================

def network_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E1000_NETWORK_GENERIC,
    origin: str = "",
    cause: Exception | None = None,
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata={k: v for k, v in metadata.items() if v is not None},
        cause=cause,
    ))


def timeout_error(
    operation: str, timeout_seconds: float, origin: str = ""
) -> Err[AppError]:
    return network_error(
        f"Operation '{operation}' timed out after {timeout_seconds}s",
        code=ErrorCode.E1002_TIMEOUT,
        origin=origin,
        operation=operation,
        timeout_seconds=timeout_seconds,
    )


def external_service_unavailable(
    service: str, reason: str = "", origin: str = ""
) -> Err[AppError]:
    msg = f"External service '{service}' unavailable"
    if reason:
        msg += f": {reason}"
    return network_error(
        msg,
        code=ErrorCode.E1010_EXTERNAL_SERVICE_UNAVAILABLE,
        origin=origin,
        service=service,
    )


def circuit_open(service: str, origin: str = "") -> Err[AppError]:
    return network_error(
        f"Circuit breaker open for service '{service}'",
        code=ErrorCode.E1012_CIRCUIT_OPEN,
        origin=origin,
        service=service,
    )


def execution_failed(
    reason: str, language: str | None = None, origin: str = ""
) -> Err[AppError]:
    """The code-execution collaborator ran the program and it failed."""
    return network_error(
        reason,
        code=ErrorCode.E1011_EXTERNAL_SERVICE_ERROR,
        origin=origin,
        service="code-execution",
        language=language,
    )


# =============================================================================
# Validation Errors (E2xxx)
# =============================================================================

def validation_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E2000_VALIDATION_GENERIC,
    field: str | None = None,
    value: str | None = None,
    origin: str = "",
    **metadata,
) -> Err[AppError]:
    meta = {"field": field, "value": value, **metadata}
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata={k: v for k, v in meta.items() if v is not None},
    ))


def invalid_uuid(value: str, field: str = "id", origin: str = "") -> Err[AppError]:
    return validation_error(
        f"Invalid UUID format for '{field}': '{value}'",
        code=ErrorCode.E2011_INVALID_UUID,
        field=field,
        value=value,
        origin=origin,
    )


def constraint_violation(message: str, origin: str = "", **metadata) -> Err[AppError]:
    return validation_error(
        message,
        code=ErrorCode.E2005_CONSTRAINT_VIOLATION,
        origin=origin,
        **metadata,
    )


# =============================================================================
# Authentication/Authorization Errors (E3xxx)
# =============================================================================

def auth_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E3000_AUTH_GENERIC,
    user_id: str | None = None,
    origin: str = "",
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin, user_id=user_id),
        metadata=metadata,
    ))


def token_missing(origin: str = "") -> Err[AppError]:
    return auth_error(
        "Authenticated user id required",
        code=ErrorCode.E3004_TOKEN_MISSING,
        origin=origin,
    )


def insufficient_permissions(
    action: str, resource: str | None = None, user_id: str | None = None, origin: str = ""
) -> Err[AppError]:
    msg = f"Insufficient permissions to {action}"
    if resource:
        msg += f" on {resource}"
    return auth_error(
        msg,
        code=ErrorCode.E3010_INSUFFICIENT_PERMISSIONS,
        user_id=user_id,
        action=action,
        resource=resource,
        origin=origin,
    )


# =============================================================================
# Database Errors (E4xxx)
# =============================================================================

def db_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E4000_DATABASE_GENERIC,
    table: str | None = None,
    origin: str = "",
    cause: Exception | None = None,
    **metadata,
) -> Err[AppError]:
    meta = {"table": table, **metadata}
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata={k: v for k, v in meta.items() if v is not None},
        cause=cause,
    ))


def not_found(
    entity: str,
    id: str | UUID | None = None,
    origin: str = "",
) -> Err[AppError]:
    msg = f"{entity} not found"
    if id:
        msg += f": {id}"
    return db_error(
        msg,
        code=ErrorCode.E4010_NOT_FOUND,
        entity=entity,
        entity_id=str(id) if id else None,
        origin=origin,
    )


def duplicate_key(
    entity: str, field: str, value: str, origin: str = ""
) -> Err[AppError]:
    return db_error(
        f"{entity} with {field}='{value}' already exists",
        code=ErrorCode.E4011_DUPLICATE_KEY,
        entity=entity,
        field=field,
        value=value,
        origin=origin,
    )


def foreign_key_violation(
    entity: str, reference: str, origin: str = ""
) -> Err[AppError]:
    return db_error(
        f"Referenced {reference} does not exist for {entity}",
        code=ErrorCode.E4012_FOREIGN_KEY_VIOLATION,
        entity=entity,
        reference=reference,
        origin=origin,
    )


def db_connection_failed(reason: str = "", origin: str = "") -> Err[AppError]:
    msg = "Database connection failed"
    if reason:
        msg += f": {reason}"
    return db_error(msg, code=ErrorCode.E4001_CONNECTION_FAILED, origin=origin)


def transaction_failed(reason: str = "", origin: str = "") -> Err[AppError]:
    msg = "Database transaction failed"
    if reason:
        msg += f": {reason}"
    return db_error(msg, code=ErrorCode.E4003_TRANSACTION_FAILED, origin=origin)


# =============================================================================
# Business Logic Errors (E5xxx)
# =============================================================================

def business_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E5000_BUSINESS_GENERIC,
    origin: str = "",
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata=metadata,
    ))


def dependency_not_met(
    subject: str,
    subject_id: str | UUID,
    unmet: list[dict],
    origin: str = "",
) -> Err[AppError]:
    """Access to a locked lesson or course.

    ``unmet`` is the full list of serialized unmet dependencies; the client
    renders ``requirements`` directly.
    """
    return business_error(
        f"{subject.capitalize()} is locked. Complete the required prerequisites first.",
        code=ErrorCode.E5021_DEPENDENCY_NOT_MET,
        origin=origin,
        subject=subject,
        subject_id=str(subject_id),
        dependencies=unmet,
        requirements=[d["requirement"] for d in unmet],
    )


# =============================================================================
# Internal Errors (E9xxx)
# =============================================================================

def internal_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E9001_UNEXPECTED_ERROR,
    origin: str = "",
    cause: Exception | None = None,
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata=metadata,
        cause=cause,
    ))


def configuration_error(what: str, origin: str = "", **metadata) -> Err[AppError]:
    return internal_error(
        f"Configuration error: {what}",
        code=ErrorCode.E9004_CONFIGURATION_ERROR,
        origin=origin,
        **metadata,
    )
