"""Code Execution Adapter

Runs learner programs through an external interpreter and grades the
output against a lesson's expected output.

``SubprocessExecutor`` is a local development runner (``python3 -c`` /
``node -e``) with a timeout and an output cap. It does NOT sandbox; a
production deployment plugs a sandboxed service in behind ``CodeExecutor``.
"""
import asyncio
import contextlib
from dataclasses import dataclass
from typing import Protocol

from core.config import settings
from core.errors import (
    AppError,
    ErrorCode,
    Ok,
    Result,
    execution_failed,
    external_service_unavailable,
    validation_error,
)
from core.logging import engine_logger
from core.resilience import CircuitBreakerRegistry, TimeoutPolicy

log = engine_logger()

EXECUTION_SERVICE = "code-execution"
READ_CHUNK_BYTES = 64 * 1024

PASS_FEEDBACK = "Great job! Your code works correctly!"
FAIL_FEEDBACK = "Try again! The output doesn't match expected result."
NO_CHECK_FEEDBACK = "Good job!"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    success: bool
    output: str
    error: str | None = None

    def to_dict(self) -> dict:
        return {"success": self.success, "output": self.output, "error": self.error}


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    score: int  # 0 or 100
    feedback: str
    actual_output: str | None = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "score": self.score,
            "feedback": self.feedback,
            "actualOutput": self.actual_output,
        }


class CodeExecutor(Protocol):
    async def execute(self, code: str, language: str) -> Result[ExecutionResult, AppError]:
        ...


class SubprocessExecutor:
    """Local interpreter runner, guarded by a circuit breaker and a timeout."""

    __slots__ = ("timeout_seconds", "max_output_bytes", "commands")

    def __init__(
        self,
        timeout_seconds: float | None = None,
        max_output_bytes: int | None = None,
        commands: dict[str, list[str]] | None = None,
    ):
        self.timeout_seconds = timeout_seconds or settings.EXECUTION_TIMEOUT_SECONDS
        self.max_output_bytes = max_output_bytes or settings.EXECUTION_MAX_OUTPUT_BYTES
        self.commands = commands or {
            "python": [settings.PYTHON_EXECUTABLE, "-c"],
            "javascript": [settings.NODE_EXECUTABLE, "-e"],
        }

    async def execute(self, code: str, language: str) -> Result[ExecutionResult, AppError]:
        command = self.commands.get(language)
        if command is None:
            return validation_error(
                f"Unsupported language: {language}",
                field="language",
                value=language,
                origin="execution",
            )

        breaker = CircuitBreakerRegistry.get(EXECUTION_SERVICE)
        timeout = TimeoutPolicy[ExecutionResult](self.timeout_seconds, f"execute_{language}")
        return await breaker.call(lambda: timeout.execute(lambda: self._run(command, code, language)))

    async def _run(self, command: list[str], code: str, language: str) -> Result[ExecutionResult, AppError]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                code,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.error("interpreter_unavailable", language=language, command=command[0], error=str(e))
            return external_service_unavailable(EXECUTION_SERVICE, str(e), origin="execution")

        try:
            (stdout, overflowed), (stderr, _) = await asyncio.gather(
                self._read_capped(proc, proc.stdout),
                self._read_capped(proc, proc.stderr),
            )
            await proc.wait()
        except asyncio.CancelledError:
            _kill(proc)
            await proc.wait()
            raise

        if overflowed:
            log.info("execution_output_capped", language=language, limit=self.max_output_bytes)
            return execution_failed(f"Output exceeded {self.max_output_bytes} bytes", language, origin="execution")

        output = stdout.decode(errors="replace")
        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            return execution_failed(message or f"exit status {proc.returncode}", language, origin="execution")
        return Ok(ExecutionResult(success=True, output=output))

    async def _read_capped(self, proc, stream: asyncio.StreamReader) -> tuple[bytes, bool]:
        """Read a pipe to EOF, at most max_output_bytes. Past the cap the process is killed."""
        buffer = bytearray()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                return bytes(buffer), False
            buffer.extend(chunk)
            if len(buffer) > self.max_output_bytes:
                _kill(proc)
                return bytes(buffer[: self.max_output_bytes]), True


def _kill(proc) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def output_matches(actual: str, expected: str) -> bool:
    """Case-insensitive, whitespace-trimmed containment."""
    return expected.strip().lower() in actual.strip().lower()


async def validate_output(
    executor: CodeExecutor,
    code: str,
    expected_output: str,
    language: str,
) -> ValidationResult:
    """Grade a program. Execution failures become a failed validation, never an error."""
    match await executor.execute(code, language):
        case Ok(ExecutionResult(output=output)):
            if output_matches(output, expected_output):
                return ValidationResult(True, 100, PASS_FEEDBACK, output)
            return ValidationResult(False, 0, FAIL_FEEDBACK, output)
        case failure:
            error = failure.unwrap_err()
            if error.code != ErrorCode.E1011_EXTERNAL_SERVICE_ERROR:
                log.warning("code_execution_failed", language=language, error_code=error.code.name, message=error.message)
            return ValidationResult(False, 0, f"Code execution error: {error.message}", None)
