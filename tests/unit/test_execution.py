"""
Unit tests for output grading and the execution adapter.
"""

import sys

from core.errors import ErrorCode
from engines.execution import (
    FAIL_FEEDBACK,
    PASS_FEEDBACK,
    SubprocessExecutor,
    output_matches,
    validate_output,
)


class TestOutputMatches:
    """Tests for the containment check."""

    def test_case_and_whitespace_insensitive(self):
        """Expected text is found regardless of case and padding."""
        assert output_matches("  Hello, WORLD!\n", "hello, world")

    def test_contained_in_longer_output(self):
        """Extra output around the expected text is allowed."""
        assert output_matches("1\n2\n3\n4\n5\ndone\n", "1\n2\n3\n4\n5")

    def test_mismatch(self):
        assert not output_matches("goodbye", "hello")


class TestValidateOutput:
    """Tests for grading a program run."""

    async def test_pass(self, make_executor):
        """Matching output scores 100."""
        executor = make_executor(output="red\norange\n")

        result = await validate_output(executor, "print('red')", "red", "python")

        assert result.valid is True
        assert result.score == 100
        assert result.feedback == PASS_FEEDBACK
        assert result.to_dict()["actualOutput"] == "red\norange\n"

    async def test_wrong_output(self, make_executor):
        """Wrong output scores 0 with a retry hint."""
        result = await validate_output(make_executor(output="blue"), "print('blue')", "red", "python")

        assert result.valid is False
        assert result.score == 0
        assert result.feedback == FAIL_FEEDBACK

    async def test_execution_error_becomes_failed_validation(self, make_executor):
        """Runtime errors never escape as errors."""
        executor = make_executor(error="NameError: name 'x' is not defined")

        result = await validate_output(executor, "print(x)", "1", "python")

        assert result.valid is False
        assert result.score == 0
        assert result.feedback == "Code execution error: NameError: name 'x' is not defined"
        assert result.actual_output is None


class TestSubprocessExecutor:
    """Tests for the local interpreter runner."""

    async def test_unsupported_language(self):
        """Languages without a configured interpreter are a validation error."""
        result = await SubprocessExecutor().execute("10 PRINT 1", "basic")

        assert result.is_err()
        assert result.unwrap_err().code == ErrorCode.E2000_VALIDATION_GENERIC

    async def test_runs_program(self):
        """Standard output of a successful run is returned."""
        executor = SubprocessExecutor(timeout_seconds=5, commands={"python": [sys.executable, "-c"]})

        result = await executor.execute("print('hello')", "python")

        assert result.is_ok()
        assert result.unwrap().output.strip() == "hello"

    async def test_endless_output_is_cut_off(self):
        """A program printing forever is killed once it passes the output cap."""
        executor = SubprocessExecutor(
            timeout_seconds=5,
            max_output_bytes=1024,
            commands={"python": [sys.executable, "-c"]},
        )

        result = await executor.execute("while True: print('x')", "python")

        assert result.is_err()
        error = result.unwrap_err()
        assert error.code == ErrorCode.E1011_EXTERNAL_SERVICE_ERROR
        assert "Output exceeded 1024 bytes" in error.message
