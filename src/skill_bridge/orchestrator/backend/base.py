"""Backend interface for skill invocations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

TIMEOUT_EXIT_CODE = 124


class FailureKind(str, Enum):
    """Business failure classes that are retried locally."""

    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Inputs required to run one skill invocation."""

    conversation_id: str
    input_text: str
    attempt_number: int = 1


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of exactly one subprocess run."""

    conversation_id: str
    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    attempt_number: int = 1

    @property
    def success(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def failure(self) -> FailureKind | None:
        if self.timed_out:
            return FailureKind.TIMEOUT
        if self.exit_code != 0:
            return FailureKind.NON_ZERO_EXIT
        return None


@dataclass(frozen=True, slots=True)
class ExecutionSucceeded:
    result: ExecutionResult


@dataclass(frozen=True, slots=True)
class ExecutionFailed:
    result: ExecutionResult
    failure: FailureKind


ExecutionOutcome = ExecutionSucceeded | ExecutionFailed


def to_outcome(result: ExecutionResult) -> ExecutionOutcome:
    """Wrap a raw result into its tagged success/failure variant."""

    failure = result.failure
    if failure is None:
        return ExecutionSucceeded(result=result)
    return ExecutionFailed(result=result, failure=failure)


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Resolved executable, arguments and extra environment for one launch."""

    executable: str
    args: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)


class SkillBackend(Protocol):
    """Protocol implemented by skill executors."""

    async def run_with_retry(
        self,
        request: ExecutionRequest,
        max_attempts: int | None = None,
    ) -> ExecutionResult:
        """Run the request, retrying business failures, and return the last result."""
