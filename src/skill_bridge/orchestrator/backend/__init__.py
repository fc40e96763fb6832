"""Skill executor implementations."""

from skill_bridge.orchestrator.backend.base import (
    CommandSpec,
    ExecutionFailed,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    ExecutionSucceeded,
    FailureKind,
    SkillBackend,
)
from skill_bridge.orchestrator.backend.cli_backend import LaunchFailure, ProcessExecutor

__all__ = [
    "CommandSpec",
    "ExecutionFailed",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionSucceeded",
    "FailureKind",
    "LaunchFailure",
    "ProcessExecutor",
    "SkillBackend",
]
