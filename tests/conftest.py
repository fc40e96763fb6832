"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys
from datetime import UTC, datetime, timedelta

import pytest

from skill_bridge.orchestrator.backend import ExecutionResult
from skill_bridge.orchestrator.models import ProgressSummary
from skill_bridge.orchestrator.senders import ExecutionReport

ECHO_AGENT_COMMAND = (
    f"{shlex.quote(sys.executable)} -m skill_bridge.orchestrator.backend.echo_agent"
)


class RecordingSender:
    """Sender double that keeps every outbound message in memory."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.texts: list[tuple[str, str]] = []
        self.results: list[ExecutionReport] = []
        self.progress: list[ProgressSummary] = []
        self.errors: list[tuple[str, str]] = []

    async def send_text(self, conversation_id: str, chat_id: str, text: str) -> None:
        self._maybe_fail()
        self.texts.append((conversation_id, text))

    async def send_result(self, conversation_id: str, report: ExecutionReport) -> None:
        self._maybe_fail()
        self.results.append(report)

    async def send_progress(self, conversation_id: str, summary: ProgressSummary) -> None:
        self._maybe_fail()
        self.progress.append(summary)

    async def send_error(self, conversation_id: str, chat_id: str, message: str) -> None:
        self._maybe_fail()
        self.errors.append((conversation_id, message))

    def _maybe_fail(self) -> None:
        if self.fail:
            raise ConnectionError("chat platform unavailable")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_result(
    stdout: str,
    *,
    exit_code: int | None = 0,
    conversation_id: str = "session_test",
    command: str = "do the thing",
    timed_out: bool = False,
) -> ExecutionResult:
    return ExecutionResult(
        conversation_id=conversation_id,
        command=command,
        exit_code=exit_code,
        stdout=stdout,
        stderr="",
        duration_ms=5,
        timed_out=timed_out,
    )


def echo_cli(*extra_args: str) -> str:
    """CLI path that launches the echo agent with fixed leading options."""

    return " ".join([ECHO_AGENT_COMMAND, *(shlex.quote(arg) for arg in extra_args)])


@pytest.fixture()
def recording_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _skip_cli_logging_setup(monkeypatch) -> None:
    """Keep CLI invocations from attaching handlers to CliRunner's temporary streams."""

    monkeypatch.setattr("skill_bridge.main.setup_logging", lambda *_args, **_kwargs: None)


@pytest.fixture(autouse=True)
def _clean_bridge_env(monkeypatch) -> None:
    for name in (
        "SKILL_BRIDGE_CLI_PATH",
        "SKILL_BRIDGE_SESSION_DB",
        "SKILL_BRIDGE_WEBHOOK_URL",
        "SKILL_BRIDGE_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
