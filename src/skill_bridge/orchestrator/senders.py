"""Outbound sender protocol, message formatting and the console sender."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import rich_click as click

from skill_bridge.orchestrator.artifacts import KeyInfo
from skill_bridge.orchestrator.backend.base import ExecutionResult
from skill_bridge.orchestrator.models import (
    ClassificationSignal,
    LoopDecision,
    ProgressSummary,
)

RESULT_OUTPUT_CHARS = 500


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    """Everything a sender needs to present one finished invocation."""

    chat_id: str
    result: ExecutionResult
    signal: ClassificationSignal
    decision: LoopDecision | None = None
    key_info: KeyInfo = field(default_factory=KeyInfo)


class Sender(Protocol):
    """Outbound collaborator; delivery failures are the sender's concern."""

    async def send_text(self, conversation_id: str, chat_id: str, text: str) -> None: ...

    async def send_result(self, conversation_id: str, report: ExecutionReport) -> None: ...

    async def send_progress(self, conversation_id: str, summary: ProgressSummary) -> None: ...

    async def send_error(self, conversation_id: str, chat_id: str, message: str) -> None: ...


def format_execution_result(report: ExecutionReport) -> str:
    """Render status, command, output excerpt, next phase and loop depth."""

    result = report.result
    lines = ["✅ Execution succeeded" if result.success else "❌ Execution failed"]
    if result.timed_out:
        lines.append("(timed out)")
    if result.command:
        lines.extend(["", "Command:", result.command])
    if result.stdout:
        output = result.stdout
        if len(output) > RESULT_OUTPUT_CHARS:
            output = output[:RESULT_OUTPUT_CHARS] + "..."
        lines.extend(["", "Output:", "```", output.rstrip("\n"), "```"])
    if report.signal.next_phase:
        lines.extend(["", f"Next phase: {report.signal.next_phase}"])
    if report.decision is not None:
        lines.extend(["", f"Loop depth: {report.decision.loop_depth}"])
        if report.decision.needs_intervention:
            lines.append(f"⚠️ {report.decision.describe()}")
    attachments = [
        *report.key_info.images,
        *report.key_info.audio,
        *report.key_info.video,
        *report.key_info.documents,
    ]
    if attachments:
        lines.extend(["", "Files:", *(f"- {path}" for path in attachments)])
    return "\n".join(lines)


_STATUS_ICONS = {"success": "✅", "failed": "❌", "running": "⏳"}


def format_progress_summary(summary: ProgressSummary) -> str:
    status_icon = _STATUS_ICONS.get(summary.last_status, "⚠️")
    return "\n".join(
        [
            "📊 Progress summary",
            f"Current phase: {summary.current_phase}",
            f"Loops completed: {summary.loop_count}",
            f"Total time: {summary.total_time}",
            f"Last status: {status_icon} {summary.last_status}",
        ],
    )


def format_error(message: str) -> str:
    return f"❌ Error\n{message}"


class ConsoleSender:
    """Writes every outbound message to stdout; used by `skill-bridge serve`."""

    async def send_text(self, conversation_id: str, chat_id: str, text: str) -> None:
        self._emit(conversation_id, text)

    async def send_result(self, conversation_id: str, report: ExecutionReport) -> None:
        self._emit(conversation_id, format_execution_result(report))

    async def send_progress(self, conversation_id: str, summary: ProgressSummary) -> None:
        self._emit(conversation_id, format_progress_summary(summary))

    async def send_error(self, conversation_id: str, chat_id: str, message: str) -> None:
        self._emit(conversation_id, format_error(message))

    @staticmethod
    def _emit(conversation_id: str, text: str) -> None:
        click.echo(f"[{conversation_id}]")
        click.echo(text)
        click.echo("")
