"""Controllers for skill-bridge CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import TextIO

from skill_bridge.config import Settings
from skill_bridge.http.webhook import WebhookSender
from skill_bridge.orchestrator.artifacts import extract_key_info
from skill_bridge.orchestrator.backend import ExecutionResult, ProcessExecutor
from skill_bridge.orchestrator.bridge import BridgeService
from skill_bridge.orchestrator.classifier import DEFAULT_CLASSIFIER
from skill_bridge.orchestrator.controller import LoopController
from skill_bridge.orchestrator.events import EventKind, InboundEvent, message_event, parse_event
from skill_bridge.orchestrator.models import ConversationStatus, LoopAction, LoopDecision
from skill_bridge.orchestrator.progress import ProgressMonitor
from skill_bridge.orchestrator.senders import ConsoleSender, Sender
from skill_bridge.orchestrator.transcript import render_conversation_markdown
from skill_bridge.storage.common import utc_now
from skill_bridge.storage.repository import SqlConversationRepository

logger = logging.getLogger(__name__)

CONSOLE_CHAT_ID = "console"
CONSOLE_SENDER_ID = "local"


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the stdin-driven bridge loop."""

    stream: TextIO
    cli_path: str | None = None
    webhook_url: str | None = None
    db_path: Path | None = None
    auto_continue: bool | None = None


@dataclass(slots=True)
class ClassifyCommand:
    """CLI input for offline output classification."""

    text: str
    exit_code: int = 0


@dataclass(slots=True)
class ProbeCommand:
    cli_path: str | None = None


@dataclass(slots=True)
class SessionsListCommand:
    """CLI input for persisted conversation listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class SessionsShowCommand:
    db_path: Path | None
    conversation_id: str


@dataclass(slots=True)
class SessionsPruneCommand:
    """CLI input for deleting idle persisted conversations."""

    db_path: Path | None
    older_than_seconds: int | None
    dry_run: bool


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus an overall success flag."""

    lines: list[str]
    success: bool = True


@dataclass(slots=True)
class ServeSummary:
    messages: int = 0
    ignored: int = 0
    rejected: int = 0
    completed: int = 0
    escalated: int = 0
    continuing: int = 0
    reasons: dict[str, int] = field(default_factory=dict)

    def record(self, decision: LoopDecision | None) -> None:
        if decision is None:
            self.rejected += 1
            return
        self.reasons[decision.reason] = self.reasons.get(decision.reason, 0) + 1
        if decision.action is LoopAction.COMPLETE:
            self.completed += 1
        elif decision.action is LoopAction.ESCALATE:
            self.escalated += 1
        else:
            self.continuing += 1


class BridgeCliController:
    """Coordinates serve, classify, probe and session inspection commands."""

    def serve(self, command: ServeCommand) -> CommandResult:
        settings = _settings(
            cli_path=command.cli_path,
            webhook_url=command.webhook_url,
            db_path=command.db_path,
        )
        if command.auto_continue is not None:
            settings.loop.auto_continue = command.auto_continue

        repository = _open_repository(settings.session.db_path)
        try:
            summary = asyncio.run(_serve(settings, command.stream, repository))
        finally:
            if repository is not None:
                repository.close()

        reasons = ", ".join(f"{key}={value}" for key, value in sorted(summary.reasons.items()))
        return CommandResult(
            lines=[
                "Serve summary: "
                f"messages={summary.messages} completed={summary.completed} "
                f"escalated={summary.escalated} continuing={summary.continuing} "
                f"rejected={summary.rejected} ignored={summary.ignored}",
                f"Reasons: {reasons or 'none'}",
            ],
        )

    def classify(self, command: ClassifyCommand) -> list[str]:
        """Classify captured tool output without running anything."""

        result = ExecutionResult(
            conversation_id="cli",
            command="classify",
            exit_code=command.exit_code,
            stdout=command.text,
            stderr="",
            duration_ms=0,
        )
        signal = DEFAULT_CLASSIFIER.classify(result)
        payload = {
            "signal": signal.to_dict(),
            "key_info": extract_key_info(command.text).to_dict(),
        }
        return [json.dumps(payload, ensure_ascii=False, indent=2)]

    def probe(self, command: ProbeCommand) -> CommandResult:
        settings = _settings(cli_path=command.cli_path)
        executor = _build_executor(settings)

        async def _probe() -> tuple[bool, str]:
            available = await executor.is_available()
            version = await executor.get_version() if available else "unknown"
            return available, version

        available, version = asyncio.run(_probe())
        return CommandResult(
            lines=[
                f"Skill CLI: {settings.execution.cli_path}",
                f"Available: {'yes' if available else 'no'}",
                f"Version: {version}",
            ],
            success=available,
        )

    def list_sessions(self, command: SessionsListCommand) -> list[str]:
        status = ConversationStatus(command.status) if command.status else None
        with _repository(command.db_path) as repository:
            states = repository.list_states(status=status, limit=command.limit)
        if not states:
            return ["No conversations found."]
        lines = [f"Conversations: {len(states)}"]
        for state in states:
            lines.append(
                f"- {state.conversation_id} status={state.status.value} "
                f"chat={state.chat_id} loop_depth={state.loop_depth} "
                f"runs={len(state.history)} "
                f"last_activity={state.last_activity_at.isoformat()} "
                f"phase={state.last_phase or '-'}",
            )
        return lines

    def show_session(self, command: SessionsShowCommand) -> CommandResult:
        with _repository(command.db_path) as repository:
            state = repository.load_state(command.conversation_id)
        if state is None:
            return CommandResult(
                lines=[f"Conversation not found: {command.conversation_id}"],
                success=False,
            )
        return CommandResult(lines=render_conversation_markdown(state).splitlines())

    def prune_sessions(self, command: SessionsPruneCommand) -> list[str]:
        """Delete persisted conversations idle longer than the session timeout."""

        settings = _settings(db_path=command.db_path)
        older_than = (
            command.older_than_seconds
            if command.older_than_seconds is not None
            else settings.session.idle_timeout_seconds
        )
        cutoff = utc_now() - timedelta(seconds=older_than)
        with _repository(command.db_path) as repository:
            stale = [
                state.conversation_id
                for state in repository.list_states()
                if state.last_activity_at < cutoff
            ]
            if not command.dry_run:
                for conversation_id in stale:
                    repository.delete_state(conversation_id)

        verb = "Would delete" if command.dry_run else "Deleted"
        logger.info("Session prune %s count=%d", verb.lower(), len(stale))
        return [f"{verb} {len(stale)} conversation(s) idle for more than {older_than}s."]


async def _serve(
    settings: Settings,
    stream: TextIO,
    repository: SqlConversationRepository | None,
) -> ServeSummary:
    sender = _build_sender(settings)
    controller = LoopController(
        persistence=repository,
        max_loop_depth=settings.loop.max_loop_depth,
        low_confidence_threshold=settings.loop.low_confidence_threshold,
        session_timeout_seconds=settings.session.idle_timeout_seconds,
    )
    bridge = BridgeService(
        executor=_build_executor(settings),
        controller=controller,
        sender=sender,
        progress=ProgressMonitor(
            controller=controller,
            sender=sender,
            interval_seconds=settings.progress.interval_seconds,
            enabled=settings.progress.enabled,
        ),
        auto_continue=settings.loop.auto_continue,
    )

    summary = ServeSummary()
    tasks: list[asyncio.Task[LoopDecision | None]] = []
    await bridge.start()
    try:
        while True:
            line = await asyncio.to_thread(stream.readline)
            if not line:
                break
            event = _line_to_event(line)
            if event is None:
                continue
            if event.kind is not EventKind.MESSAGE:
                summary.ignored += 1
                await bridge.handle(event)
                continue
            summary.messages += 1
            tasks.append(asyncio.create_task(bridge.handle(event)))
        for decision in await asyncio.gather(*tasks):
            summary.record(decision)
    finally:
        await bridge.stop()
        if isinstance(sender, WebhookSender):
            await sender.aclose()
    return summary


def _line_to_event(line: str) -> InboundEvent | None:
    text = line.strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Input line is not valid JSON, treating as text")
        else:
            if isinstance(payload, dict):
                return parse_event(payload)
    return message_event(chat_id=CONSOLE_CHAT_ID, sender_id=CONSOLE_SENDER_ID, text=text)


def _settings(
    *,
    cli_path: str | None = None,
    webhook_url: str | None = None,
    db_path: Path | None = None,
) -> Settings:
    settings = Settings.from_env()
    if cli_path:
        settings.execution.cli_path = cli_path
    if webhook_url:
        settings.sender.webhook_url = webhook_url
    if db_path is not None:
        settings.session.db_path = db_path
    settings.validate()
    return settings


def _build_executor(settings: Settings) -> ProcessExecutor:
    execution = settings.execution
    return ProcessExecutor(
        cli_path=execution.cli_path,
        timeout_seconds=execution.timeout_seconds,
        max_attempts=execution.max_attempts,
        retry_base_seconds=execution.retry_base_seconds,
        yolo_mode=execution.yolo_mode,
        session_env_key=execution.session_env_key,
        kill_grace_seconds=execution.kill_grace_seconds,
    )


def _build_sender(settings: Settings) -> Sender:
    if settings.sender.webhook_url:
        return WebhookSender(
            url=settings.sender.webhook_url,
            timeout_seconds=settings.sender.request_timeout_seconds,
        )
    return ConsoleSender()


def _open_repository(db_path: Path | None) -> SqlConversationRepository | None:
    if db_path is None:
        return None
    repository = SqlConversationRepository(db_path)
    repository.init_schema()
    return repository


@contextmanager
def _repository(db_path: Path | None) -> Iterator[SqlConversationRepository]:
    resolved = db_path or Settings.from_env().session.db_path
    if resolved is None:
        raise ValueError(
            "No session database configured; pass --db-path or set SKILL_BRIDGE_SESSION_DB.",
        )
    repository = SqlConversationRepository(resolved)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()

