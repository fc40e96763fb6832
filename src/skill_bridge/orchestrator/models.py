"""Domain models for conversation state and output classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from skill_bridge.storage.common import from_iso, utc_now


class SignalKind(str, Enum):
    """Semantic signal derived from tool output."""

    COMPLETED = "completed"
    ERRORED = "errored"
    NEEDS_INPUT = "needs_input"
    CONTINUE = "continue"


class ConversationStatus(str, Enum):
    """Conversation lifecycle states."""

    ACTIVE = "active"
    ESCALATED = "escalated"
    COMPLETED = "completed"


class LoopAction(str, Enum):
    """What the bridge should do after a classified result."""

    CONTINUE = "continue"
    COMPLETE = "complete"
    ESCALATE = "escalate"


@dataclass(frozen=True, slots=True)
class ClassificationSignal:
    """Structured reading of one execution output.

    `kind` is the primary signal. `has_error` and `needs_input` are side flags
    that may be set alongside any kind.

    Output with no completion, error or next phase still gets `NEEDS_INPUT` as
    its kind, but with `needs_input=False` and zero confidence; `is_silent`
    tells that case apart from an actual question.
    """

    kind: SignalKind
    next_phase: str | None
    confidence: float
    summary: str
    has_error: bool = False
    needs_input: bool = False
    explicit_marker: bool = False

    @property
    def is_silent(self) -> bool:
        return self.kind is SignalKind.NEEDS_INPUT and not self.needs_input

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "is_silent": self.is_silent,
            "next_phase": self.next_phase,
            "confidence": self.confidence,
            "summary": self.summary,
            "has_error": self.has_error,
            "needs_input": self.needs_input,
            "explicit_marker": self.explicit_marker,
        }


@dataclass(frozen=True, slots=True)
class LoopDecision:
    """Controller verdict for one classified result."""

    action: LoopAction
    reason: str
    status: ConversationStatus
    loop_depth: int
    next_phase: str | None = None

    @property
    def needs_intervention(self) -> bool:
        return self.action is LoopAction.ESCALATE

    def describe(self) -> str:
        """Human-readable hint for escalation messages."""

        return _DECISION_HINTS.get(self.reason, self.reason)


_DECISION_HINTS: dict[str, str] = {
    "completed": "Task finished.",
    "max_loop_depth": "Maximum number of automatic continuations reached; please review.",
    "has_error": "The tool reported an error; human review needed.",
    "needs_input": "The tool is waiting for your input.",
    "low_confidence": "Next step is unclear; please confirm how to proceed.",
    "no_signal": "No next step detected; waiting for your instructions.",
    "continue": "Continuing automatically.",
    "execution_failed": "The tool run failed after all retries; please review the output.",
    "launch_failure": "The tool could not be started; check the bridge configuration.",
    "internal_error": "The bridge hit an unexpected error; please retry.",
}


@dataclass(slots=True)
class ExecutionRecord:
    """One entry of a conversation's execution history."""

    timestamp: datetime
    command: str
    success: bool
    exit_code: int | None
    next_phase: str | None
    loop_depth: int
    output: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "command": self.command,
            "success": self.success,
            "exit_code": self.exit_code,
            "next_phase": self.next_phase,
            "loop_depth": self.loop_depth,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExecutionRecord:
        exit_code = payload.get("exit_code")
        return cls(
            timestamp=from_iso(str(payload["timestamp"])),
            command=str(payload.get("command", "")),
            success=bool(payload.get("success", False)),
            exit_code=int(exit_code) if exit_code is not None else None,
            next_phase=payload.get("next_phase"),
            loop_depth=int(payload.get("loop_depth", 0)),
            output=str(payload.get("output", "")),
        )


@dataclass(slots=True)
class ConversationState:
    """Mutable per-conversation loop state owned by the loop controller."""

    conversation_id: str
    chat_id: str
    sender_id: str = "unknown"
    message: str = ""
    started_at: datetime = field(default_factory=utc_now)
    last_summary_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)
    loop_depth: int = 0
    last_phase: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    history: list[ExecutionRecord] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status is ConversationStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "last_summary_at": self.last_summary_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "loop_depth": self.loop_depth,
            "last_phase": self.last_phase,
            "status": self.status.value,
            "history": [record.to_dict() for record in self.history],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConversationState:
        return cls(
            conversation_id=str(payload["conversation_id"]),
            chat_id=str(payload.get("chat_id", "unknown")),
            sender_id=str(payload.get("sender_id", "unknown")),
            message=str(payload.get("message", "")),
            started_at=from_iso(str(payload["started_at"])),
            last_summary_at=from_iso(str(payload["last_summary_at"])),
            last_activity_at=from_iso(str(payload["last_activity_at"])),
            loop_depth=int(payload.get("loop_depth", 0)),
            last_phase=payload.get("last_phase"),
            status=ConversationStatus(payload.get("status", ConversationStatus.ACTIVE.value)),
            history=[ExecutionRecord.from_dict(item) for item in payload.get("history", [])],
        )


@dataclass(frozen=True, slots=True)
class ProgressSummary:
    """Snapshot sent to the chat for one active conversation."""

    conversation_id: str
    chat_id: str
    current_phase: str
    loop_count: int
    total_time: str
    last_status: str = "running"
