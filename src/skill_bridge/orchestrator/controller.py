"""Per-conversation loop state machine and escalation policy."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from skill_bridge.orchestrator.backend.base import ExecutionResult
from skill_bridge.orchestrator.models import (
    ClassificationSignal,
    ConversationState,
    ConversationStatus,
    ExecutionRecord,
    LoopAction,
    LoopDecision,
    SignalKind,
)
from skill_bridge.orchestrator.store import (
    ConversationStore,
    InMemoryConversationStore,
    StatePersistence,
)
from skill_bridge.storage.common import utc_now

logger = logging.getLogger(__name__)

HISTORY_OUTPUT_CHARS = 4_000


class UnknownConversationError(KeyError):
    """Result reported for a conversation the controller does not track."""


class LoopController:
    """Owns conversation state, the in-flight guard and the continue/escalate decision.

    All methods are synchronous. Under a single event loop the check-and-set in
    `admit` cannot interleave with another admission.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: ConversationStore | None = None,
        persistence: StatePersistence | None = None,
        max_loop_depth: int = 100,
        low_confidence_threshold: float = 0.3,
        session_timeout_seconds: float = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store: ConversationStore = store if store is not None else InMemoryConversationStore()
        self.persistence = persistence
        self.max_loop_depth = max_loop_depth
        self.low_confidence_threshold = low_confidence_threshold
        self.session_timeout_seconds = session_timeout_seconds
        self._clock = clock
        self._in_flight: set[str] = set()

    def admit(
        self,
        conversation_id: str,
        *,
        chat_id: str = "unknown",
        sender_id: str = "unknown",
        message: str = "",
    ) -> bool:
        """Claim the conversation for one execution; False if one is already running."""

        if conversation_id in self._in_flight:
            logger.info("Conversation busy, ignoring message conversation=%s", conversation_id)
            return False
        self._in_flight.add(conversation_id)
        try:
            self._open(conversation_id, chat_id=chat_id, sender_id=sender_id, message=message)
        except Exception:
            self._in_flight.discard(conversation_id)
            raise
        return True

    def _open(self, conversation_id: str, *, chat_id: str, sender_id: str, message: str) -> None:
        now = self._clock()
        state = self.store.get(conversation_id)
        if state is None and self.persistence is not None:
            state = self.persistence.load_state(conversation_id)
        if state is None or not state.is_active:
            state = ConversationState(
                conversation_id=conversation_id,
                chat_id=chat_id,
                sender_id=sender_id,
                message=message,
                started_at=now,
                last_summary_at=now,
                last_activity_at=now,
            )
            logger.info("Conversation started conversation=%s chat=%s", conversation_id, chat_id)
        else:
            state.last_activity_at = now
            if message:
                state.message = message
        self.store.set(state)
        self._save(state)

    def is_in_flight(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    def get_state(self, conversation_id: str) -> ConversationState | None:
        return self.store.get(conversation_id)

    def active_states(self) -> list[ConversationState]:
        return self.store.list_active()

    def on_result(
        self,
        conversation_id: str,
        signal: ClassificationSignal,
        result: ExecutionResult | None = None,
    ) -> LoopDecision:
        """Apply one classified result and decide whether to continue, finish or escalate."""

        state = self.store.get(conversation_id)
        if state is None:
            raise UnknownConversationError(conversation_id)

        state.last_activity_at = self._clock()
        if result is not None:
            state.history.append(_to_record(result, signal, loop_depth=state.loop_depth))

        reason = self._intervention_reason(state, signal, result)
        if reason is None and signal.kind is SignalKind.COMPLETED:
            return self._finish(
                state,
                ConversationStatus.COMPLETED,
                LoopAction.COMPLETE,
                "completed",
            )
        if reason is not None:
            return self._finish(state, ConversationStatus.ESCALATED, LoopAction.ESCALATE, reason)

        state.loop_depth += 1
        state.last_phase = signal.next_phase
        self._save(state)
        logger.info(
            "Continuing conversation=%s loop_depth=%d next_phase=%r",
            conversation_id,
            state.loop_depth,
            state.last_phase,
        )
        return LoopDecision(
            action=LoopAction.CONTINUE,
            reason="continue",
            status=state.status,
            loop_depth=state.loop_depth,
            next_phase=state.last_phase,
        )

    def escalate(self, conversation_id: str, reason: str) -> LoopDecision | None:
        """Force escalation, for example after a launch failure."""

        state = self.store.get(conversation_id)
        if state is None:
            self._in_flight.discard(conversation_id)
            return None
        state.last_activity_at = self._clock()
        return self._finish(state, ConversationStatus.ESCALATED, LoopAction.ESCALATE, reason)

    def release(self, conversation_id: str) -> None:
        """Drop the in-flight guard without changing state."""

        self._in_flight.discard(conversation_id)

    def mark_summary_sent(self, conversation_id: str, at: datetime | None = None) -> None:
        state = self.store.get(conversation_id)
        if state is None:
            return
        state.last_summary_at = at or self._clock()

    def expire_idle(
        self,
        now: datetime | None = None,
        *,
        skip_in_flight: bool = False,
    ) -> list[str]:
        """Remove every conversation idle longer than the session timeout.

        With `skip_in_flight`, conversations with a running execution are kept.
        """

        current = now or self._clock()
        cutoff = current - timedelta(seconds=self.session_timeout_seconds)
        expired = [
            state.conversation_id
            for state in self.store.list_all()
            if state.last_activity_at < cutoff
            and not (skip_in_flight and state.conversation_id in self._in_flight)
        ]
        if not expired:
            return expired
        for conversation_id in expired:
            self.store.delete(conversation_id)
            self._in_flight.discard(conversation_id)
            if self.persistence is not None:
                self.persistence.delete_state(conversation_id)
        logger.info("Expired idle conversations count=%d", len(expired))
        return expired

    def _intervention_reason(
        self,
        state: ConversationState,
        signal: ClassificationSignal,
        result: ExecutionResult | None,
    ) -> str | None:
        if result is not None and not result.success:
            return "execution_failed"
        if signal.has_error:
            return "has_error"
        if signal.needs_input:
            return "needs_input"
        if signal.kind is SignalKind.COMPLETED:
            return None
        if signal.kind is not SignalKind.CONTINUE or not signal.next_phase:
            return "no_signal"
        if state.loop_depth + 1 > self.max_loop_depth:
            logger.warning(
                "Max loop depth reached conversation=%s loop_depth=%d max=%d",
                state.conversation_id,
                state.loop_depth,
                self.max_loop_depth,
            )
            return "max_loop_depth"
        if signal.confidence < self.low_confidence_threshold:
            logger.warning(
                "Low confidence next phase conversation=%s confidence=%.2f",
                state.conversation_id,
                signal.confidence,
            )
            return "low_confidence"
        return None

    def _finish(
        self,
        state: ConversationState,
        status: ConversationStatus,
        action: LoopAction,
        reason: str,
    ) -> LoopDecision:
        state.status = status
        self._save(state)
        self.store.delete(state.conversation_id)
        self._in_flight.discard(state.conversation_id)
        if status is ConversationStatus.ESCALATED:
            logger.warning(
                "Conversation escalated conversation=%s reason=%s loop_depth=%d",
                state.conversation_id,
                reason,
                state.loop_depth,
            )
        else:
            logger.info(
                "Conversation completed conversation=%s loop_depth=%d",
                state.conversation_id,
                state.loop_depth,
            )
        return LoopDecision(
            action=action,
            reason=reason,
            status=status,
            loop_depth=state.loop_depth,
            next_phase=state.last_phase,
        )

    def _save(self, state: ConversationState) -> None:
        if self.persistence is not None:
            self.persistence.save_state(state)


def _to_record(
    result: ExecutionResult,
    signal: ClassificationSignal,
    *,
    loop_depth: int,
) -> ExecutionRecord:
    return ExecutionRecord(
        timestamp=utc_now(),
        command=result.command,
        success=result.success,
        exit_code=result.exit_code,
        next_phase=signal.next_phase,
        loop_depth=loop_depth,
        output=result.stdout[:HISTORY_OUTPUT_CHARS],
    )
