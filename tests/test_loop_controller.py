from __future__ import annotations

import allure
import pytest
from conftest import FakeClock, make_result

from skill_bridge.orchestrator.controller import LoopController, UnknownConversationError
from skill_bridge.orchestrator.models import (
    ClassificationSignal,
    ConversationStatus,
    LoopAction,
    SignalKind,
)
from skill_bridge.orchestrator.store import InMemoryConversationStore

pytestmark = [
    allure.epic("Decision Loop"),
    allure.feature("Loop Controller"),
]

CONV = "session_0001"


def _signal(  # noqa: PLR0913
    kind: SignalKind = SignalKind.CONTINUE,
    *,
    next_phase: str | None = "run the next step",
    confidence: float = 0.8,
    has_error: bool = False,
    needs_input: bool = False,
) -> ClassificationSignal:
    return ClassificationSignal(
        kind=kind,
        next_phase=next_phase,
        confidence=confidence,
        summary="summary",
        has_error=has_error,
        needs_input=needs_input,
    )


def _controller(clock: FakeClock | None = None, **kwargs) -> LoopController:
    controller = LoopController(clock=clock or FakeClock(), **kwargs)
    assert controller.admit(CONV, chat_id="chat-1", sender_id="user-1", message="start")
    return controller


def test_continue_increments_depth_and_records_phase() -> None:
    controller = _controller()

    decision = controller.on_result(CONV, _signal(next_phase="write tests"), make_result("ok"))

    assert decision.action is LoopAction.CONTINUE
    assert decision.next_phase == "write tests"
    assert decision.loop_depth == 1
    state = controller.get_state(CONV)
    assert state is not None
    assert state.loop_depth == 1
    assert state.last_phase == "write tests"
    assert state.status is ConversationStatus.ACTIVE
    assert len(state.history) == 1
    assert state.history[0].loop_depth == 0


def test_fourth_continue_escalates_when_max_depth_is_three() -> None:
    controller = _controller(max_loop_depth=3)

    decisions = [controller.on_result(CONV, _signal()) for _ in range(3)]
    fourth = controller.on_result(CONV, _signal())

    assert [decision.action for decision in decisions] == [LoopAction.CONTINUE] * 3
    assert [decision.loop_depth for decision in decisions] == [1, 2, 3]
    assert fourth.action is LoopAction.ESCALATE
    assert fourth.reason == "max_loop_depth"
    assert fourth.status is ConversationStatus.ESCALATED
    assert fourth.loop_depth == 3


def test_low_confidence_escalates() -> None:
    controller = _controller(low_confidence_threshold=0.3)

    decision = controller.on_result(CONV, _signal(confidence=0.2))

    assert decision.action is LoopAction.ESCALATE
    assert decision.reason == "low_confidence"
    assert decision.needs_intervention is True


def test_confidence_at_threshold_continues() -> None:
    controller = _controller(low_confidence_threshold=0.3)

    decision = controller.on_result(CONV, _signal(confidence=0.3))

    assert decision.action is LoopAction.CONTINUE


def test_error_flag_escalates_even_with_next_phase() -> None:
    controller = _controller()

    decision = controller.on_result(CONV, _signal(has_error=True))

    assert decision.action is LoopAction.ESCALATE
    assert decision.reason == "has_error"


def test_needs_input_escalates() -> None:
    controller = _controller()

    decision = controller.on_result(CONV, _signal(needs_input=True))

    assert decision.reason == "needs_input"
    assert decision.describe() == "The tool is waiting for your input."


def test_missing_next_phase_escalates_as_no_signal() -> None:
    controller = _controller()

    decision = controller.on_result(
        CONV,
        _signal(SignalKind.NEEDS_INPUT, next_phase=None, confidence=0.0),
    )

    assert decision.action is LoopAction.ESCALATE
    assert decision.reason == "no_signal"


def test_failed_execution_escalates_before_classification() -> None:
    controller = _controller()

    decision = controller.on_result(CONV, _signal(), make_result("partial", exit_code=2))

    assert decision.reason == "execution_failed"


def test_completed_finishes_and_frees_the_conversation() -> None:
    controller = _controller()

    decision = controller.on_result(
        CONV,
        _signal(SignalKind.COMPLETED, next_phase=None, confidence=1.0),
    )

    assert decision.action is LoopAction.COMPLETE
    assert decision.status is ConversationStatus.COMPLETED
    assert controller.get_state(CONV) is None
    assert controller.is_in_flight(CONV) is False


def test_completed_output_asking_a_question_escalates() -> None:
    controller = _controller()

    decision = controller.on_result(
        CONV,
        _signal(SignalKind.COMPLETED, next_phase=None, confidence=1.0, needs_input=True),
    )

    assert decision.action is LoopAction.ESCALATE
    assert decision.status is ConversationStatus.ESCALATED
    assert decision.reason == "needs_input"
    assert controller.is_in_flight(CONV) is False


def test_admit_releases_guard_when_persistence_fails() -> None:
    class _FlakyPersistence:
        def __init__(self) -> None:
            self.failures = 1

        def load_state(self, conversation_id):
            if self.failures:
                self.failures -= 1
                raise OSError("database is locked")
            return None

        def save_state(self, state):
            return None

        def delete_state(self, conversation_id):
            return False

    controller = LoopController(persistence=_FlakyPersistence())

    with pytest.raises(OSError, match="database is locked"):
        controller.admit(CONV, chat_id="chat-1")

    assert controller.is_in_flight(CONV) is False
    assert controller.admit(CONV, chat_id="chat-1") is True
    assert controller.get_state(CONV) is not None


def test_unknown_conversation_raises() -> None:
    controller = LoopController()

    with pytest.raises(UnknownConversationError):
        controller.on_result("session_missing", _signal())


def test_admission_guard_rejects_second_execution_until_release() -> None:
    controller = _controller()

    assert controller.admit(CONV, chat_id="chat-1") is False
    controller.release(CONV)
    assert controller.admit(CONV, chat_id="chat-1") is True


def test_admit_after_escalation_starts_a_fresh_conversation() -> None:
    controller = _controller(max_loop_depth=1)
    controller.on_result(CONV, _signal())
    controller.on_result(CONV, _signal())
    controller.release(CONV)

    assert controller.admit(CONV, chat_id="chat-1", message="again") is True
    state = controller.get_state(CONV)
    assert state is not None
    assert state.loop_depth == 0
    assert state.message == "again"


def test_expire_idle_removes_only_stale_conversations() -> None:
    clock = FakeClock()
    store = InMemoryConversationStore()
    controller = LoopController(store=store, clock=clock, session_timeout_seconds=60)
    controller.admit("session_old", chat_id="a")
    clock.advance(50)
    controller.admit("session_new", chat_id="b")
    clock.advance(20)

    expired = controller.expire_idle()

    assert expired == ["session_old"]
    assert controller.get_state("session_old") is None
    assert controller.is_in_flight("session_old") is False
    assert controller.get_state("session_new") is not None


def test_escalate_forces_terminal_state() -> None:
    controller = _controller()

    decision = controller.escalate(CONV, "launch_failure")

    assert decision is not None
    assert decision.action is LoopAction.ESCALATE
    assert "could not be started" in decision.describe()
    assert controller.escalate(CONV, "launch_failure") is None


def test_persistence_receives_terminal_state() -> None:
    saved: dict[str, ConversationStatus] = {}

    class _Persistence:
        def load_state(self, conversation_id):
            return None

        def save_state(self, state):
            saved[state.conversation_id] = state.status

        def delete_state(self, conversation_id):
            return saved.pop(conversation_id, None) is not None

    controller = _controller(persistence=_Persistence())
    controller.on_result(CONV, _signal(SignalKind.COMPLETED, next_phase=None, confidence=1.0))

    assert saved == {CONV: ConversationStatus.COMPLETED}
