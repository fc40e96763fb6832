from __future__ import annotations

import asyncio

import allure
from conftest import FakeClock, RecordingSender, make_result

from skill_bridge.orchestrator.controller import LoopController
from skill_bridge.orchestrator.models import ClassificationSignal, ProgressSummary, SignalKind
from skill_bridge.orchestrator.progress import ProgressMonitor, format_duration
from skill_bridge.orchestrator.senders import format_progress_summary

pytestmark = [
    allure.epic("Decision Loop"),
    allure.feature("Progress Monitor"),
]


def _continue_signal(next_phase: str) -> ClassificationSignal:
    return ClassificationSignal(
        kind=SignalKind.CONTINUE,
        next_phase=next_phase,
        confidence=0.8,
        summary="",
    )


def test_format_duration_uses_largest_units() -> None:
    assert format_duration(45) == "45s"
    assert format_duration(192) == "3m 12s"
    assert format_duration(3903) == "1h 5m 3s"
    assert format_duration(-5) == "0s"


def test_sweep_reports_only_conversations_past_the_interval(fake_clock: FakeClock) -> None:
    sender = RecordingSender()
    controller = LoopController(clock=fake_clock)
    controller.admit("session_old", chat_id="chat-a")
    controller.on_result("session_old", _continue_signal("write docs"))
    fake_clock.advance(120)
    controller.admit("session_new", chat_id="chat-b")
    fake_clock.advance(70)
    monitor = ProgressMonitor(
        controller=controller,
        sender=sender,
        interval_seconds=180,
        clock=fake_clock,
    )

    sent = asyncio.run(monitor.sweep())

    assert [summary.conversation_id for summary in sent] == ["session_old"]
    summary = sent[0]
    assert summary.chat_id == "chat-a"
    assert summary.current_phase == "write docs"
    assert summary.loop_count == 1
    assert summary.total_time == "3m 10s"
    assert sender.progress == sent


def test_sweep_resets_summary_timer(fake_clock: FakeClock) -> None:
    controller = LoopController(clock=fake_clock)
    controller.admit("session_a", chat_id="chat")
    fake_clock.advance(200)
    monitor = ProgressMonitor(
        controller=controller,
        sender=RecordingSender(),
        interval_seconds=180,
        clock=fake_clock,
    )

    first = asyncio.run(monitor.sweep())
    fake_clock.advance(60)
    second = asyncio.run(monitor.sweep())

    assert len(first) == 1
    assert second == []


def test_failing_sender_does_not_stop_the_sweep(fake_clock: FakeClock) -> None:
    controller = LoopController(clock=fake_clock)
    controller.admit("session_a", chat_id="chat-a")
    controller.admit("session_b", chat_id="chat-b")
    fake_clock.advance(300)
    monitor = ProgressMonitor(
        controller=controller,
        sender=RecordingSender(fail=True),
        interval_seconds=180,
        clock=fake_clock,
    )

    sent = asyncio.run(monitor.sweep())

    assert sent == []
    for conversation_id in ("session_a", "session_b"):
        state = controller.get_state(conversation_id)
        assert state is not None
        assert state.last_summary_at == fake_clock.now


def test_disabled_monitor_never_starts() -> None:
    async def _scenario() -> bool:
        monitor = ProgressMonitor(
            controller=LoopController(),
            sender=RecordingSender(),
            enabled=False,
        )
        monitor.start()
        return monitor.running

    assert asyncio.run(_scenario()) is False


def test_started_monitor_sweeps_on_each_tick(fake_clock: FakeClock) -> None:
    async def _scenario() -> RecordingSender:
        sender = RecordingSender()
        controller = LoopController(clock=fake_clock)
        controller.admit("session_a", chat_id="chat")
        fake_clock.advance(500)
        monitor = ProgressMonitor(
            controller=controller,
            sender=sender,
            interval_seconds=180,
            tick_seconds=0.01,
            clock=fake_clock,
        )
        monitor.start()
        assert monitor.running
        for _ in range(200):
            if sender.progress:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()
        assert not monitor.running
        return sender

    sender = asyncio.run(_scenario())

    assert len(sender.progress) == 1


def test_progress_summary_text_lists_phase_loops_and_time() -> None:
    text = format_progress_summary(
        ProgressSummary(
            conversation_id="session_a",
            chat_id="chat",
            current_phase="write docs",
            loop_count=4,
            total_time="3m 12s",
        ),
    )

    assert "Current phase: write docs" in text
    assert "Loops completed: 4" in text
    assert "Total time: 3m 12s" in text


def test_sweep_expires_idle_conversations_but_keeps_running_ones(fake_clock: FakeClock) -> None:
    sender = RecordingSender()
    controller = LoopController(clock=fake_clock, session_timeout_seconds=600)
    controller.admit("session_idle", chat_id="chat-a")
    controller.on_result("session_idle", _continue_signal("write docs"))
    controller.release("session_idle")
    controller.admit("session_busy", chat_id="chat-b")
    fake_clock.advance(900)
    monitor = ProgressMonitor(
        controller=controller,
        sender=sender,
        interval_seconds=180,
        clock=fake_clock,
    )

    sent = asyncio.run(monitor.sweep())

    assert controller.get_state("session_idle") is None
    assert [summary.conversation_id for summary in sent] == ["session_busy"]


def test_summary_reports_outcome_of_latest_execution(fake_clock: FakeClock) -> None:
    controller = LoopController(clock=fake_clock)
    controller.admit("session_ok", chat_id="chat-a")
    controller.on_result(
        "session_ok",
        _continue_signal("write docs"),
        make_result("NEXT_PHASE: write docs", conversation_id="session_ok"),
    )
    controller.admit("session_new", chat_id="chat-b")
    fake_clock.advance(200)
    monitor = ProgressMonitor(
        controller=controller,
        sender=RecordingSender(),
        interval_seconds=180,
        clock=fake_clock,
    )

    sent = {summary.conversation_id: summary for summary in asyncio.run(monitor.sweep())}

    assert sent["session_ok"].last_status == "success"
    assert sent["session_new"].last_status == "running"
    assert "Last status: ✅ success" in format_progress_summary(sent["session_ok"])
    assert "Last status: ⏳ running" in format_progress_summary(sent["session_new"])
