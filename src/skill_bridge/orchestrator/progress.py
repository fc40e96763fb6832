"""Periodic progress summaries for long-running conversations."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime

from skill_bridge.orchestrator.controller import LoopController
from skill_bridge.orchestrator.models import ConversationState, ProgressSummary
from skill_bridge.orchestrator.senders import Sender
from skill_bridge.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_PHASE_LABEL = "running"


def format_duration(seconds: float) -> str:
    """Format elapsed time as `1h 5m 3s`, `3m 12s` or `45s`."""

    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class ProgressMonitor:
    """Timer-driven sweep that reports on conversations running past the interval."""

    def __init__(
        self,
        *,
        controller: LoopController,
        sender: Sender,
        interval_seconds: float = 180,
        enabled: bool = True,
        tick_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.controller = controller
        self.sender = sender
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.tick_seconds = tick_seconds if tick_seconds is not None else interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep on the running event loop."""

        if not self.enabled:
            logger.info("Progress monitor disabled")
            return
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name="skill-bridge-progress",
        )
        logger.info("Progress monitor started interval=%ss", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Progress monitor stopped")

    async def sweep(self) -> list[ProgressSummary]:
        """Expire idle conversations, then emit one summary per due conversation.

        Sender errors never stop the sweep.
        """

        now = self._clock()
        self.controller.expire_idle(now, skip_in_flight=True)
        sent: list[ProgressSummary] = []
        for state in self.controller.active_states():
            if (now - state.last_summary_at).total_seconds() < self.interval_seconds:
                continue
            summary = ProgressSummary(
                conversation_id=state.conversation_id,
                chat_id=state.chat_id,
                current_phase=state.last_phase or DEFAULT_PHASE_LABEL,
                loop_count=state.loop_depth,
                total_time=format_duration((now - state.started_at).total_seconds()),
                last_status=last_status(state),
            )
            try:
                await self.sender.send_progress(state.conversation_id, summary)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Failed to send progress summary conversation=%s",
                    state.conversation_id,
                )
            else:
                sent.append(summary)
                logger.info(
                    "Progress summary sent conversation=%s loop_count=%d",
                    state.conversation_id,
                    state.loop_depth,
                )
            self.controller.mark_summary_sent(state.conversation_id, now)
        return sent

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                await self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("Progress sweep failed")


def last_status(state: ConversationState) -> str:
    """Outcome of the latest execution, or `running` before the first one finishes."""

    if not state.history:
        return DEFAULT_PHASE_LABEL
    return "success" if state.history[-1].success else "failed"
