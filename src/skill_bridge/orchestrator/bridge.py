"""Execution-and-decision loop that connects chat events to skill runs."""

from __future__ import annotations

import logging
from collections.abc import Awaitable

from skill_bridge.orchestrator.artifacts import extract_key_info
from skill_bridge.orchestrator.backend import ExecutionRequest, LaunchFailure, SkillBackend
from skill_bridge.orchestrator.classifier import DEFAULT_CLASSIFIER, OutputClassifier
from skill_bridge.orchestrator.controller import LoopController
from skill_bridge.orchestrator.events import EventKind, InboundEvent
from skill_bridge.orchestrator.models import LoopAction, LoopDecision
from skill_bridge.orchestrator.progress import ProgressMonitor
from skill_bridge.orchestrator.senders import ExecutionReport, Sender

logger = logging.getLogger(__name__)

ACK_TEXT = "🤖 Processing your request, please wait..."


class BridgeService:
    """Admit a message, run the skill, classify, decide and report; repeat on Continue."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        executor: SkillBackend,
        controller: LoopController,
        sender: Sender,
        classifier: OutputClassifier = DEFAULT_CLASSIFIER,
        progress: ProgressMonitor | None = None,
        auto_continue: bool = True,
        ack_text: str | None = ACK_TEXT,
    ) -> None:
        self.executor = executor
        self.controller = controller
        self.sender = sender
        self.classifier = classifier
        self.progress = progress
        self.auto_continue = auto_continue
        self.ack_text = ack_text

    async def start(self) -> None:
        if self.progress is not None:
            self.progress.start()
        logger.info("Bridge started auto_continue=%s", self.auto_continue)

    async def stop(self) -> None:
        if self.progress is not None:
            await self.progress.stop()
        self.controller.expire_idle()
        logger.info("Bridge stopped")

    async def handle(self, event: InboundEvent) -> LoopDecision | None:
        """Dispatch one inbound event by kind."""

        if event.kind is EventKind.MESSAGE:
            return await self.process_message(event)
        if event.kind is EventKind.MESSAGE_READ:
            logger.info("Message read message_id=%s", event.message_id)
            return None
        logger.info("Ignoring inbound event reason=%s", event.reason)
        return None

    async def process_message(self, event: InboundEvent) -> LoopDecision | None:
        """Run the message and every automatic continuation it triggers.

        Returns the last decision, or None when the message was rejected by the
        in-flight guard.
        """

        conversation_id = event.conversation_id
        if not self.controller.admit(
            conversation_id,
            chat_id=event.chat_id,
            sender_id=event.sender_id,
            message=event.text,
        ):
            return None

        logger.info(
            "Message admitted conversation=%s chat=%s text=%s",
            conversation_id,
            event.chat_id,
            event.text[:50],
        )
        try:
            if self.ack_text:
                await self._deliver(
                    "ack",
                    conversation_id,
                    self.sender.send_text(conversation_id, event.chat_id, self.ack_text),
                )
            return await self._run_loop(conversation_id, event.chat_id, event.text)
        except Exception as error:  # noqa: BLE001
            logger.exception("Message processing failed conversation=%s", conversation_id)
            decision = self.controller.escalate(conversation_id, "internal_error")
            await self._deliver(
                "error",
                conversation_id,
                self.sender.send_error(conversation_id, event.chat_id, str(error)),
            )
            return decision
        finally:
            self.controller.release(conversation_id)

    async def _run_loop(
        self,
        conversation_id: str,
        chat_id: str,
        input_text: str,
    ) -> LoopDecision | None:
        while True:
            try:
                result = await self.executor.run_with_retry(
                    ExecutionRequest(conversation_id=conversation_id, input_text=input_text),
                )
            except LaunchFailure as error:
                logger.error(
                    "Skill launch failed conversation=%s transient=%s: %s",
                    conversation_id,
                    error.transient,
                    error,
                )
                decision = self.controller.escalate(conversation_id, "launch_failure")
                await self._deliver(
                    "error",
                    conversation_id,
                    self.sender.send_error(conversation_id, chat_id, str(error)),
                )
                return decision

            signal = self.classifier.classify(result)
            decision = self.controller.on_result(conversation_id, signal, result)
            report = ExecutionReport(
                chat_id=chat_id,
                result=result,
                signal=signal,
                decision=decision,
                key_info=extract_key_info(result.stdout),
            )
            await self._deliver(
                "result",
                conversation_id,
                self.sender.send_result(conversation_id, report),
            )

            if decision.action is not LoopAction.CONTINUE or decision.next_phase is None:
                return decision
            if not self.auto_continue:
                return decision
            input_text = decision.next_phase

    async def _deliver(self, kind: str, conversation_id: str, delivery: Awaitable[None]) -> None:
        try:
            await delivery
        except Exception:  # noqa: BLE001
            logger.exception("Failed to send %s conversation=%s", kind, conversation_id)
