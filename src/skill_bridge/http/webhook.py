"""Sender that posts bridge messages to an HTTP webhook."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from skill_bridge import __version__
from skill_bridge.orchestrator.models import ProgressSummary
from skill_bridge.orchestrator.senders import (
    ExecutionReport,
    format_error,
    format_execution_result,
    format_progress_summary,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = f"SkillBridge/{__version__}"


@dataclass(slots=True)
class DeliveryResult:
    """Result of one webhook delivery."""

    kind: str
    conversation_id: str
    status_code: int
    is_success: bool
    error: str | None = None


class WebhookSender:
    """POST one JSON document per outbound message; failures are logged, not raised."""

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers=base_headers,
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
        )
        self.last_delivery: DeliveryResult | None = None

    async def send_text(self, conversation_id: str, chat_id: str, text: str) -> None:
        await self._post(kind="text", conversation_id=conversation_id, chat_id=chat_id, text=text)

    async def send_result(self, conversation_id: str, report: ExecutionReport) -> None:
        await self._post(
            kind="result",
            conversation_id=conversation_id,
            chat_id=report.chat_id,
            text=format_execution_result(report),
            extra={
                "success": report.result.success,
                "exit_code": report.result.exit_code,
                "timed_out": report.result.timed_out,
                "duration_ms": report.result.duration_ms,
                "signal": report.signal.to_dict(),
                "decision": (
                    {
                        "action": report.decision.action.value,
                        "reason": report.decision.reason,
                        "status": report.decision.status.value,
                        "loop_depth": report.decision.loop_depth,
                    }
                    if report.decision is not None
                    else None
                ),
                "key_info": report.key_info.to_dict(),
            },
        )

    async def send_progress(self, conversation_id: str, summary: ProgressSummary) -> None:
        await self._post(
            kind="progress",
            conversation_id=conversation_id,
            chat_id=summary.chat_id,
            text=format_progress_summary(summary),
            extra={
                "current_phase": summary.current_phase,
                "loop_count": summary.loop_count,
                "total_time": summary.total_time,
            },
        )

    async def send_error(self, conversation_id: str, chat_id: str, message: str) -> None:
        await self._post(
            kind="error",
            conversation_id=conversation_id,
            chat_id=chat_id,
            text=format_error(message),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        *,
        kind: str,
        conversation_id: str,
        chat_id: str,
        text: str,
        extra: dict[str, object] | None = None,
    ) -> DeliveryResult:
        payload: dict[str, object] = {
            "kind": kind,
            "conversation_id": conversation_id,
            "chat_id": chat_id,
            "text": text,
        }
        if extra:
            payload.update(extra)
        try:
            response = await self._client.post(self.url, json=payload)
            delivery = DeliveryResult(
                kind=kind,
                conversation_id=conversation_id,
                status_code=response.status_code,
                is_success=response.is_success,
                error=None if response.is_success else f"HTTP {response.status_code}",
            )
        except httpx.TimeoutException:
            logger.warning("Timeout delivering %s to %s", kind, self.url)
            delivery = DeliveryResult(
                kind=kind,
                conversation_id=conversation_id,
                status_code=0,
                is_success=False,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error delivering %s to %s: %s", kind, self.url, exc)
            delivery = DeliveryResult(
                kind=kind,
                conversation_id=conversation_id,
                status_code=0,
                is_success=False,
                error=str(exc),
            )
        if delivery.error is not None and delivery.status_code:
            logger.warning("Webhook rejected %s: %s", kind, delivery.error)
        self.last_delivery = delivery
        return delivery
