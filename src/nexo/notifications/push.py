"""Push notification transport.

Alert code depends only on the PushTransport interface; the Expo-specific
wire format is isolated in ExpoPushTransport.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from nexo.config import AlertSettings
from nexo.http.fetcher import HttpFetcher
from nexo.logging import get_logger
from nexo.models import PushMessage, PushResult, PushTicket

logger = get_logger(__name__)


class PushTransport(ABC):
    """Abstract base class for push delivery backends."""

    @abstractmethod
    async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]:
        """Submit a batch of messages; returns one ticket per message."""
        ...

    async def notify(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> PushResult:
        """Send the same notification to every token and count the outcomes."""
        if not tokens:
            return PushResult(sent=0, failed=0)

        messages = [PushMessage(token=t, title=title, body=body, data=data or {}) for t in tokens]
        tickets = await self.send(messages)

        sent = sum(1 for ticket in tickets if ticket.ok)
        result = PushResult(sent=sent, failed=len(messages) - sent)
        logger.info("push_batch_sent", sent=result.sent, failed=result.failed)
        return result


class ExpoPushTransport(PushTransport):
    """Delivers notifications through the Expo push API."""

    def __init__(self, fetcher: HttpFetcher, settings: AlertSettings | None = None) -> None:
        self._fetcher = fetcher
        self._settings = settings or AlertSettings()

    async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]:
        if not messages:
            return []

        payload = [
            {
                "to": m.token,
                "title": m.title,
                "body": m.body,
                "data": m.data,
                "sound": "default",
                "priority": "high",
            }
            for m in messages
        ]
        response = await self._fetcher.fetch_json(
            self._settings.push_url,
            method="POST",
            body=payload,
            timeout=self._settings.push_timeout,
            label="expo push",
        )

        raw_tickets = response.get("data") if isinstance(response, dict) else None
        if not isinstance(raw_tickets, list):
            logger.error("push_send_failed", messages=len(messages))
            return [PushTicket(status="error", message="push request failed") for _ in messages]

        tickets = []
        for raw in raw_tickets:
            if not isinstance(raw, dict):
                tickets.append(PushTicket(status="error", message="malformed ticket"))
                continue
            ticket = PushTicket(
                status="ok" if raw.get("status") == "ok" else "error",
                id=raw.get("id"),
                message=raw.get("message"),
            )
            if not ticket.ok:
                details = raw.get("details") if isinstance(raw.get("details"), dict) else {}
                logger.warning("push_ticket_error", message=ticket.message, error=details.get("error"))
            tickets.append(ticket)

        # Messages without a ticket count as failed
        missing = len(messages) - len(tickets)
        if missing > 0:
            tickets.extend(PushTicket(status="error", message="no ticket") for _ in range(missing))
        return tickets[: len(messages)]
