"""
Email notifier and post-commit dispatcher.

Notifications are best-effort: they are sent only after the business
transaction has committed, and a failed send is logged and parked in the
dead letter queue for an administrator to retry. Nothing here raises into
the caller.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tripshare.app.core.clock import Clock, utcnow
from tripshare.app.core.config import Settings
from tripshare.app.models.dlq import DeadLetterQueue, DLQStatus

logger = logging.getLogger(__name__)

SEND_EMAIL_TASK = "send_email"
MAX_RETRIES = 5


@dataclass
class OutboundEmail:
    to: List[str]
    subject: str
    html_body: str
    text_body: str
    cc: List[str] = field(default_factory=list)
    category: str = "general"
    trip_id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "OutboundEmail":
        return cls(**payload)


class Notifier(Protocol):
    def is_configured(self) -> bool:
        ...

    async def send(
        self,
        to: List[str],
        subject: str,
        html_body: str,
        text_body: str,
        cc: Optional[List[str]] = None,
    ) -> None:
        ...


class MailAPINotifier:
    """
    Sends mail by posting JSON to a transactional mail API.

    The payload follows the Resend ``/emails`` shape (``from``, ``to``,
    ``cc``, ``subject``, ``html``, ``text``). Without an API key the
    notifier reports itself unconfigured and the dispatcher only logs.

    Args:
        api_url: Send endpoint
        api_key: Bearer key
        sender: ``From`` address
        timeout: Per-request timeout in seconds
        client: Optional shared ``httpx.AsyncClient``
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        sender: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "MailAPINotifier":
        return cls(
            api_url=settings.mail_api_url,
            api_key=settings.mail_api_key,
            sender=settings.email_from,
            timeout=settings.mail_timeout_seconds,
        )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_url)

    async def send(self, to, subject, html_body, text_body, cc=None) -> None:
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": list(to),
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        if cc:
            payload["cc"] = list(cc)
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self.client is not None:
            response = await self.client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        # Non-2xx raises httpx.HTTPStatusError, which the dispatcher dead-letters
        response.raise_for_status()


class NotificationDispatcher:
    """
    Delivers queued emails once a transaction has committed.

    Args:
        notifier: Transport used for delivery
        db: Session used to record failed deliveries in the dead letter queue
    """

    def __init__(self, notifier: Notifier, db: AsyncSession, clock: Clock = utcnow):
        self.notifier = notifier
        self.db = db
        self.clock = clock

    async def dispatch(self, messages: Iterable[OutboundEmail]) -> List[OutboundEmail]:
        """
        Send each message, returning the ones that were delivered.

        Unconfigured transports only log the message. Failures are written to
        the dead letter queue.
        """
        delivered = []
        for message in messages:
            if not message.to:
                logger.warning("Dropping '%s' email with no recipients", message.category,
                               extra={"trip_id": message.trip_id})
                continue

            if not self.notifier.is_configured():
                logger.info(
                    "Email transport not configured, skipping '%s' to %s",
                    message.subject, ", ".join(message.to),
                    extra={"category": message.category, "trip_id": message.trip_id},
                )
                continue

            try:
                await self.notifier.send(
                    message.to, message.subject, message.html_body, message.text_body, message.cc
                )
            except Exception as e:
                logger.error(
                    "Failed to send '%s' email: %s", message.category, e,
                    extra={"trip_id": message.trip_id, "to": message.to},
                )
                await self._dead_letter(message, e)
                continue

            logger.info("Sent '%s' email to %s", message.category, ", ".join(message.to),
                        extra={"trip_id": message.trip_id})
            delivered.append(message)
        return delivered

    async def retry(self, item: DeadLetterQueue) -> bool:
        """
        Resend a dead-lettered email.

        Returns:
            True if it was delivered this time
        """
        if not self.notifier.is_configured():
            logger.warning("Email transport not configured, DLQ item %s left as is", item.id)
            return False

        message = OutboundEmail.from_payload(item.payload or {})
        item.retry_count += 1
        item.last_retry_at = self.clock()
        try:
            await self.notifier.send(
                message.to, message.subject, message.html_body, message.text_body, message.cc
            )
        except Exception as e:
            logger.warning("Retry %s of DLQ item %s failed: %s", item.retry_count, item.id, e)
            item.error_message = str(e)
            item.status = DLQStatus.ARCHIVED if item.retry_count >= MAX_RETRIES else DLQStatus.FAILED
            await self.db.commit()
            return False

        item.status = DLQStatus.PROCESSED
        await self.db.commit()
        return True

    async def _dead_letter(self, message: OutboundEmail, error: Exception) -> None:
        # Own session: a failed write must not expire the caller's loaded rows
        async with AsyncSession(bind=self.db.bind, expire_on_commit=False) as session:
            try:
                session.add(DeadLetterQueue(
                    task_name=SEND_EMAIL_TASK,
                    error_message=str(error) or type(error).__name__,
                    payload=message.to_payload(),
                    status=DLQStatus.FAILED,
                    retry_count=0,
                ))
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception("Could not dead-letter '%s' email", message.category)
