"""Operator notifications (the Notifier capability port).

Notifications are inserted into the `notifications` table for the dashboard
and, when DISCORD_WEBHOOK_URL is set, mirrored to Discord.

emit() is fire-and-forget: it logs and swallows every failure, because a
stage must never fail just because its notification could not be delivered.
Deduplication (one approval or error notification per condition) is the
stage processors' job, not this service's.
"""

import uuid
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.models import Notification, NotificationKind
from autopilot.utils.alerts import send_alert
from autopilot.utils.logging import get_logger

log = get_logger(__name__)


class NotificationService:
    """Persist notifications and mirror them to Discord.

    Args:
        session_factory: Database session factory.
        webhook_url: Discord webhook; None disables the mirror.
        http_client: Optional shared httpx client for the mirror.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        webhook_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.session_factory = session_factory
        self.webhook_url = webhook_url
        self.http_client = http_client

    async def emit(
        self,
        channel_id: str,
        kind: NotificationKind,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        details = dict(metadata or {})
        try:
            async with self.session_factory() as session, session.begin():
                session.add(
                    Notification(
                        channel_id=uuid.UUID(str(channel_id)),
                        kind=kind,
                        message=message,
                        details=details,
                    )
                )
            log.info("notification_recorded", channel_id=str(channel_id), kind=kind.value)
        except (SQLAlchemyError, ValueError) as e:
            log.error(
                "notification_persist_failed",
                channel_id=str(channel_id),
                kind=kind.value,
                error=str(e),
            )

        await send_alert(self.webhook_url, kind.value, message, details, client=self.http_client)
