"""Discord webhook mirror for operator notifications.

Every notification the pipeline records can also be posted to a Discord
channel when DISCORD_WEBHOOK_URL is configured. Delivery is best-effort:
failures are logged and never reach the caller, because a notification must
not fail the stage that emitted it.

Architecture Pattern:
    - Async HTTP client (httpx), 5s timeout
    - Message truncated to Discord's 2000 character limit
    - Embed color chosen from the notification kind
"""

from typing import Any

import httpx

from autopilot.utils.logging import get_logger

log = get_logger(__name__)

DISCORD_MESSAGE_LIMIT = 2000
DISCORD_FIELD_LIMIT = 1024
WEBHOOK_TIMEOUT_SECONDS = 5.0

KIND_COLORS = {
    "error": 0xFF0000,
    "approval_needed": 0xFFA500,
    "info": 0x0000FF,
    "success": 0x00FF00,
    "published": 0x00FF00,
}


def build_payload(kind: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a Discord webhook payload with one embed."""
    text = message[:DISCORD_MESSAGE_LIMIT]
    label = kind.replace("_", " ").upper()
    return {
        "content": f"**{label}**: {text}",
        "embeds": [
            {
                "title": label,
                "description": text,
                "fields": [
                    {"name": key, "value": str(value)[:DISCORD_FIELD_LIMIT], "inline": True}
                    for key, value in (details or {}).items()
                ],
                "color": KIND_COLORS.get(kind, 0x808080),
            }
        ],
    }


async def send_alert(
    webhook_url: str | None,
    kind: str,
    message: str,
    details: dict[str, Any] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Post a notification to Discord.

    Args:
        webhook_url: Target webhook; when None the call is a no-op.
        kind: Notification kind value ("error", "approval_needed", ...).
        message: Notification text (truncated to 2000 chars).
        details: Extra key/value pairs rendered as embed fields.
        client: Optional shared client (tests pass one with MockTransport).

    Returns:
        True if Discord accepted the message.
    """
    if not webhook_url:
        log.debug("discord_webhook_not_configured")
        return False

    payload = build_payload(kind, message, details)

    try:
        if client is None:
            async with httpx.AsyncClient() as owned:
                response = await owned.post(webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
        else:
            response = await client.post(webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
        response.raise_for_status()
    except httpx.TimeoutException:
        log.error("discord_webhook_timeout", webhook_url=webhook_url[:50])
        return False
    except httpx.HTTPStatusError as e:
        log.error(
            "discord_webhook_http_error",
            status_code=e.response.status_code,
            response=e.response.text[:500],
        )
        return False
    except httpx.HTTPError as e:
        log.error("discord_webhook_failed", error=str(e))
        return False

    log.info("discord_alert_sent", kind=kind, message=message[:100])
    return True
