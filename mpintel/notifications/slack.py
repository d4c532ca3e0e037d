import logging

import httpx

from mpintel.config import get_config
from mpintel.notifications.status import StatusChange

logger = logging.getLogger(__name__)

_ALERT_STATUSES = {"review_needed", "failed"}


async def send_slack_notification(message: str, blocks: list[dict] | None = None) -> bool:
    """Send a notification to Slack via webhook.

    Args:
        message: The fallback text message.
        blocks: Optional list of Slack Block Kit blocks for rich formatting.

    Returns:
        bool: True if successful, False otherwise.
    """
    config = get_config()

    if not config.notifications.enabled:
        logger.debug("slack_notifications_disabled_by_config")
        return False

    if not config.notifications.slack_webhook_url:
        logger.warning("slack_webhook_url_missing: Notifications enabled but no webhook URL configured")
        return False

    payload: dict = {"text": message}
    if blocks:
        payload["blocks"] = blocks

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(config.notifications.slack_webhook_url, json=payload)
    except httpx.HTTPError as e:
        logger.error("slack_notification_error: %s", str(e))
        return False

    if response.status_code != 200:
        logger.error(
            "slack_notification_failed: status=%s response=%s",
            response.status_code,
            response.text,
        )
        return False

    logger.info("slack_notification_sent")
    return True


def format_status_message(change: StatusChange) -> str:
    name = change.file_name or str(change.document_id)
    if change.to_status == "failed":
        return f":x: Quote extraction failed for *{name}*: {change.error_message or 'unknown error'}"
    return f":mag: Quote *{name}* needs review (document {change.document_id})"


async def slack_status_subscriber(change: StatusChange) -> None:
    """Alert Slack when a document needs a human."""
    if change.to_status not in _ALERT_STATUSES:
        return
    await send_slack_notification(format_status_message(change))
