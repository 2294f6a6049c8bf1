"""Notification channels - deliver reminder text to LINE or a Discord webhook."""
import re
from typing import Optional

import requests
from linebot.v3.messaging import (
    ApiClient,
    Configuration,
    MessagingApi,
    PushMessageRequest,
    TextMessage,
)

try:
    from .errors import NotificationFailure
    from .logger import get_logger
except ImportError:
    from errors import NotificationFailure
    from logger import get_logger

logger = get_logger(__name__)

# LINE rejects text messages longer than this
LINE_TEXT_LIMIT = 5000
# Discord rejects webhook content longer than this
DISCORD_CONTENT_LIMIT = 2000


def _mask_destination(destination: str) -> str:
    """Return a safe string for logging (avoid exposing full webhook URLs or ids)."""
    if not destination or not isinstance(destination, str):
        return "(empty)"
    s = destination.strip()
    if len(s) <= 20:
        return "****" + s[-4:]
    return f"{s[:30]}...{s[-4:]}" if len(s) > 40 else f"{s[:15]}...{s[-4:]}"


class NotificationChannel:
    """Interface: send(destination, text) -> bool."""

    name = 'channel'

    def send(self, destination: str, text: str) -> bool:
        raise NotImplementedError


class DiscordWebhookChannel(NotificationChannel):
    """Posts reminder text to a Discord webhook URL."""

    name = 'discord'
    WEBHOOK_PATTERN = re.compile(r"/webhooks/(\d+)")

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Args:
            timeout: Seconds before an HTTP request is abandoned
            session: Optional requests session (tests inject one)
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, destination: str, text: str) -> bool:
        """
        Post to the webhook.

        Args:
            destination: Discord webhook URL
            text: Message content

        Raises:
            NotificationFailure: no URL, or the request failed
        """
        url = (destination or '').strip()
        if not url:
            raise NotificationFailure("no Discord webhook URL configured")
        if not self.WEBHOOK_PATTERN.search(url):
            logger.warning(f"[DISCORD] Destination does not look like a webhook URL: {_mask_destination(url)}")
        try:
            logger.debug(f"[DISCORD] Sending to webhook {_mask_destination(url)}")
            response = self.session.post(
                url,
                json={'content': text[:DISCORD_CONTENT_LIMIT]},
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotificationFailure(f"Discord webhook error: {e}") from e
        logger.info(f"[DISCORD] Message sent to webhook {_mask_destination(url)}")
        return True


class LinePushChannel(NotificationChannel):
    """Pushes reminder text to a LINE user, group or room id."""

    name = 'line'

    def __init__(self, channel_access_token: Optional[str] = None,
                 messaging_api: Optional[MessagingApi] = None, timeout: float = 10.0):
        """
        Args:
            channel_access_token: LINE Messaging API token (ignored when messaging_api is given)
            messaging_api: Prebuilt MessagingApi client
            timeout: Seconds before a push request is abandoned
        """
        self.timeout = timeout
        if messaging_api is None:
            if not channel_access_token:
                raise ValueError("LINE channel access token is required")
            configuration = Configuration(access_token=channel_access_token)
            messaging_api = MessagingApi(ApiClient(configuration))
        self.messaging_api = messaging_api

    def send(self, destination: str, text: str) -> bool:
        """
        Raises:
            NotificationFailure: no destination, or the push failed
        """
        target = (destination or '').strip()
        if not target:
            raise NotificationFailure("no LINE push target configured")
        try:
            self.messaging_api.push_message(
                PushMessageRequest(to=target, messages=[TextMessage(text=text[:LINE_TEXT_LIMIT])]),
                _request_timeout=self.timeout,
            )
        except Exception as e:
            raise NotificationFailure(f"LINE push error: {e}") from e
        logger.info(f"[LINE] Pushed message to {_mask_destination(target)}")
        return True


def create_channel(settings, messaging_api: Optional[MessagingApi] = None) -> NotificationChannel:
    """Build the channel named by settings['notify_channel']."""
    kind = (settings.get('notify_channel') or 'line').strip().lower()
    if kind == 'discord':
        return DiscordWebhookChannel(timeout=float(settings.get('notify_timeout_seconds', 10)))
    if kind == 'line':
        return LinePushChannel(settings.get('line_channel_access_token'), messaging_api=messaging_api,
                               timeout=float(settings.get('notify_timeout_seconds', 10)))
    raise ValueError(f"unknown notify_channel '{kind}'")
