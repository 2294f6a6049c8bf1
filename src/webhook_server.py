"""Flask app receiving LINE webhooks and replying to chat commands."""
from typing import Optional

from flask import Flask, abort, request
from linebot.v3 import WebhookParser
from linebot.v3.exceptions import InvalidSignatureError
from linebot.v3.messaging import ReplyMessageRequest, TextMessage
from linebot.v3.webhooks import MessageEvent, TextMessageContent

try:
    from .logger import get_logger
except ImportError:
    from logger import get_logger

logger = get_logger(__name__)


def source_id_of(event) -> str:
    """Group, room or user id of whoever sent the event."""
    source = getattr(event, 'source', None)
    for attr in ('group_id', 'room_id', 'user_id'):
        value = getattr(source, attr, None)
        if value:
            return value
    return ''


def handle_event(event, router, messaging_api) -> Optional[str]:
    """
    Route one webhook event. Only text messages are handled.

    Returns:
        The reply text that was sent, or None
    """
    if not isinstance(event, MessageEvent) or not isinstance(event.message, TextMessageContent):
        return None

    reply = router.handle(event.message.text, source_id_of(event))
    if reply is None:
        return None
    try:
        messaging_api.reply_message(
            ReplyMessageRequest(reply_token=event.reply_token, messages=[TextMessage(text=reply)])
        )
    except Exception as e:
        logger.error(f"[WEBHOOK] Reply failed: {e}")
    return reply


def create_app(router, channel_secret: str, messaging_api) -> Flask:
    """
    Build the webhook app.

    Args:
        router: CommandRouter
        channel_secret: LINE channel secret for signature checks
        messaging_api: linebot.v3.messaging.MessagingApi used for replies
    """
    app = Flask("boss_reminder")
    parser = WebhookParser(channel_secret)

    @app.route("/", methods=["GET"])
    def home():
        return "LINE Boss Reminder bot is running."

    @app.route("/callback", methods=["POST"])
    def callback():
        signature = request.headers.get('X-Line-Signature', '')
        body = request.get_data(as_text=True)
        try:
            events = parser.parse(body, signature)
        except InvalidSignatureError:
            logger.warning("[WEBHOOK] Invalid signature - request rejected")
            abort(400)

        for event in events:
            try:
                handle_event(event, router, messaging_api)
            except Exception as e:
                logger.error(f"[WEBHOOK] Error handling event: {e}", exc_info=True)
        return "OK"

    return app
