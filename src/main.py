"""Boss Respawn Reminder - application bootstrap."""
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional

from linebot.v3.messaging import ApiClient, Configuration, MessagingApi

try:
    from .logger import setup_logging, get_logger
    from .config import load_settings
    from .time_calculator import get_timezone
    from .boss_registry import BossRegistry
    from .persistence import create_persistence
    from .notification_channel import create_channel
    from .notification_dispatcher import NotificationDispatcher
    from .reconciliation import ReconciliationLoop, Ticker
    from .command_router import CommandRouter
    from .webhook_server import create_app
except ImportError:
    from logger import setup_logging, get_logger
    from config import load_settings
    from time_calculator import get_timezone
    from boss_registry import BossRegistry
    from persistence import create_persistence
    from notification_channel import create_channel
    from notification_dispatcher import NotificationDispatcher
    from reconciliation import ReconciliationLoop, Ticker
    from command_router import CommandRouter
    from webhook_server import create_app

logger = get_logger(__name__)


class BossReminderApp:
    """Wires registry, persistence, reminders and the webhook together."""

    def __init__(self, settings: Dict, messaging_api: Optional[MessagingApi] = None,
                 persistence=None, channel=None):
        """
        Initialize the application.

        Args:
            settings: Settings from config.load_settings
            messaging_api: LINE client; built from the access token when omitted
            persistence: Override the configured persistence adapter
            channel: Override the configured notification channel
        """
        self.settings = settings
        self.zone = get_timezone(settings.get('timezone'))

        if messaging_api is None and settings.get('line_channel_access_token'):
            configuration = Configuration(access_token=settings['line_channel_access_token'])
            messaging_api = MessagingApi(ApiClient(configuration))
        self.messaging_api = messaging_api

        self.persistence = persistence or create_persistence(settings, zone=self.zone)
        self.registry = BossRegistry(
            self.persistence,
            zone=self.zone,
            persistence_timeout=float(settings['persistence_timeout_seconds']),
        )
        self.registry.load()

        self.channel = channel or create_channel(settings, messaging_api=messaging_api)
        self.dispatcher = NotificationDispatcher(
            self.channel,
            max_attempts=int(settings['notify_max_attempts']),
            backoff_seconds=float(settings['notify_backoff_seconds']),
        )
        self.loop = ReconciliationLoop(
            self.registry,
            self.dispatcher,
            destination=settings.get('notify_target', ''),
            notify_lead_minutes=float(settings['notify_lead_minutes']),
            message_template=settings.get('message_template'),
            notifications_enabled=bool(settings['notifications_enabled']),
        )
        self.ticker = Ticker(self.loop.reconcile, interval_seconds=float(settings['tick_seconds']))
        self.router = CommandRouter(
            self.registry,
            loop=self.loop,
            reset_missed_on_report=bool(settings['reset_missed_on_report']),
        )

        if not settings.get('notify_target'):
            logger.warning("No notify_target configured - reminders will fail until one is set")
        logger.info(f"BossReminderApp initialized: {len(self.registry)} boss(es), "
                    f"backend={settings['storage_backend']}, channel={settings['notify_channel']}, "
                    f"timezone={self.zone}")

    def create_web_app(self):
        if not self.settings.get('line_channel_secret') or self.messaging_api is None:
            raise RuntimeError("LINE_CHANNEL_SECRET and LINE_CHANNEL_ACCESS_TOKEN must be set for the webhook")
        return create_app(self.router, self.settings['line_channel_secret'], self.messaging_api)

    def run(self) -> None:
        """Start the ticker and serve the webhook until interrupted."""
        web_app = self.create_web_app()
        self.ticker.start()
        try:
            port = int(self.settings['port'])
            logger.info(f"LINE Boss Reminder running on port {port}")
            # threaded: registry mutations are serialized by the registry lock
            web_app.run(host="0.0.0.0", port=port, threaded=True)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.ticker.stop()
        self.registry.close()
        logger.info("BossReminderApp stopped")


def main():
    """Application entry point."""
    import argparse
    parser = argparse.ArgumentParser(description='Boss Respawn Reminder')
    parser.add_argument('--settings', '-s', type=Path,
                        default=Path(os.getenv('BOSS_SETTINGS', 'data/settings.json')),
                        help='Path to settings.json')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging (verbose)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set logging level (DEBUG, INFO, WARNING, ERROR)')
    parser.add_argument('--once', action='store_true',
                        help='Run a single reconciliation tick and exit')
    args = parser.parse_args()

    log_level = logging.INFO
    if args.debug or os.getenv('BOSS_REMINDER_DEBUG', '').lower() in ('1', 'true', 'yes'):
        log_level = logging.DEBUG
    elif args.log_level:
        log_level = getattr(logging, args.log_level)
    setup_logging(log_level=log_level)

    settings = load_settings(args.settings)
    try:
        app = BossReminderApp(settings)
    except Exception as e:
        logger.error(f"Error starting application: {e}", exc_info=True)
        sys.exit(1)

    if args.once:
        report = app.loop.reconcile()
        logger.info(f"Single tick: advanced={report.advanced} notified={report.notified} failed={report.failed}")
        app.shutdown()
        return

    try:
        app.run()
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
