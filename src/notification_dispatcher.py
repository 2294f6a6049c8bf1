"""Deliver one-shot respawn reminders with a small bounded retry."""
import re
import time
from typing import Callable, Optional

try:
    from .errors import NotificationFailure
    from .logger import get_logger
except ImportError:
    from errors import NotificationFailure
    from logger import get_logger

logger = get_logger(__name__)

DEFAULT_MESSAGE_TEMPLATE = "🕐 預告 {name} 將於 {respawn_time} 重生（剩餘 {minutes_left} 分鐘）{missed_suffix}"


class NotificationDispatcher:
    """Sends reminders through a NotificationChannel."""

    def __init__(self, channel, max_attempts: int = 3, backoff_seconds: float = 2.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the dispatcher.

        Args:
            channel: NotificationChannel with send(destination, text)
            max_attempts: Attempts per notify() call (at least 1)
            backoff_seconds: Fixed wait between attempts
            sleep: Sleep function (tests pass a no-op)
        """
        self.channel = channel
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def notify(self, destination: str, message: str) -> bool:
        """
        Deliver a message, retrying on failure.

        Failures are logged and never raised; the caller decides what to do
        with a False result.

        Returns:
            True once an attempt succeeds, False after all attempts failed
        """
        channel_name = getattr(self.channel, 'name', type(self.channel).__name__)
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.channel.send(destination, message):
                    logger.info(f"[NOTIFY] Delivered via {channel_name} (attempt {attempt}): {message[:80]}")
                    return True
                logger.warning(f"[NOTIFY] {channel_name} reported failure (attempt {attempt}/{self.max_attempts})")
            except NotificationFailure as e:
                logger.warning(f"[NOTIFY] {channel_name} attempt {attempt}/{self.max_attempts} failed: {e}")
            if attempt < self.max_attempts and self.backoff_seconds > 0:
                self._sleep(self.backoff_seconds)

        logger.error(f"[NOTIFY] Giving up after {self.max_attempts} attempt(s): {message[:80]}")
        return False

    def format_message(self, template: Optional[str] = None, **kwargs) -> str:
        """
        Fill a reminder template.

        Supported variables: {name}, {respawn_time}, {minutes_left},
        {missed_count}, {missed_suffix}. When missed_count is zero the
        suffix is empty, otherwise it reads "（過N）".

        Unknown variables leave the template unformatted (logged).
        """
        template = template or DEFAULT_MESSAGE_TEMPLATE
        missed = int(kwargs.get('missed_count') or 0)
        kwargs.setdefault('missed_count', missed)
        kwargs.setdefault('missed_suffix', f"（過{missed}）" if missed > 0 else "")

        try:
            result = template.format(**kwargs)
        except KeyError as e:
            logger.error(f"Missing template variable: {e}")
            return template
        # An empty suffix at the end of the template leaves trailing spaces
        return re.sub(r'\s+$', '', result)
