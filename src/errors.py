"""Exceptions raised by the reminder core.

Every error here is recoverable: callers log it or turn it into a chat reply.
"""
from typing import Optional


class BossReminderError(Exception):
    """Base class for all reminder errors."""


class ParseError(BossReminderError, ValueError):
    """Malformed duration, time zone or notify-day input."""


class UnknownBoss(BossReminderError, KeyError):
    """Operation on a boss name that is not in the registry."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unknown boss '{self.name}'"


class UnconfiguredBoss(BossReminderError):
    """Respawn reported for a boss that has no interval yet."""

    def __init__(self, name: str):
        super().__init__(f"boss '{name}' has no respawn interval configured")
        self.name = name


class PersistenceFailure(BossReminderError):
    """A durable write did not complete. In-memory state is kept."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NotificationFailure(BossReminderError):
    """A single delivery attempt through a notification channel failed."""
