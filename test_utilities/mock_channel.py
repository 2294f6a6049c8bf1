"""Mock notification channel for testing without LINE or Discord."""
import sys
from pathlib import Path
from typing import Dict, List
from datetime import datetime

# Add src to path for logger
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from errors import NotificationFailure
from logger import get_logger

logger = get_logger(__name__)


class MockNotificationChannel:
    """Records messages instead of posting them. Can fail the first N sends."""

    name = 'mock'

    def __init__(self, fail_times: int = 0, fail_with_false: bool = False):
        """
        Args:
            fail_times: Number of send() calls that fail before sends succeed
            fail_with_false: Fail by returning False instead of raising
        """
        self.fail_times = fail_times
        self.fail_with_false = fail_with_false
        self.attempts = 0
        self.posted_messages: List[Dict] = []

    def send(self, destination: str, text: str) -> bool:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            logger.debug(f"Mock channel failing attempt {self.attempts}")
            if self.fail_with_false:
                return False
            raise NotificationFailure("mock delivery failure")

        self.posted_messages.append({
            'timestamp': datetime.now().isoformat(),
            'destination': destination,
            'message': text,
        })
        logger.info(f"MOCK POST (not actually posted) to {destination}: {text}")
        return True

    def get_posted_messages(self) -> List[Dict]:
        return self.posted_messages.copy()

    def clear_messages(self) -> None:
        self.posted_messages.clear()


class MockPersistence:
    """In-memory persistence adapter that can be told to fail."""

    def __init__(self, records=None, fail: bool = False):
        self.records = list(records or [])
        self.fail = fail
        self.saves = 0
        self.saved_snapshots: List[List] = []

    def load(self):
        return [r.copy() for r in self.records]

    def save_all(self, records):
        if self.fail:
            raise IOError("mock disk full")
        self.saves += 1
        self.records = [r.copy() for r in records]
        self.saved_snapshots.append(self.records)
