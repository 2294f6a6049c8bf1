"""Reconcile stored respawn times with the clock and fire pre-respawn reminders."""
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

try:
    from .errors import PersistenceFailure
    from .logger import get_logger
    from . import time_calculator
except ImportError:
    from errors import PersistenceFailure
    from logger import get_logger
    import time_calculator

logger = get_logger(__name__)

DEFAULT_NOTIFY_LEAD_MINUTES = 10
DEFAULT_TICK_SECONDS = 60


@dataclass
class ReconcileReport:
    """What a single tick did."""
    now: datetime
    advanced: List[str] = field(default_factory=list)
    notified: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def cycles_to_skip(diff_minutes: float, interval_minutes: float) -> int:
    """
    Whole intervals needed to move a past-due target strictly after now.

    diff_minutes is target - now and must be <= 0.
    """
    return int(math.floor(-diff_minutes / interval_minutes)) + 1


class ReconciliationLoop:
    """Advances missed cycles and sends one reminder per cycle inside the lead window."""

    def __init__(self, registry, dispatcher, destination: str = '',
                 notify_lead_minutes: float = DEFAULT_NOTIFY_LEAD_MINUTES,
                 message_template: Optional[str] = None,
                 notifications_enabled: bool = True):
        """
        Initialize the loop.

        Args:
            registry: BossRegistry
            dispatcher: NotificationDispatcher
            destination: Where reminders go (LINE id or Discord webhook URL)
            notify_lead_minutes: Lead window length in minutes
            message_template: Reminder template (see NotificationDispatcher.format_message)
            notifications_enabled: Initial state of the global reminder switch
        """
        self.registry = registry
        self.dispatcher = dispatcher
        self.destination = destination
        self.notify_lead_minutes = notify_lead_minutes
        self.message_template = message_template
        self._notifications_enabled = notifications_enabled
        # Ticker thread and manual runs must not interleave
        self._tick_lock = threading.Lock()

    @property
    def notifications_enabled(self) -> bool:
        return self._notifications_enabled

    def set_notifications_enabled(self, enabled: bool) -> None:
        self._notifications_enabled = bool(enabled)
        logger.info(f"[NOTIFY] Global notifications {'enabled' if enabled else 'disabled'}")

    def reconcile(self, now: Optional[datetime] = None) -> ReconcileReport:
        """
        Run one tick.

        Phase 1 rolls every past-due boss forward (under the registry lock).
        Phase 2 sends reminders for bosses whose fresh target is inside the
        lead window, outside the lock, then marks each delivered cycle.
        """
        with self._tick_lock:
            now = now or time_calculator.now_in(self.registry.zone)
            report = ReconcileReport(now=now)
            due = self._catch_up(now, report)
            for record in due:
                try:
                    self._maybe_notify(record, now, report)
                except Exception as e:
                    report.failed.append(record.name)
                    logger.error(f"[TICK] Error notifying '{record.name}': {e}", exc_info=True)

        if report.advanced or report.notified or report.failed:
            logger.info(f"[TICK] advanced={len(report.advanced)} notified={len(report.notified)} "
                        f"failed={len(report.failed)}")
        return report

    def _catch_up(self, now: datetime, report: ReconcileReport) -> list:
        """Advance past-due records; return copies of records to check for reminders."""
        candidates = []
        with self.registry.lock:
            for record in self.registry.list():
                if record.next_respawn_at is None or not record.interval_minutes:
                    continue
                try:
                    diff = time_calculator.minutes_until(record.next_respawn_at, now)
                    if diff <= 0:
                        cycles = cycles_to_skip(diff, record.interval_minutes)
                        advanced = self.registry.advance_cycles(record.name, cycles)
                        if advanced is None:
                            continue
                        report.advanced.append(record.name)
                        record = advanced
                    candidates.append(record)
                except Exception as e:
                    report.failed.append(record.name)
                    logger.error(f"[TICK] Error reconciling '{record.name}': {e}", exc_info=True)

            if report.advanced:
                try:
                    self.registry.save()
                except PersistenceFailure as e:
                    logger.error(f"[TICK] Catch-up for {len(report.advanced)} boss(es) kept in memory only: {e}")
        return candidates

    def _maybe_notify(self, record, now: datetime, report: ReconcileReport) -> None:
        diff = time_calculator.minutes_until(record.next_respawn_at, now)
        if not (0 < diff <= self.notify_lead_minutes):
            return
        if record.notified_this_cycle:
            return
        if not self._notifications_enabled:
            logger.debug(f"[NOTIFY] '{record.name}' in window but notifications are off")
            return
        if not record.notify_mask.permits(now):
            logger.debug(f"[NOTIFY] '{record.name}' in window but today is masked out")
            return

        message = self.dispatcher.format_message(
            self.message_template,
            name=record.name,
            respawn_time=time_calculator.format_clock(record.next_respawn_at, self.registry.zone),
            minutes_left=int(math.ceil(diff)),
            missed_count=record.missed_count,
        )
        if not self.dispatcher.notify(self.destination, message):
            report.failed.append(record.name)
            return

        report.notified.append(record.name)
        try:
            self.registry.mark_notified(record.name, record.next_respawn_at)
        except PersistenceFailure as e:
            logger.error(f"[TICK] Notified flag for '{record.name}' kept in memory only: {e}")


class Ticker:
    """Calls a function every interval_seconds on a daemon thread."""

    def __init__(self, callback: Callable[[], object], interval_seconds: float = DEFAULT_TICK_SECONDS):
        self.callback = callback
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self) -> None:
        """Start ticking. The first tick runs immediately."""
        if self.running:
            return
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._loop, name='reconcile-ticker', daemon=True)
        self.thread.start()
        logger.info(f"Ticker started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 5) -> None:
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=timeout)
            logger.info("Ticker stopped")

    def run_once(self) -> None:
        """Run one tick; errors are logged and swallowed so the next tick still happens."""
        try:
            self.callback()
        except Exception as e:
            logger.error(f"[TICK] Tick failed: {e}", exc_info=True)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)
