"""Manage the boss registry - the in-memory table of respawn timers."""
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

try:
    from .errors import ParseError, PersistenceFailure, UnconfiguredBoss, UnknownBoss
    from .logger import get_logger
    from . import time_calculator
except ImportError:
    from errors import ParseError, PersistenceFailure, UnconfiguredBoss, UnknownBoss
    from logger import get_logger
    import time_calculator

logger = get_logger(__name__)

DEFAULT_PERSISTENCE_TIMEOUT = 10.0

# ISO weekday numbers (Monday=1 .. Sunday=7)
WEEKDAY_ALIASES = {
    '1': 1, 'mon': 1, 'monday': 1, '一': 1,
    '2': 2, 'tue': 2, 'tues': 2, 'tuesday': 2, '二': 2,
    '3': 3, 'wed': 3, 'wednesday': 3, '三': 3,
    '4': 4, 'thu': 4, 'thur': 4, 'thurs': 4, 'thursday': 4, '四': 4,
    '5': 5, 'fri': 5, 'friday': 5, '五': 5,
    '6': 6, 'sat': 6, 'saturday': 6, '六': 6,
    '7': 7, 'sun': 7, 'sunday': 7, '日': 7, '天': 7,
}


@dataclass(frozen=True)
class NotifyMask:
    """Which weekdays allow a reminder. days=None means every day."""
    days: Optional[FrozenSet[int]] = None

    ALL_TEXT = 'ALL'
    NONE_TEXT = 'NONE'

    @classmethod
    def every_day(cls) -> 'NotifyMask':
        return cls(None)

    @classmethod
    def no_days(cls) -> 'NotifyMask':
        return cls(frozenset())

    @classmethod
    def parse(cls, text: Optional[str]) -> 'NotifyMask':
        """
        Parse the stored/user form of a mask.

        Accepts ALL, NONE, or a comma/space separated list of weekdays given as
        ISO numbers, English names, or Chinese day characters.

        Raises:
            ParseError: for an unknown weekday token
        """
        raw = (text or '').strip()
        if not raw or raw.upper() in (cls.ALL_TEXT, 'EVERY', '每天'):
            return cls.every_day()
        if raw.upper() in (cls.NONE_TEXT, 'OFF', '無'):
            return cls.no_days()

        tokens = [t for t in raw.replace('，', ',').replace(' ', ',').split(',') if t]
        days = set()
        for token in tokens:
            key = token.strip().lower()
            if key in WEEKDAY_ALIASES:
                days.add(WEEKDAY_ALIASES[key])
                continue
            # Chinese day characters may be written together, e.g. "一三五"
            if key and all(ch in WEEKDAY_ALIASES for ch in key) and not key.isdigit():
                days.update(WEEKDAY_ALIASES[ch] for ch in key)
                continue
            raise ParseError(f"unknown weekday '{token}'")
        return cls(frozenset(days))

    def permits(self, when: datetime) -> bool:
        """True if a reminder may fire on the weekday of `when`."""
        if self.days is None:
            return True
        return when.isoweekday() in self.days

    def to_text(self) -> str:
        if self.days is None:
            return self.ALL_TEXT
        if not self.days:
            return self.NONE_TEXT
        return ','.join(str(d) for d in sorted(self.days))


@dataclass
class BossRecord:
    """One tracked boss."""
    name: str
    interval_minutes: Optional[float] = None
    next_respawn_at: Optional[datetime] = None
    notified_this_cycle: bool = False
    missed_count: int = 0
    notify_mask: NotifyMask = field(default_factory=NotifyMask.every_day)

    def copy(self) -> 'BossRecord':
        return replace(self)

    def to_row(self) -> Dict:
        """Backend-agnostic persisted layout."""
        return {
            'name': self.name,
            'interval_minutes': self.interval_minutes,
            'next_respawn_at': time_calculator.to_iso(self.next_respawn_at),
            'notified_this_cycle': bool(self.notified_this_cycle),
            'notify_mask': self.notify_mask.to_text(),
            'missed_count': int(self.missed_count),
        }

    @classmethod
    def from_row(cls, row: Dict, zone=None) -> 'BossRecord':
        """
        Build a record from a persisted row. Values may be strings (sheets, sqlite).

        Bad timestamp, interval or mask values are logged and replaced with
        "no timer", "unconfigured" and ALL.

        Raises:
            ParseError: if the row has no name
        """
        name = str(row.get('name') or '').strip()
        if not name:
            raise ParseError("row without a boss name")

        interval = row.get('interval_minutes')
        if interval in (None, ''):
            interval = None
        else:
            try:
                interval = float(interval)
            except (TypeError, ValueError):
                logger.warning(f"[LOAD] '{name}': invalid interval {interval!r} - loaded unconfigured")
                interval = None
            if interval is not None and interval.is_integer():
                interval = int(interval)
            if interval is not None and interval <= 0:
                interval = None

        notified = row.get('notified_this_cycle')
        if isinstance(notified, str):
            notified = notified.strip().upper() in ('TRUE', '1', 'YES')

        try:
            missed = int(row.get('missed_count') or 0)
        except (TypeError, ValueError):
            missed = 0

        # Hand-edited values fall back rather than dropping the boss
        try:
            next_respawn_at = time_calculator.from_iso(row.get('next_respawn_at'), zone)
        except ParseError as e:
            logger.warning(f"[LOAD] '{name}': {e} - loaded without a respawn timer")
            next_respawn_at = None
        try:
            mask = NotifyMask.parse(row.get('notify_mask'))
        except ParseError as e:
            logger.warning(f"[LOAD] '{name}': {e} - notify days reset to ALL")
            mask = NotifyMask.every_day()

        return cls(
            name=name,
            interval_minutes=interval,
            next_respawn_at=next_respawn_at,
            notified_this_cycle=bool(notified),
            missed_count=max(0, missed),
            notify_mask=mask,
        )


class BossRegistry:
    """Owns every BossRecord. All mutations are serialized and persisted."""

    def __init__(self, persistence=None, zone=None,
                 persistence_timeout: float = DEFAULT_PERSISTENCE_TIMEOUT):
        """
        Initialize the registry.

        Args:
            persistence: PersistenceAdapter (load/save_all); None keeps state in memory only
            zone: pytz timezone used for new timestamps
            persistence_timeout: Seconds to wait for a save before reporting failure
        """
        self.persistence = persistence
        self.zone = zone or time_calculator.get_timezone()
        self.persistence_timeout = persistence_timeout
        self.lock = threading.RLock()
        self._records: Dict[str, BossRecord] = {}
        # One worker keeps writes ordered; a hung write only delays later writes
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix='registry-save')

    def load(self) -> int:
        """Replace the registry contents with what the adapter holds."""
        if self.persistence is None:
            return 0
        records = self.persistence.load()
        with self.lock:
            self._records = {}
            for record in records:
                self._records[self._key(record.name)] = record
            count = len(self._records)
        scheduled = sum(1 for r in records if r.next_respawn_at is not None)
        logger.info(f"[LOAD] Registry loaded {count} boss(es), {scheduled} with a respawn timer")
        return count

    def close(self) -> None:
        self._writer.shutdown(wait=True)

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def _find(self, name: str) -> Optional[BossRecord]:
        return self._records.get(self._key(name))

    def _persist(self) -> None:
        """Write the full registry. Must be called with the lock held."""
        if self.persistence is None:
            return
        snapshot = [r.copy() for r in self._records.values()]
        future = self._writer.submit(self.persistence.save_all, snapshot)
        try:
            future.result(timeout=self.persistence_timeout)
        except FutureTimeoutError as e:
            logger.error(f"[SAVE] Timed out after {self.persistence_timeout}s writing {len(snapshot)} boss(es)")
            raise PersistenceFailure("save timed out", e) from e
        except PersistenceFailure:
            raise
        except Exception as e:
            logger.error(f"[SAVE] Error writing registry: {e}", exc_info=True)
            raise PersistenceFailure(str(e), e) from e

    def exists(self, name: str) -> bool:
        with self.lock:
            return self._find(name) is not None

    def get(self, name: str) -> Optional[BossRecord]:
        """Copy of a record, or None."""
        with self.lock:
            record = self._find(name)
            return record.copy() if record else None

    def list(self) -> List[BossRecord]:
        """All records by ascending next respawn; records without a timer go last."""
        with self.lock:
            records = [r.copy() for r in self._records.values()]

        def sort_key(record: BossRecord):
            if record.next_respawn_at is None:
                return (1, 0.0, record.name.lower())
            return (0, record.next_respawn_at.timestamp(), record.name.lower())

        return sorted(records, key=sort_key)

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)

    def upsert_interval(self, name: str, minutes: float) -> BossRecord:
        """
        Create a boss or change its respawn interval.

        The current next_respawn_at is left untouched.

        Raises:
            ParseError: if minutes is not positive or the name is empty
            PersistenceFailure: after the in-memory change, if saving failed
        """
        if not name or not name.strip():
            raise ParseError("boss name is required")
        if minutes is None or minutes <= 0:
            raise ParseError(f"interval must be positive, got {minutes}")

        with self.lock:
            record = self._find(name)
            if record is None:
                record = BossRecord(name=name.strip(), interval_minutes=minutes)
                self._records[self._key(name)] = record
                logger.info(f"[ADD] Added boss '{record.name}' with interval {minutes} min")
            else:
                old = record.interval_minutes
                record.interval_minutes = minutes
                logger.info(f"[INTERVAL] '{record.name}': {old} -> {minutes} min")
            result = record.copy()
            self._persist()
        return result

    def record_respawn_in(self, name: str, hours: int, minutes: int,
                          reset_missed: bool = False,
                          now: Optional[datetime] = None) -> BossRecord:
        """
        Record that a boss will respawn hours:minutes from now.

        Raises:
            UnconfiguredBoss: no such boss, or it has no interval
            PersistenceFailure: after the in-memory change, if saving failed
        """
        with self.lock:
            record = self._find(name)
            if record is None or not record.interval_minutes:
                raise UnconfiguredBoss(name)

            target = time_calculator.add_to_now(hours, minutes, self.zone, now=now)
            record.next_respawn_at = target
            record.notified_this_cycle = False
            if reset_missed:
                record.missed_count = 0
            logger.info(f"[RESPAWN] '{record.name}' respawns at {target.isoformat()} "
                        f"(in {hours}h {minutes}m, missed={record.missed_count})")
            result = record.copy()
            self._persist()
        return result

    def record_death_at(self, name: str, hour: int, minute: int,
                        reset_missed: bool = False,
                        now: Optional[datetime] = None) -> BossRecord:
        """
        Record that a boss was killed at hour:minute (today, or yesterday if
        that time has not come yet). The next respawn is death + interval.

        A respawn already in the past is left for the reconciliation loop to
        roll forward.

        Raises:
            UnconfiguredBoss: no such boss, or it has no interval
            PersistenceFailure: after the in-memory change, if saving failed
        """
        with self.lock:
            record = self._find(name)
            if record is None or not record.interval_minutes:
                raise UnconfiguredBoss(name)

            died_at = time_calculator.last_occurrence(hour, minute, self.zone, now=now)
            target = time_calculator.shift(died_at, record.interval_minutes, self.zone)
            record.next_respawn_at = target
            record.notified_this_cycle = False
            if reset_missed:
                record.missed_count = 0
            logger.info(f"[DEATH] '{record.name}' died at {died_at.isoformat()}, "
                        f"respawns at {target.isoformat()} (missed={record.missed_count})")
            result = record.copy()
            self._persist()
        return result

    def set_notify_mask(self, name: str, mask: NotifyMask) -> BossRecord:
        """
        Raises:
            UnknownBoss: no such boss
            PersistenceFailure: after the in-memory change, if saving failed
        """
        with self.lock:
            record = self._find(name)
            if record is None:
                raise UnknownBoss(name)
            record.notify_mask = mask
            logger.info(f"[MASK] '{record.name}' notify days -> {mask.to_text()}")
            result = record.copy()
            self._persist()
        return result

    def delete(self, name: str) -> bool:
        """
        Remove a boss. Returns False if it did not exist.

        Raises:
            PersistenceFailure: after the in-memory change, if saving failed
        """
        with self.lock:
            record = self._records.pop(self._key(name), None)
            if record is None:
                logger.warning(f"Attempted to delete non-existent boss: {name}")
                return False
            logger.info(f"[DELETE] Removed boss '{record.name}'")
            self._persist()
        return True

    def advance_cycles(self, name: str, cycles: int) -> Optional[BossRecord]:
        """
        Roll a boss forward by whole intervals it was not reported for.

        Each cycle counts as missed; the notification flag is cleared.
        Does not persist - the reconciliation loop saves once per tick.
        """
        if cycles <= 0:
            raise ValueError("cycles must be positive")
        with self.lock:
            record = self._find(name)
            if record is None or record.next_respawn_at is None or not record.interval_minutes:
                return None
            old = record.next_respawn_at
            record.next_respawn_at = time_calculator.shift(old, cycles * record.interval_minutes, self.zone)
            record.notified_this_cycle = False
            record.missed_count += cycles
            logger.info(f"[CATCH-UP] '{record.name}': {old.isoformat()} -> "
                        f"{record.next_respawn_at.isoformat()} (+{cycles} missed, total {record.missed_count})")
            return record.copy()

    def mark_notified(self, name: str, expected_target: datetime) -> bool:
        """
        Flag the current cycle as notified.

        Skipped if the boss was removed or its target moved since the reminder
        was prepared.

        Raises:
            PersistenceFailure: after the in-memory change, if saving failed
        """
        with self.lock:
            record = self._find(name)
            if record is None or record.next_respawn_at != expected_target:
                logger.debug(f"[NOTIFY] '{name}' changed while notifying - not marking")
                return False
            record.notified_this_cycle = True
            self._persist()
        return True

    def save(self) -> None:
        """Persist the current state (used after a batch of reconciliation changes)."""
        with self.lock:
            self._persist()
