"""Test boss registry operations."""
import sys
import io
from datetime import datetime, timedelta
from pathlib import Path

# Fix Windows console encoding (only if not already wrapped)
if sys.platform == 'win32':
    if not isinstance(sys.stdout, io.TextIOWrapper) or (hasattr(sys.stdout, 'encoding') and sys.stdout.encoding != 'utf-8'):
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    if not isinstance(sys.stderr, io.TextIOWrapper) or (hasattr(sys.stderr, 'encoding') and sys.stderr.encoding != 'utf-8'):
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

# Add project root and src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "src"))
sys.path.insert(0, str(Path(__file__).parent))

import pytz

import boss_registry
from boss_registry import BossRecord, BossRegistry, NotifyMask
from errors import ParseError, PersistenceFailure, UnconfiguredBoss, UnknownBoss
from mock_channel import MockPersistence

TAIPEI = pytz.timezone('Asia/Taipei')
NOW = TAIPEI.localize(datetime(2026, 3, 4, 20, 0))  # a Wednesday


def test_boss_registry():
    """Create, report, list and delete bosses."""
    print("Testing Boss Registry...")
    print("=" * 60)

    persistence = MockPersistence()
    registry = BossRegistry(persistence, zone=TAIPEI)

    registry.upsert_interval("A", 8 * 60)
    assert registry.exists("a"), "lookups are case-insensitive"
    assert persistence.saves == 1, "every mutation is persisted"
    print("[OK] Interval configured")

    record = registry.record_respawn_in("A", 1, 30, now=NOW)
    assert record.next_respawn_at == NOW + timedelta(minutes=90)
    assert record.notified_this_cycle is False
    assert persistence.saves == 2
    assert persistence.records[0].next_respawn_at == NOW + timedelta(minutes=90)
    print("[OK] Respawn recorded at now + 90min")

    # Changing the interval keeps the pending target
    registry.upsert_interval("A", 6 * 60)
    assert registry.get("A").next_respawn_at == NOW + timedelta(minutes=90)
    assert registry.get("A").interval_minutes == 360
    print("[OK] Interval update keeps next respawn")

    registry.upsert_interval("B", 60)
    registry.record_respawn_in("B", 0, 10, now=NOW)
    registry.upsert_interval("C", 30)
    names = [r.name for r in registry.list()]
    assert names == ["B", "A", "C"], f"expected soonest first, timerless last, got {names}"
    print("[OK] List ordered by next respawn")

    assert registry.delete("B") is True
    assert registry.delete("B") is False
    assert not registry.exists("B")
    print("[OK] Delete works")

    # Copies do not leak into the registry
    copy = registry.get("A")
    copy.missed_count = 99
    assert registry.get("A").missed_count == 0
    print("[OK] get() returns a copy")

    registry.close()
    print("\n" + "=" * 60)
    print("All tests passed!")


def test_respawn_requires_interval():
    registry = BossRegistry(MockPersistence(), zone=TAIPEI)
    try:
        registry.record_respawn_in("Ghost", 1, 0, now=NOW)
        raise AssertionError("unknown boss should be unconfigured")
    except UnconfiguredBoss as e:
        assert e.name == "Ghost"
    assert not registry.exists("Ghost"), "no state mutated"

    for bad in (0, -5, None):
        try:
            registry.upsert_interval("A", bad)
            raise AssertionError(f"interval {bad} should be rejected")
        except ParseError:
            pass
    assert len(registry) == 0
    print("[OK] Unconfigured and invalid input rejected")


def test_reset_missed_on_report():
    registry = BossRegistry(MockPersistence(), zone=TAIPEI)
    registry.upsert_interval("A", 60)
    registry.record_respawn_in("A", 0, 0, now=NOW - timedelta(hours=3))
    registry.advance_cycles("A", 3)
    assert registry.get("A").missed_count == 3

    registry.record_respawn_in("A", 0, 30, now=NOW)
    assert registry.get("A").missed_count == 3, "kept unless explicitly reset"
    registry.record_respawn_in("A", 0, 30, reset_missed=True, now=NOW)
    assert registry.get("A").missed_count == 0
    print("[OK] missed_count reset only on request")


def test_persistence_failure_keeps_memory_state():
    persistence = MockPersistence(fail=True)
    registry = BossRegistry(persistence, zone=TAIPEI)
    try:
        registry.upsert_interval("A", 60)
        raise AssertionError("save failure should surface")
    except PersistenceFailure:
        pass
    assert registry.get("A").interval_minutes == 60, "in-memory change retained"

    # The next successful mutation writes the whole registry
    persistence.fail = False
    registry.upsert_interval("B", 30)
    assert sorted(r.name for r in persistence.records) == ["A", "B"]
    print("[OK] Persistence failure is surfaced and retried with full state")


def test_persistence_timeout():
    import threading

    release = threading.Event()

    class HangingPersistence(MockPersistence):
        def save_all(self, records):
            release.wait(5)

    registry = BossRegistry(HangingPersistence(), zone=TAIPEI, persistence_timeout=0.05)
    try:
        registry.upsert_interval("A", 60)
        raise AssertionError("hung save should time out")
    except PersistenceFailure:
        pass
    assert registry.exists("A")
    release.set()
    registry.close()
    print("[OK] Hung save bounded by timeout")


def test_notify_mask():
    assert NotifyMask.parse("ALL").permits(NOW)
    assert NotifyMask.parse("").days is None
    assert not NotifyMask.parse("NONE").permits(NOW)

    mask = NotifyMask.parse("一三五")
    assert mask.days == frozenset({1, 3, 5})
    assert mask.permits(NOW), "Wednesday allowed"
    assert not mask.permits(NOW + timedelta(days=1))
    assert mask.to_text() == "1,3,5"
    assert NotifyMask.parse("mon, Fri").days == frozenset({1, 5})
    assert NotifyMask.parse("6,7").to_text() == "6,7"
    assert NotifyMask.parse(mask.to_text()) == mask

    try:
        NotifyMask.parse("someday")
        raise AssertionError("unknown weekday should raise")
    except ParseError:
        pass

    registry = BossRegistry(MockPersistence(), zone=TAIPEI)
    try:
        registry.set_notify_mask("Nobody", mask)
        raise AssertionError("missing boss should raise")
    except UnknownBoss:
        pass
    registry.upsert_interval("A", 60)
    assert registry.set_notify_mask("A", mask).notify_mask == mask
    print("[OK] Notify mask parsing and permits")


def test_record_rows():
    record = BossRecord(name="A", interval_minutes=480,
                        next_respawn_at=NOW, notified_this_cycle=True, missed_count=2,
                        notify_mask=NotifyMask.parse("1,3"))
    row = record.to_row()
    assert row == {
        'name': 'A',
        'interval_minutes': 480,
        'next_respawn_at': NOW.isoformat(),
        'notified_this_cycle': True,
        'notify_mask': '1,3',
        'missed_count': 2,
    }
    assert BossRecord.from_row(row, TAIPEI) == record

    # Spreadsheet-style strings
    loaded = BossRecord.from_row({
        'name': 'B', 'interval_minutes': '90', 'next_respawn_at': '',
        'notified_this_cycle': 'TRUE', 'notify_mask': 'ALL', 'missed_count': '',
    }, TAIPEI)
    assert loaded.interval_minutes == 90
    assert loaded.next_respawn_at is None
    assert loaded.notified_this_cycle is True
    assert loaded.missed_count == 0

    try:
        BossRecord.from_row({'name': ''}, TAIPEI)
        raise AssertionError("nameless row should raise")
    except ParseError:
        pass
    print("[OK] Row conversion")


def test_load_from_persistence():
    seeded = [BossRecord(name="A", interval_minutes=60, next_respawn_at=NOW)]
    registry = BossRegistry(MockPersistence(seeded), zone=TAIPEI)
    assert registry.load() == 1
    assert registry.get("A").next_respawn_at == NOW
    assert boss_registry.BossRegistry(None, zone=TAIPEI).load() == 0
    print("[OK] Registry loads from adapter")


def test_new_report_rearms_notification():
    registry = BossRegistry(MockPersistence(), zone=TAIPEI)
    registry.upsert_interval("A", 60)
    first = registry.record_respawn_in("A", 0, 10, now=NOW)
    assert registry.mark_notified("A", first.next_respawn_at) is True
    assert registry.get("A").notified_this_cycle is True

    second = registry.record_respawn_in("A", 0, 45, now=NOW)
    assert second.notified_this_cycle is False
    assert registry.get("A").notified_this_cycle is False

    # A reminder prepared for the old target must not flag the new cycle
    assert registry.mark_notified("A", first.next_respawn_at) is False
    assert registry.get("A").notified_this_cycle is False

    registry.delete("A")
    assert registry.mark_notified("A", second.next_respawn_at) is False
    print("[OK] New report re-arms the reminder; stale marks ignored")


def test_record_death_at():
    registry = BossRegistry(MockPersistence(), zone=TAIPEI)
    registry.upsert_interval("A", 480)

    record = registry.record_death_at("A", 10, 30, now=NOW)
    assert record.next_respawn_at == TAIPEI.localize(datetime(2026, 3, 4, 18, 30))
    assert record.notified_this_cycle is False

    # 21:00 has not happened yet today, so the kill was yesterday evening
    record = registry.record_death_at("A", 21, 0, now=NOW)
    assert record.next_respawn_at == TAIPEI.localize(datetime(2026, 3, 4, 5, 0))
    assert record.next_respawn_at < NOW

    registry.advance_cycles("A", 2)
    registry.record_death_at("A", 19, 0, reset_missed=True, now=NOW)
    assert registry.get("A").missed_count == 0

    try:
        registry.record_death_at("Nobody", 10, 0, now=NOW)
        raise AssertionError("unknown boss should raise")
    except UnconfiguredBoss:
        pass
    print("[OK] Death time recorded as death + interval")


def test_row_fallbacks():
    row = BossRecord(name="A", interval_minutes=60, next_respawn_at=NOW).to_row()
    row['notify_mask'] = "Mon,Fryday"
    loaded = BossRecord.from_row(row, TAIPEI)
    assert loaded.notify_mask == NotifyMask.every_day()
    assert loaded.next_respawn_at == NOW

    row = BossRecord(name="A", interval_minutes=60).to_row()
    row['next_respawn_at'] = "next tuesday"
    row['interval_minutes'] = "eight hours"
    loaded = BossRecord.from_row(row, TAIPEI)
    assert loaded.next_respawn_at is None
    assert loaded.interval_minutes is None
    assert loaded.name == "A"
    print("[OK] Bad row values fall back instead of dropping the boss")


if __name__ == "__main__":
    test_boss_registry()
    test_respawn_requires_interval()
    test_reset_missed_on_report()
    test_persistence_failure_keeps_memory_state()
    test_persistence_timeout()
    test_notify_mask()
    test_record_rows()
    test_load_from_persistence()
    test_new_report_rearms_notification()
    test_record_death_at()
    test_row_fallbacks()
