"""Persistence adapters - load the boss registry and store it after each change.

Every adapter writes the whole registry at once; there are no field-level
updates, so a failed write never leaves a half-updated store behind.
"""
import json
import os
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import gspread

try:
    from .boss_registry import BossRecord
    from .errors import ParseError, PersistenceFailure
    from .logger import get_logger
except ImportError:
    from boss_registry import BossRecord
    from errors import ParseError, PersistenceFailure
    from logger import get_logger

logger = get_logger(__name__)

ROW_COLUMNS = [
    'name',
    'interval_minutes',
    'next_respawn_at',
    'notified_this_cycle',
    'notify_mask',
    'missed_count',
]


class PersistenceAdapter:
    """Interface for registry storage backends."""

    def __init__(self, zone=None):
        self.zone = zone

    def load(self) -> List[BossRecord]:
        raise NotImplementedError

    def save_all(self, records: Iterable[BossRecord]) -> None:
        raise NotImplementedError

    def _records_from_rows(self, rows: Iterable[Dict], source: str) -> List[BossRecord]:
        """Convert rows, skipping (and logging) any that cannot be parsed."""
        records = []
        for row in rows:
            try:
                records.append(BossRecord.from_row(row, self.zone))
            except ParseError as e:
                logger.warning(f"[LOAD] Skipping bad row in {source}: {e}")
        return records


class JsonFilePersistence(PersistenceAdapter):
    """Registry stored as {"bosses": [...]} in a JSON file, with rotating backups."""

    def __init__(self, path, zone=None, backup_count: int = 20):
        """
        Args:
            path: Path to the bosses JSON file
            zone: pytz timezone applied to naive timestamps
            backup_count: Number of backups kept in backups/ next to the file (0 disables)
        """
        super().__init__(zone)
        self.db_path = Path(path)
        self.backup_count = backup_count

    def load(self) -> List[BossRecord]:
        if not self.db_path.exists():
            logger.warning(f"[LOAD] Boss file not found at {self.db_path} - starting empty")
            return []
        try:
            with open(self.db_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError both land here
            logger.error(f"[LOAD] Invalid JSON in {self.db_path}: {e}")
            data = self._load_backup()
        except IOError as e:
            raise PersistenceFailure(f"could not read {self.db_path}: {e}", e) from e

        rows = data.get('bosses', []) if isinstance(data, dict) else []
        records = self._records_from_rows(rows, self.db_path.name)
        logger.info(f"[LOAD] Loaded {len(records)} boss(es) from {self.db_path}")
        return records

    def _get_backup_dir(self) -> Path:
        return self.db_path.parent / "backups"

    def _get_most_recent_backup_path(self) -> Optional[Path]:
        backup_dir = self._get_backup_dir()
        if not backup_dir.exists():
            return None
        backups = sorted(
            backup_dir.glob(f"{self.db_path.stem}_backup_*.json"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        return backups[0] if backups else None

    def _load_backup(self) -> Dict:
        """Contents of the newest backup, or an empty registry if there is none usable."""
        backup_path = self._get_most_recent_backup_path()
        if backup_path is None:
            logger.error(f"[LOAD] No backup for {self.db_path.name} - starting empty")
            return {}
        logger.warning(f"[LOAD] Recovering from backup {backup_path.name}")
        try:
            with open(backup_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (ValueError, IOError) as e:
            logger.error(f"[LOAD] Backup {backup_path.name} unreadable too ({e}) - starting empty")
            return {}

    def _create_backup(self) -> Optional[Path]:
        """Copy the current file into backups/ and prune old copies."""
        if self.backup_count <= 0 or not self.db_path.exists():
            return None
        try:
            backup_dir = self._get_backup_dir()
            backup_dir.mkdir(parents=True, exist_ok=True)
            # One backup per minute is plenty; saves happen on every mutation
            timestamp = datetime.now().strftime("%Y%m%d_%H%M")
            backup_path = backup_dir / f"{self.db_path.stem}_backup_{timestamp}.json"
            shutil.copy2(self.db_path, backup_path)

            backups = sorted(backup_dir.glob(f"{self.db_path.stem}_backup_*.json"),
                             key=lambda p: p.stat().st_mtime, reverse=True)
            for old_backup in backups[self.backup_count:]:
                try:
                    old_backup.unlink()
                except OSError as e:
                    logger.warning(f"[BACKUP] Could not remove old backup {old_backup.name}: {e}")
            return backup_path
        except OSError as e:
            logger.error(f"[BACKUP] ERROR creating backup: {e}")
            return None

    def save_all(self, records: Iterable[BossRecord]) -> None:
        rows = [r.to_row() for r in records]
        self._create_backup()
        tmp_path = self.db_path.with_suffix(self.db_path.suffix + '.tmp')
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump({'bosses': rows}, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.db_path)
        except OSError as e:
            logger.error(f"[SAVE] ERROR saving boss file {self.db_path}: {e}")
            raise PersistenceFailure(f"could not write {self.db_path}: {e}", e) from e
        logger.debug(f"[SAVE] Wrote {len(rows)} boss(es) to {self.db_path}")


class SqlitePersistence(PersistenceAdapter):
    """Registry stored in a SQLite table, rewritten inside one transaction."""

    CREATE_TABLE = """
        CREATE TABLE IF NOT EXISTS boss_status (
            name TEXT PRIMARY KEY,
            interval_minutes REAL,
            next_respawn_at TEXT,
            notified_this_cycle INTEGER NOT NULL DEFAULT 0,
            notify_mask TEXT NOT NULL DEFAULT 'ALL',
            missed_count INTEGER NOT NULL DEFAULT 0
        )
    """

    def __init__(self, path, zone=None):
        super().__init__(zone)
        self.db_path = str(path)
        self._memory_conn = None
        conn = self._connect()
        try:
            with conn:
                conn.execute(self.CREATE_TABLE)
        finally:
            self._release(conn)
        logger.info(f"[SQLITE] Using table boss_status in {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        if self.db_path == ':memory:':
            # An in-memory database lives only as long as its connection
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(':memory:', check_same_thread=False)
            return self._memory_conn
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path, timeout=10)

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn is not self._memory_conn:
            conn.close()

    def load(self) -> List[BossRecord]:
        conn = self._connect()
        try:
            cursor = conn.execute(f"SELECT {', '.join(ROW_COLUMNS)} FROM boss_status")
            rows = [dict(zip(ROW_COLUMNS, values)) for values in cursor.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceFailure(f"could not read boss_status: {e}", e) from e
        finally:
            self._release(conn)
        records = self._records_from_rows(rows, 'boss_status')
        logger.info(f"[LOAD] Loaded {len(records)} boss(es) from {self.db_path}")
        return records

    def save_all(self, records: Iterable[BossRecord]) -> None:
        rows = [r.to_row() for r in records]
        placeholders = ', '.join('?' for _ in ROW_COLUMNS)
        conn = self._connect()
        try:
            # The connection context manager commits, or rolls back on error
            with conn:
                conn.execute("DELETE FROM boss_status")
                conn.executemany(
                    f"INSERT INTO boss_status ({', '.join(ROW_COLUMNS)}) VALUES ({placeholders})",
                    [
                        (row['name'], row['interval_minutes'], row['next_respawn_at'] or None,
                         int(row['notified_this_cycle']), row['notify_mask'], row['missed_count'])
                        for row in rows
                    ],
                )
        except sqlite3.Error as e:
            logger.error(f"[SAVE] ERROR writing boss_status: {e}")
            raise PersistenceFailure(f"could not write boss_status: {e}", e) from e
        finally:
            self._release(conn)
        logger.debug(f"[SAVE] Wrote {len(rows)} boss(es) to boss_status")


class SheetsPersistence(PersistenceAdapter):
    """Registry stored in a Google Sheets worksheet: header row plus one row per boss."""

    def __init__(self, worksheet, zone=None):
        """
        Args:
            worksheet: gspread Worksheet (see open_worksheet)
            zone: pytz timezone applied to naive timestamps
        """
        super().__init__(zone)
        self.worksheet = worksheet

    def load(self) -> List[BossRecord]:
        try:
            values = self.worksheet.get_all_values() or []
        except gspread.exceptions.GSpreadException as e:
            raise PersistenceFailure(f"could not read worksheet: {e}", e) from e

        rows = []
        for raw in values[1:]:
            if not raw or not any(cell.strip() for cell in raw):
                continue
            padded = list(raw) + [''] * (len(ROW_COLUMNS) - len(raw))
            rows.append(dict(zip(ROW_COLUMNS, padded)))
        records = self._records_from_rows(rows, 'worksheet')
        logger.info(f"[LOAD] Loaded {len(records)} boss(es) from worksheet {getattr(self.worksheet, 'title', '')}")
        return records

    def save_all(self, records: Iterable[BossRecord]) -> None:
        table = [list(ROW_COLUMNS)]
        for record in records:
            row = record.to_row()
            table.append([
                row['name'],
                '' if row['interval_minutes'] is None else str(row['interval_minutes']),
                row['next_respawn_at'],
                'TRUE' if row['notified_this_cycle'] else 'FALSE',
                row['notify_mask'],
                str(row['missed_count']),
            ])
        last_column = chr(ord('A') + len(ROW_COLUMNS) - 1)
        try:
            # Overwrite in place, then drop leftover rows; a failed update leaves the old table intact
            self.worksheet.update(range_name='A1', values=table)
            self.worksheet.batch_clear([f"A{len(table) + 1}:{last_column}"])
        except gspread.exceptions.GSpreadException as e:
            logger.error(f"[SAVE] ERROR writing worksheet: {e}")
            raise PersistenceFailure(f"could not write worksheet: {e}", e) from e
        logger.debug(f"[SAVE] Wrote {len(table) - 1} boss(es) to worksheet")


def open_worksheet(sheet_id: str, credentials_json: str, tab: str = 'Boss'):
    """
    Open (or create) the boss worksheet with a service account.

    Args:
        sheet_id: Spreadsheet key
        credentials_json: Service account JSON text
        tab: Worksheet title
    """
    if not sheet_id:
        raise PersistenceFailure("google_sheets_id not set")
    if not credentials_json:
        raise PersistenceFailure("google_service_account_json not set")
    client = gspread.service_account_from_dict(json.loads(credentials_json))
    spreadsheet = client.open_by_key(sheet_id)
    try:
        worksheet = spreadsheet.worksheet(tab)
    except gspread.WorksheetNotFound:
        worksheet = spreadsheet.add_worksheet(title=tab, rows=500, cols=len(ROW_COLUMNS))
        worksheet.append_row(ROW_COLUMNS)
        logger.info(f"[SHEETS] Created worksheet '{tab}'")
    return worksheet


def create_persistence(settings: Dict, zone=None) -> PersistenceAdapter:
    """Build the adapter named by settings['storage_backend']."""
    backend = (settings.get('storage_backend') or 'json').strip().lower()
    if backend == 'json':
        return JsonFilePersistence(settings['data_file'], zone=zone,
                                   backup_count=int(settings.get('backup_count', 20)))
    if backend == 'sqlite':
        return SqlitePersistence(settings['sqlite_file'], zone=zone)
    if backend == 'sheets':
        worksheet = open_worksheet(
            settings.get('google_sheets_id', ''),
            settings.get('google_service_account_json', ''),
            settings.get('google_sheet_tab') or 'Boss',
        )
        return SheetsPersistence(worksheet, zone=zone)
    raise ValueError(f"unknown storage_backend '{backend}'")
