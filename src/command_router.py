"""Parse chat commands and turn them into registry operations and reply text."""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

try:
    from .boss_registry import NotifyMask
    from .errors import ParseError, PersistenceFailure, UnconfiguredBoss, UnknownBoss
    from .logger import get_logger
    from . import time_calculator
except ImportError:
    from boss_registry import NotifyMask
    from errors import ParseError, PersistenceFailure, UnconfiguredBoss, UnknownBoss
    from logger import get_logger
    import time_calculator

logger = get_logger(__name__)

HELP_TEXT = """
/幫助：顯示說明
/設定 王名 間隔(H.MM)：設定重生間隔，例 /設定 巨蟻女王 8 或 8.30
/重生 王名 剩餘(H.MM)：記錄多久後重生，例 /重生 巨蟻女王 1.30
/死亡 王名 時間(HH:MM)：記錄死亡時間，例 /死亡 巨蟻女王 10:30
/刪除 王名：刪除王
/BOSS：查詢所有王的剩餘時間
/通知 開|關：開關全部提醒
/通知日 王名 日期：限制提醒日，例 /通知日 巨蟻女王 一三五（ALL=每天，NONE=不提醒）
/我的ID：查詢自己的 ID
""".strip()

SAVE_WARNING = "\n⚠️ 資料儲存失敗，稍後會再嘗試"


@dataclass
class ParsedCommand:
    """A recognised command and its whitespace-separated arguments."""
    action: str
    args: List[str]


COMMAND_ALIASES = {
    '/幫助': 'help', '/help': 'help',
    '/設定': 'set_interval', '/set': 'set_interval',
    '/重生': 'respawn_in', '/respawn': 'respawn_in',
    '/死亡': 'death_at', '/death': 'death_at',
    '/刪除': 'delete', '/delete': 'delete',
    '/boss': 'list', '/list': 'list',
    '/通知': 'toggle', '/notify': 'toggle',
    '/通知日': 'notify_days', '/days': 'notify_days',
    '/我的id': 'whoami', '/myid': 'whoami',
}

ON_WORDS = {'開', '开', 'on', 'true', '1'}
OFF_WORDS = {'關', '关', 'off', 'false', '0'}


def parse_command(text: str) -> Optional[ParsedCommand]:
    """
    Split a message into a command.

    Returns None for text that is not a known command.
    """
    if not text:
        return None
    parts = text.strip().split()
    if not parts:
        return None
    action = COMMAND_ALIASES.get(parts[0].lower())
    if action is None:
        return None
    return ParsedCommand(action=action, args=parts[1:])


class CommandRouter:
    """Maps parsed commands onto a BossRegistry and a ReconciliationLoop."""

    def __init__(self, registry, loop=None, reset_missed_on_report: bool = True):
        """
        Args:
            registry: BossRegistry
            loop: ReconciliationLoop (for the global notification switch)
            reset_missed_on_report: Clear missed_count when a respawn is reported
        """
        self.registry = registry
        self.loop = loop
        self.reset_missed_on_report = reset_missed_on_report
        self._handlers: Dict[str, Callable[[List[str], str], str]] = {
            'help': self._help,
            'set_interval': self._set_interval,
            'respawn_in': self._respawn_in,
            'death_at': self._death_at,
            'delete': self._delete,
            'list': self._list,
            'toggle': self._toggle,
            'notify_days': self._notify_days,
            'whoami': self._whoami,
        }

    def handle(self, text: str, source_id: str = '') -> Optional[str]:
        """
        Run a chat command.

        Args:
            text: Raw message text
            source_id: LINE user/group id of the sender

        Returns:
            Reply text, or None if the message is not a command
        """
        command = parse_command(text)
        if command is None:
            return None

        logger.info(f"[COMMAND] {command.action} {command.args}")
        try:
            return self._handlers[command.action](command.args, source_id)
        except ParseError as e:
            logger.info(f"[COMMAND] Rejected input: {e}")
            return f"格式錯誤：{e}"
        except UnconfiguredBoss as e:
            return f"{e.name} 尚未設定間隔，請先 /設定 {e.name} 間隔"
        except UnknownBoss as e:
            return f"找不到 {e.name}"

    def _help(self, args: List[str], source_id: str) -> str:
        return HELP_TEXT

    def _set_interval(self, args: List[str], source_id: str) -> str:
        if len(args) != 2:
            return "格式錯誤 /設定 王名 間隔(H.MM)"
        name, spec = args
        hours, minutes = time_calculator.parse_duration_spec(spec)
        total = time_calculator.duration_to_minutes(hours, minutes)
        if total <= 0:
            raise ParseError("間隔必須大於 0")
        reply = f"已設定 {name} 間隔 {hours}小時{minutes}分"
        try:
            self.registry.upsert_interval(name, total)
        except PersistenceFailure as e:
            logger.error(f"[COMMAND] Interval for '{name}' not saved: {e}")
            reply += SAVE_WARNING
        return reply

    def _respawn_in(self, args: List[str], source_id: str) -> str:
        if len(args) != 2:
            return "格式錯誤 /重生 王名 剩餘(H.MM)"
        name, spec = args
        hours, minutes = time_calculator.parse_duration_spec(spec)
        warning = ''
        try:
            record = self.registry.record_respawn_in(name, hours, minutes,
                                                     reset_missed=self.reset_missed_on_report)
        except PersistenceFailure as e:
            logger.error(f"[COMMAND] Respawn for '{name}' not saved: {e}")
            warning = SAVE_WARNING
            record = self.registry.get(name)
            if record is None:
                raise UnknownBoss(name)
        when = time_calculator.format_clock(record.next_respawn_at, self.registry.zone)
        return f"{record.name} 已記錄，預計 {when} 重生（{hours}小時{minutes}分後）{warning}"

    def _death_at(self, args: List[str], source_id: str) -> str:
        if len(args) != 2:
            return "格式錯誤 /死亡 王名 時間(如 10:30)"
        name, clock = args
        hour, minute = time_calculator.parse_clock(clock)
        warning = ''
        try:
            record = self.registry.record_death_at(name, hour, minute,
                                                   reset_missed=self.reset_missed_on_report)
        except PersistenceFailure as e:
            logger.error(f"[COMMAND] Death time for '{name}' not saved: {e}")
            warning = SAVE_WARNING
            record = self.registry.get(name)
            if record is None:
                raise UnknownBoss(name)
        when = time_calculator.format_clock(record.next_respawn_at, self.registry.zone)
        return f"{record.name} 死亡時間已記錄，預計重生 {when}{warning}"

    def _delete(self, args: List[str], source_id: str) -> str:
        if len(args) != 1:
            return "格式錯誤 /刪除 王名"
        name = args[0]
        try:
            removed = self.registry.delete(name)
        except PersistenceFailure as e:
            logger.error(f"[COMMAND] Delete of '{name}' not saved: {e}")
            return f"已刪除 {name}{SAVE_WARNING}"
        if not removed:
            raise UnknownBoss(name)
        return f"已刪除 {name}"

    def _list(self, args: List[str], source_id: str) -> str:
        records = self.registry.list()
        if not records:
            return "目前沒有設定任何王"
        now = time_calculator.now_in(self.registry.zone)
        lines = []
        for record in records:
            if record.next_respawn_at is None:
                lines.append(f"{record.name} 尚未登記重生時間")
                continue
            remaining = time_calculator.format_remaining_text(record.next_respawn_at, now)
            clock = time_calculator.format_clock(record.next_respawn_at, self.registry.zone)
            line = f"{record.name} {clock} 重生（剩餘 {remaining}）"
            if record.missed_count:
                line += f" 過{record.missed_count}"
            lines.append(line)
        if self.loop is not None and not self.loop.notifications_enabled:
            lines.append("（提醒已關閉）")
        return "\n".join(lines)

    def _toggle(self, args: List[str], source_id: str) -> str:
        if self.loop is None:
            return "提醒功能未啟用"
        if not args:
            enabled = not self.loop.notifications_enabled
        else:
            word = args[0].lower()
            if word in ON_WORDS:
                enabled = True
            elif word in OFF_WORDS:
                enabled = False
            else:
                return "格式錯誤 /通知 開|關"
        self.loop.set_notifications_enabled(enabled)
        return "已開啟提醒" if enabled else "已關閉提醒"

    def _notify_days(self, args: List[str], source_id: str) -> str:
        if len(args) < 2:
            return "格式錯誤 /通知日 王名 日期"
        name = args[0]
        mask = NotifyMask.parse(','.join(args[1:]))
        reply = f"{name} 提醒日設定為 {mask.to_text()}"
        try:
            self.registry.set_notify_mask(name, mask)
        except PersistenceFailure as e:
            logger.error(f"[COMMAND] Notify days for '{name}' not saved: {e}")
            reply += SAVE_WARNING
        return reply

    def _whoami(self, args: List[str], source_id: str) -> str:
        if not source_id:
            return "無法取得 ID"
        return f"你的 ID：{source_id}"
