"""Load and save bot settings: defaults, then settings.json, then environment."""
import json
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

try:
    from .logger import get_logger
    from .notification_dispatcher import DEFAULT_MESSAGE_TEMPLATE
except ImportError:
    from logger import get_logger
    from notification_dispatcher import DEFAULT_MESSAGE_TEMPLATE

logger = get_logger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

# settings key -> environment variable names, first match wins
ENV_OVERRIDES = {
    'timezone': ('TIMEZONE',),
    'port': ('PORT',),
    'tick_seconds': ('TICK_SECONDS',),
    'notify_lead_minutes': ('NOTIFY_LEAD_MINUTES',),
    'storage_backend': ('STORAGE_BACKEND',),
    'data_file': ('BOSS_DATA_FILE',),
    'sqlite_file': ('BOSS_SQLITE_FILE',),
    'google_sheets_id': ('GOOGLE_SHEETS_ID',),
    'google_service_account_json': ('GOOGLE_SERVICE_ACCOUNT_JSON',),
    'google_sheet_tab': ('GOOGLE_SHEET_TAB',),
    'notify_channel': ('NOTIFY_CHANNEL',),
    'notify_target': ('NOTIFY_TARGET', 'LINE_NOTIFY_ID', 'USER_ID'),
    'line_channel_secret': ('LINE_CHANNEL_SECRET',),
    'line_channel_access_token': ('LINE_CHANNEL_ACCESS_TOKEN',),
    'discord_webhook_url': ('DISCORD_WEBHOOK_URL',),
    'notifications_enabled': ('NOTIFICATIONS_ENABLED',),
}

INT_KEYS = {'port', 'tick_seconds', 'notify_max_attempts', 'backup_count'}
FLOAT_KEYS = {'notify_lead_minutes', 'notify_backoff_seconds', 'notify_timeout_seconds',
              'persistence_timeout_seconds'}
BOOL_KEYS = {'notifications_enabled', 'reset_missed_on_report'}


def default_settings(data_dir: Optional[Path] = None) -> Dict:
    data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
    return {
        "timezone": "Asia/Taipei",
        "port": 3000,
        "tick_seconds": 60,
        "notify_lead_minutes": 10,
        "notify_max_attempts": 3,
        "notify_backoff_seconds": 2,
        "notify_timeout_seconds": 10,
        "persistence_timeout_seconds": 10,
        "storage_backend": "json",  # json | sqlite | sheets
        "data_file": str(data_dir / "bosses.json"),
        "sqlite_file": str(data_dir / "bot.db"),
        "backup_count": 20,
        "google_sheets_id": "",
        "google_service_account_json": "",
        "google_sheet_tab": "Boss",
        "notify_channel": "line",  # line | discord
        "notify_target": "",  # LINE user/group id; Discord uses discord_webhook_url
        "line_channel_secret": "",
        "line_channel_access_token": "",
        "discord_webhook_url": "",
        "notifications_enabled": True,
        "reset_missed_on_report": True,
        "message_template": DEFAULT_MESSAGE_TEMPLATE,
    }


def _coerce(key: str, value):
    if key in BOOL_KEYS:
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if key in INT_KEYS:
        return int(value)
    if key in FLOAT_KEYS:
        return float(value)
    return value


def load_settings(settings_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None,
                  data_dir: Optional[Path] = None) -> Dict:
    """
    Build the settings dict.

    Order: built-in defaults, then the JSON settings file (if present), then
    environment variables (a .env file in the working directory is loaded first
    when env is not given).

    Args:
        settings_path: Path to settings.json
        env: Environment mapping (defaults to os.environ)
        data_dir: Base directory for default data file paths

    Returns:
        Settings dictionary with typed values
    """
    settings = default_settings(data_dir)

    if settings_path is not None:
        settings_path = Path(settings_path)
        if settings_path.exists():
            try:
                with open(settings_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                settings.update(loaded)
                logger.info(f"[SETTINGS] Loaded from {settings_path}")
            except (json.JSONDecodeError, IOError) as e:
                logger.error(f"[SETTINGS] Error loading settings from {settings_path}: {e}", exc_info=True)
        else:
            logger.info(f"[SETTINGS] File not found: {settings_path}, using defaults")

    if env is None:
        load_dotenv()
        env = os.environ
    for key, names in ENV_OVERRIDES.items():
        for name in names:
            if env.get(name):
                settings[key] = env[name]
                break

    for key in list(settings.keys()):
        try:
            settings[key] = _coerce(key, settings[key])
        except (TypeError, ValueError) as e:
            default = default_settings(data_dir).get(key)
            logger.warning(f"[SETTINGS] Bad value for {key!r} ({settings[key]!r}): {e} - using {default!r}")
            settings[key] = default

    if settings['notify_channel'] == 'discord' and not settings['notify_target']:
        settings['notify_target'] = settings['discord_webhook_url']

    return settings


def save_settings(settings: Dict, settings_path: Path) -> None:
    """Write settings back to JSON. Secrets are not written."""
    path = Path(settings_path)
    to_save = {k: v for k, v in settings.items()
               if k not in ('line_channel_secret', 'line_channel_access_token', 'google_service_account_json')}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(to_save, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        logger.info(f"[SETTINGS] Saved to {path}")
    except IOError as e:
        logger.error(f"[SETTINGS] Error saving to {path}: {e}", exc_info=True)
