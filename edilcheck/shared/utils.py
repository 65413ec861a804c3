"""
Shared utility functions for the Edil-Check data layer.
"""

import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Union

from platformdirs import user_data_dir

APP_NAME = "EdilCheck"


def get_data_path(relative_path: str) -> Path:
    """Get absolute path to writable data files (databases, logs).

    Resolves to the per-user data directory returned by
    ``platformdirs.user_data_dir``; ``EDILCHECK_DATA_DIR`` overrides it.
    """
    override = os.getenv('EDILCHECK_DATA_DIR')
    if override:
        base_path = Path(override)
    else:
        base_path = Path(user_data_dir(APP_NAME))

    base_path.mkdir(parents=True, exist_ok=True)
    return base_path / relative_path


def env_flag(name: str, default: bool = True) -> bool:
    """Read a boolean environment flag ('0', 'false', 'no' are false)"""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ('0', 'false', 'no', 'off', '')


def to_int_optional(value: Union[str, int, None]) -> Optional[int]:
    """Convert string to int, return None if invalid"""
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def to_float(value, default: float = 0.0) -> float:
    """Convert to float, falling back to default for empty or invalid input"""
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def today_local() -> str:
    """The caller's local calendar date as YYYY-MM-DD"""
    return date.today().isoformat()


def parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp string into an aware UTC datetime, None if invalid.

    Accepts ISO-8601 (with or without 'Z') and SQLite's 'YYYY-MM-DD HH:MM:SS'.
    Naive values are taken as UTC.
    """
    if not dt_str or not isinstance(dt_str, str):
        return None
    try:
        parsed = datetime.fromisoformat(dt_str.strip().replace('Z', '+00:00'))
    except ValueError:
        try:
            parsed = datetime.strptime(dt_str.strip(), '%Y-%m-%d %H:%M:%S')
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """Format datetime for display"""
    return dt.strftime('%Y-%m-%d %H:%M:%S')


def validate_account(account: str) -> str:
    """Return the stripped account key; raises ValueError when empty"""
    if not account or not isinstance(account, str) or not account.strip():
        raise ValueError("Account must be a non-empty string")
    return account.strip()
