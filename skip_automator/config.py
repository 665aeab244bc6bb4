from __future__ import annotations

import json
import os
import re
import shutil
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List

VERSION = "1.0.0"
APP_NAME = "Skip Automator"
APPDATA_DIRNAME = ".skip_automator"
HOME_ENV_VAR = "SKIP_AUTOMATOR_HOME"

DEFAULT_SKIP_LABEL = "跳过"
MAX_RECORD_COUNT = 500

_LOAD_WARNINGS: List[str] = []
_LOAD_WARNINGS_LOCK = threading.Lock()


def _push_load_warning(message: str) -> None:
    with _LOAD_WARNINGS_LOCK:
        _LOAD_WARNINGS.append(message)


def consume_load_warnings() -> List[str]:
    with _LOAD_WARNINGS_LOCK:
        out = list(_LOAD_WARNINGS)
        _LOAD_WARNINGS.clear()
        return out


def get_app_data_dir() -> str:
    override = os.environ.get(HOME_ENV_VAR)
    path = Path(override) if override else Path.home() / APPDATA_DIRNAME
    path.mkdir(parents=True, exist_ok=True)
    return str(path)


APPDATA_DIR = get_app_data_dir()
SETTINGS_FILE = os.path.join(APPDATA_DIR, "settings.json")
LOG_FILE = os.path.join(APPDATA_DIR, "skip_automator.log")
COUNT_FILE = os.path.join(APPDATA_DIR, "accepted_count.txt")
JOURNAL_FILE = os.path.join(APPDATA_DIR, "journal.jsonl")
RECORDS_FILE = os.path.join(APPDATA_DIR, "records.jsonl")

BROKEN_BACKUP_KEEP_COUNT = 10
BROKEN_BACKUP_MAX_AGE_DAYS = 30
_BROKEN_SUFFIX_RE = re.compile(r"\.broken-(\d{8}-\d{6})$")


def _coerce_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _coerce_int(value: Any, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        out = default
    else:
        out = value
    if minimum is not None:
        out = max(out, minimum)
    if maximum is not None:
        out = min(out, maximum)
    return out


def _coerce_float(value: Any, default: float, minimum: float | None = None, maximum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        out = float(default)
    else:
        out = float(value)
    if minimum is not None:
        out = max(out, minimum)
    if maximum is not None:
        out = min(out, maximum)
    return out


def _coerce_str(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _coerce_str_list(value: Any, default: List[str]) -> List[str]:
    if not isinstance(value, list):
        return list(default)
    out = [x for x in value if isinstance(x, str) and x.strip()]
    return out if out else list(default)


def _backup_broken_json(path: str, label: str, reason: str) -> None:
    if not os.path.exists(path):
        return
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_path = f"{path}.broken-{timestamp}"
    try:
        shutil.copy2(path, backup_path)
        _push_load_warning(f"{label} is corrupted: {reason}. Backup written to {backup_path}. Using defaults.")
    except OSError as exc:
        _push_load_warning(f"{label} is corrupted: {reason}. Backup failed ({exc.__class__.__name__}). Using defaults.")
    _cleanup_broken_backups(path, label)


def _backup_timestamp(path: Path) -> datetime:
    match = _BROKEN_SUFFIX_RE.search(path.name)
    if match:
        try:
            return datetime.strptime(match.group(1), "%Y%m%d-%H%M%S")
        except ValueError:
            pass
    try:
        return datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        return datetime.min


def _cleanup_broken_backups(path: str, label: str) -> None:
    base_path = Path(path)
    parent = base_path.parent
    pattern = f"{base_path.name}.broken-*"
    now = datetime.now()
    max_age = timedelta(days=BROKEN_BACKUP_MAX_AGE_DAYS)

    try:
        backups = list(parent.glob(pattern))
    except OSError as exc:
        _push_load_warning(f"{label} backup cleanup failed ({exc.__class__.__name__}).")
        return

    for backup in backups:
        if now - _backup_timestamp(backup) <= max_age:
            continue
        try:
            backup.unlink()
        except OSError as exc:
            _push_load_warning(f"{label} backup cleanup failed: {backup.name} ({exc.__class__.__name__})")

    keep = sorted(
        [p for p in parent.glob(pattern) if p.exists()],
        key=_backup_timestamp,
        reverse=True,
    )
    for old in keep[BROKEN_BACKUP_KEEP_COUNT:]:
        try:
            old.unlink()
        except OSError as exc:
            _push_load_warning(f"{label} backup cleanup failed: {old.name} ({exc.__class__.__name__})")


def _load_json_object(path: str, label: str) -> dict[str, Any] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        _backup_broken_json(path, label, f"JSON parse failed ({exc.__class__.__name__})")
        return None
    if not isinstance(raw, dict):
        _backup_broken_json(path, label, "top-level value is not an object")
        return None
    return raw


@dataclass
class MonitorSettings:
    skip_label: str = DEFAULT_SKIP_LABEL
    max_record_count: int = MAX_RECORD_COUNT
    poll_interval_ms: int = 500
    event_queue_size: int = 1000
    host_package: str = "skip.automator"
    launcher_package: str = ""
    ignored_package_prefixes: List[str] = field(default_factory=lambda: ["com.android"])
    adb_path: str = "adb"
    adb_serial: str = ""
    adb_timeout_seconds: float = 10.0
    dump_remote_path: str = "/sdcard/window_dump.xml"
    start_minimized: bool = True
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: str = SETTINGS_FILE) -> "MonitorSettings":
        defaults = cls()
        raw = _load_json_object(path, "settings.json")
        if raw is None:
            return defaults

        skip_label = _coerce_str(raw.get("skip_label"), defaults.skip_label).strip()
        if not skip_label:
            skip_label = defaults.skip_label
            _push_load_warning("settings.json skip_label is empty; falling back to the default label.")

        return cls(
            skip_label=skip_label,
            max_record_count=_coerce_int(raw.get("max_record_count"), defaults.max_record_count, minimum=50, maximum=10000),
            poll_interval_ms=_coerce_int(raw.get("poll_interval_ms"), defaults.poll_interval_ms, minimum=100, maximum=10000),
            event_queue_size=_coerce_int(raw.get("event_queue_size"), defaults.event_queue_size, minimum=10, maximum=100000),
            host_package=_coerce_str(raw.get("host_package"), defaults.host_package),
            launcher_package=_coerce_str(raw.get("launcher_package"), defaults.launcher_package),
            ignored_package_prefixes=_coerce_str_list(
                raw.get("ignored_package_prefixes"),
                defaults.ignored_package_prefixes,
            ),
            adb_path=_coerce_str(raw.get("adb_path"), defaults.adb_path) or defaults.adb_path,
            adb_serial=_coerce_str(raw.get("adb_serial"), defaults.adb_serial),
            adb_timeout_seconds=_coerce_float(
                raw.get("adb_timeout_seconds"),
                defaults.adb_timeout_seconds,
                minimum=1.0,
                maximum=120.0,
            ),
            dump_remote_path=_coerce_str(raw.get("dump_remote_path"), defaults.dump_remote_path) or defaults.dump_remote_path,
            start_minimized=_coerce_bool(raw.get("start_minimized"), defaults.start_minimized),
            log_level=_coerce_str(raw.get("log_level"), defaults.log_level).upper(),
        )

    def save(self, path: str = SETTINGS_FILE) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, indent=2, ensure_ascii=False)

    @classmethod
    def default_json(cls) -> str:
        return json.dumps(asdict(cls()), indent=2, ensure_ascii=False)


def ensure_runtime_files() -> None:
    os.makedirs(APPDATA_DIR, exist_ok=True)
    if not os.path.exists(SETTINGS_FILE):
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            f.write(MonitorSettings.default_json())
    for path in (LOG_FILE, COUNT_FILE, JOURNAL_FILE, RECORDS_FILE):
        if not os.path.exists(path):
            with open(path, "a", encoding="utf-8"):
                pass


__all__ = [
    "VERSION",
    "APP_NAME",
    "APPDATA_DIRNAME",
    "APPDATA_DIR",
    "HOME_ENV_VAR",
    "DEFAULT_SKIP_LABEL",
    "MAX_RECORD_COUNT",
    "SETTINGS_FILE",
    "LOG_FILE",
    "COUNT_FILE",
    "JOURNAL_FILE",
    "RECORDS_FILE",
    "MonitorSettings",
    "get_app_data_dir",
    "ensure_runtime_files",
    "consume_load_warnings",
]
