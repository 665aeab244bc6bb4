from __future__ import annotations

from importlib import import_module
from typing import Dict, Tuple

_MODULE_EXPORTS = {
    "app": "skip_automator.app",
}

_ATTR_EXPORTS: Dict[str, Tuple[str, str]] = {
    "main": ("skip_automator.app", "main"),
    "VERSION": ("skip_automator.config", "VERSION"),
    "APP_NAME": ("skip_automator.config", "APP_NAME"),
    "APPDATA_DIR": ("skip_automator.config", "APPDATA_DIR"),
    "SETTINGS_FILE": ("skip_automator.config", "SETTINGS_FILE"),
    "LOG_FILE": ("skip_automator.config", "LOG_FILE"),
    "MAX_RECORD_COUNT": ("skip_automator.config", "MAX_RECORD_COUNT"),
    "MonitorSettings": ("skip_automator.config", "MonitorSettings"),
    "ensure_runtime_files": ("skip_automator.config", "ensure_runtime_files"),
    "consume_load_warnings": ("skip_automator.config", "consume_load_warnings"),
    "CheckOutcome": ("skip_automator.outcome", "CheckOutcome"),
    "Reason": ("skip_automator.outcome", "Reason"),
    "ReasonKind": ("skip_automator.outcome", "ReasonKind"),
    "Axis": ("skip_automator.outcome", "Axis"),
    "ActivationKind": ("skip_automator.outcome", "ActivationKind"),
    "check_text": ("skip_automator.rules", "check_text"),
    "check_region": ("skip_automator.rules", "check_region"),
    "check_size": ("skip_automator.rules", "check_size"),
    "classify": ("skip_automator.classifier", "classify"),
    "select": ("skip_automator.classifier", "select"),
    "RecordJournal": ("skip_automator.journal", "RecordJournal"),
    "JournalEntry": ("skip_automator.journal", "JournalEntry"),
    "AcceptanceRecord": ("skip_automator.journal", "AcceptanceRecord"),
    "PersistenceChannels": ("skip_automator.journal", "PersistenceChannels"),
    "SkipMonitor": ("skip_automator.monitor", "SkipMonitor"),
    "MonitorState": ("skip_automator.monitor", "MonitorState"),
    "AdbBridge": ("skip_automator.adb_provider", "AdbBridge"),
    "AdbTreeProvider": ("skip_automator.adb_provider", "AdbTreeProvider"),
    "AdbActivationSink": ("skip_automator.adb_provider", "AdbActivationSink"),
    "UiTreeNode": ("skip_automator.adb_provider", "UiTreeNode"),
    "UiChangeEvent": ("skip_automator.adb_provider", "UiChangeEvent"),
    "TrayController": ("skip_automator.ui", "TrayController"),
    "ProcessInspector": ("skip_automator.services", "ProcessInspector"),
    "ShellService": ("skip_automator.services", "ShellService"),
    "setup_logging": ("skip_automator.logging_setup", "setup_logging"),
}

__all__ = ["app", *_ATTR_EXPORTS]


def __getattr__(name: str):
    module_name = _MODULE_EXPORTS.get(name)
    if module_name is not None:
        module = import_module(module_name)
        globals()[name] = module
        return module

    target = _ATTR_EXPORTS.get(name)
    if target is not None:
        source_module_name, source_attr_name = target
        source_module = import_module(source_module_name)
        value = getattr(source_module, source_attr_name)
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(__all__))
