from __future__ import annotations

import argparse
import importlib
import os
import platform
import signal
import sys
import time
from types import SimpleNamespace
from typing import Any, Callable, Optional, Tuple

from .adb_provider import AdbActivationSink, AdbBridge, AdbTreeProvider
from .config import APP_NAME, APPDATA_DIR, VERSION, MonitorSettings, consume_load_warnings, ensure_runtime_files
from .errors import PersistenceIOError, ProviderUnavailable
from .journal import PersistenceChannels
from .logging_setup import setup_logging
from .monitor import SkipMonitor
from .services import ProcessInspector

# Lazy-loaded UI dependencies for faster non-UI startup paths.
tk: Any = SimpleNamespace(Tk=None)
TrayController: Any = None


def _load_ui_dependencies() -> None:
    global tk, TrayController
    if getattr(tk, "Tk", None) is None:
        import tkinter as _tk

        tk = _tk
    if TrayController is None:
        from .ui import TrayController as _TrayController

        TrayController = _TrayController


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} v{VERSION}")
    parser.add_argument("--minimized", action="store_true", help="Start minimized to tray")
    parser.add_argument("--headless", action="store_true", help="Monitor without a window until interrupted")
    parser.add_argument("--check", action="store_true", help="Run one standalone check and exit")
    parser.add_argument("--records", action="store_true", help="Print the persisted acceptance records and exit")
    parser.add_argument("--serial", type=str, default=None, help="ADB device serial (if multiple devices)")
    parser.add_argument("--self-check", action="store_true", help="Run environment self-check and exit")
    return parser


def _check_appdata_writable() -> Tuple[bool, str]:
    try:
        os.makedirs(APPDATA_DIR, exist_ok=True)
        selfcheck_path = os.path.join(APPDATA_DIR, ".selfcheck-write.tmp")
        with open(selfcheck_path, "w", encoding="utf-8") as f:
            f.write("ok")
        os.remove(selfcheck_path)
        return True, f"writable ({APPDATA_DIR})"
    except OSError as exc:
        return False, f"{exc.__class__.__name__}: {exc}"


def _check_tray_import() -> Tuple[bool, str]:
    try:
        importlib.import_module("pystray")
        importlib.import_module("PIL.Image")
        importlib.import_module("PIL.ImageDraw")
        return True, "pystray/Pillow importable"
    except Exception as exc:
        return False, f"{exc.__class__.__name__}: {exc}"


def _run_self_check(settings: MonitorSettings) -> int:
    checks: list[Tuple[str, Callable[[], Tuple[bool, str]]]] = [
        ("Data directory access", _check_appdata_writable),
        ("adb executable", lambda: ProcessInspector.find_adb(settings.adb_path)),
        ("adb server process", ProcessInspector.find_adb_server),
        ("Tray module import", _check_tray_import),
    ]
    passed = 0
    for label, fn in checks:
        ok, detail = fn()
        if ok:
            passed += 1
        print(f"[{'OK' if ok else 'FAIL'}] {label}: {detail}")
    print(f"Summary: {passed}/{len(checks)} checks passed")
    return 0 if passed == len(checks) else 1


def _raise_system_exit(_signum, _frame) -> None:
    raise SystemExit(0)


def _install_termination_handler() -> None:
    # SIGTERM unwinds through main()'s finally block so the journal gets persisted.
    try:
        signal.signal(signal.SIGTERM, _raise_system_exit)
    except ValueError:
        pass


def build_monitor(settings: MonitorSettings, logger) -> SkipMonitor:
    bridge = AdbBridge(settings.adb_path, settings.adb_serial, settings.adb_timeout_seconds)
    provider = AdbTreeProvider(
        bridge,
        logger,
        poll_interval_ms=settings.poll_interval_ms,
        remote_path=settings.dump_remote_path,
        launcher_override=settings.launcher_package,
    )
    return SkipMonitor(logger, settings, provider, AdbActivationSink(bridge, logger))


def _run_headless(monitor: SkipMonitor) -> int:
    try:
        while monitor.is_running():
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("Stopped by user")
    return 0


def _run_with_ui(monitor: SkipMonitor, settings: MonitorSettings, logger, minimized: bool) -> int:
    _load_ui_dependencies()
    root = tk.Tk()
    controller = TrayController(root, monitor, settings, logger)
    try:
        controller.start()
        should_start_minimized = bool(minimized or settings.start_minimized)
        if should_start_minimized and not controller.is_tray_available():
            logger.warning("tray unavailable, minimized ignored")
            should_start_minimized = False
        if should_start_minimized:
            controller.hide_window()
        else:
            controller.show_window()
        root.mainloop()
        return 0
    finally:
        try:
            controller.stop_tray()
        except Exception as exc:
            logger.warning("cleanup: stop_tray failed (%s)", exc.__class__.__name__)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])

    ensure_runtime_files()
    settings = MonitorSettings.load()
    if args.serial:
        settings.adb_serial = args.serial
    if args.self_check:
        return _run_self_check(settings)

    logger = setup_logging(settings.log_level)
    for warning in consume_load_warnings():
        logger.warning(warning)

    monitor = build_monitor(settings, logger)
    channels: Optional[PersistenceChannels] = None
    try:
        channels = PersistenceChannels.open()
    except PersistenceIOError as exc:
        logger.error("Persistence unavailable, running without it: %s", exc)
    else:
        monitor.attach_channels(channels)

    if args.records:
        for record in monitor.records():
            print(record)
        if channels is not None:
            channels.close()
        return 0

    _install_termination_handler()
    monitor.set_basic_env_info(
        f"{APP_NAME} {VERSION} | {platform.platform()} | Python {platform.python_version()}"
    )
    try:
        if args.check:
            outcome = monitor.run_standalone_check()
            print(outcome.render())
            return 0 if outcome.accepted else 1

        try:
            monitor.start()
        except ProviderUnavailable as exc:
            logger.error("Monitoring could not start: %s", exc)
            return 1

        if args.headless:
            return _run_headless(monitor)
        return _run_with_ui(monitor, settings, logger, args.minimized)
    finally:
        try:
            monitor.shutdown()
        except Exception as exc:
            logger.warning("cleanup: monitor.shutdown failed (%s)", exc.__class__.__name__)
        if channels is not None:
            channels.close()


__all__ = ["main", "build_parser", "build_monitor", "VERSION"]
