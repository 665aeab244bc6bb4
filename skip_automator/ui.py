from __future__ import annotations

import importlib
import logging
import queue
import threading
import time
import tkinter as tk
from datetime import datetime
from functools import partial
from tkinter import messagebox, ttk
from typing import Callable, Optional

from .config import APP_NAME, APPDATA_DIR, SETTINGS_FILE, VERSION, MonitorSettings
from .errors import ConfigurationError, ProviderUnavailable
from .monitor import MonitorStatus, SkipMonitor
from .outcome import CheckOutcome
from .services import ShellService

pystray = None
Image = None
ImageDraw = None
PYSTRAY_AVAILABLE = False
_LAST_TRAY_IMPORT_FAILURE_AT: Optional[float] = None
_TRAY_IMPORT_RETRY_TTL_SECONDS = 30.0


def _load_tray_modules() -> bool:
    # pystray needs a display backend at import time, so it is loaded on demand.
    global pystray, Image, ImageDraw, PYSTRAY_AVAILABLE, _LAST_TRAY_IMPORT_FAILURE_AT
    if PYSTRAY_AVAILABLE:
        return True
    now = time.time()
    if _LAST_TRAY_IMPORT_FAILURE_AT is not None:
        if (now - _LAST_TRAY_IMPORT_FAILURE_AT) < _TRAY_IMPORT_RETRY_TTL_SECONDS:
            return False
    try:
        pystray = importlib.import_module("pystray")
        Image = importlib.import_module("PIL.Image")
        ImageDraw = importlib.import_module("PIL.ImageDraw")
        PYSTRAY_AVAILABLE = True
        _LAST_TRAY_IMPORT_FAILURE_AT = None
        return True
    except Exception:
        _LAST_TRAY_IMPORT_FAILURE_AT = now
        return False


def describe_outcome(outcome: CheckOutcome) -> str:
    if outcome.accepted:
        return f"Skip target found in {outcome.source_app} ({outcome.text}), activation: {outcome.activation.value}"
    return f"No skip target accepted ({outcome.reason if outcome.reason is not None else 'none'})"


class TrayController:
    def __init__(
        self,
        root: tk.Tk,
        monitor: SkipMonitor,
        settings: MonitorSettings,
        logger: logging.Logger,
    ) -> None:
        self.root = root
        self.monitor = monitor
        self.settings = settings
        self.logger = logger.getChild("TrayController")
        self.icon = None
        self._tray_running = False
        self._tray_available = False
        self._last_status_text: Optional[str] = None
        self._ui_queue: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._ui_queue_running = False
        self._ui_queue_batch_size = 32
        try:
            self._status_var = tk.StringVar(master=self.root, value="Status: starting")
        except Exception:
            self._status_var = _ValueHolder("Status: starting")
        self._build_window()

    def _build_window(self) -> None:
        if not hasattr(self.root, "title"):
            return
        self.root.title(APP_NAME)
        self.root.geometry("460x220")
        self.root.resizable(False, False)
        self.root.protocol("WM_DELETE_WINDOW", self._on_close_requested)

        wrapper = ttk.Frame(self.root, padding=16)
        wrapper.pack(fill="both", expand=True)

        ttk.Label(wrapper, text=f"{APP_NAME} v{VERSION}", font=("TkDefaultFont", 12, "bold")).pack(anchor="w")
        ttk.Label(wrapper, textvariable=self._status_var).pack(anchor="w", pady=(10, 8))

        btn_row = ttk.Frame(wrapper)
        btn_row.pack(fill="x", pady=6)
        ttk.Button(btn_row, text="Start/Stop monitoring", command=self.toggle_monitoring).pack(side="left")
        ttk.Button(btn_row, text="Check now", command=self.run_standalone_check).pack(side="left", padx=(8, 0))
        ttk.Button(btn_row, text="Open data folder", command=self.open_data_folder).pack(side="left", padx=(8, 0))

        ttk.Button(wrapper, text="Exit", command=self.shutdown).pack(anchor="e", pady=(14, 0))

    def start(self) -> None:
        self._ui_queue_running = True
        self._schedule_ui_queue_drain()
        self._tray_available = False
        if _load_tray_modules():
            self._setup_tray()
            self._tray_available = bool(self._tray_running)
        else:
            self.logger.warning("pystray is unavailable; tray mode disabled")
        self._tick_status()

    def is_tray_available(self) -> bool:
        return bool(self._tray_available)

    def _schedule_ui_queue_drain(self) -> None:
        if not self._ui_queue_running:
            return
        try:
            if hasattr(self.root, "winfo_exists") and not bool(self.root.winfo_exists()):
                return
            if hasattr(self.root, "after"):
                self.root.after(50, self._drain_ui_queue)
        except tk.TclError:
            self.logger.debug("UI queue drain scheduling skipped")

    def _drain_ui_queue(self) -> None:
        processed = 0
        while self._ui_queue_running and processed < self._ui_queue_batch_size:
            try:
                callback = self._ui_queue.get_nowait()
            except queue.Empty:
                break
            try:
                callback()
            except Exception:
                self.logger.exception("Queued UI callback failed")
            processed += 1
        self._schedule_ui_queue_drain()

    def _tick_status(self) -> None:
        self._update_status()
        try:
            if hasattr(self.root, "winfo_exists") and not bool(self.root.winfo_exists()):
                return
            if hasattr(self.root, "after"):
                self.root.after(1000, self._tick_status)
        except tk.TclError:
            self.logger.debug("Status tick scheduling skipped")

    def _update_status(self, force: bool = False) -> None:
        text = self.status_text()
        if not force and text == self._last_status_text:
            return
        self._status_var.set(text)
        self._last_status_text = text

    def _save_setting_attr(self, attr_name: str, new_value) -> bool:
        previous = getattr(self.settings, attr_name)
        setattr(self.settings, attr_name, new_value)
        try:
            self.settings.save(SETTINGS_FILE)
            return True
        except OSError:
            setattr(self.settings, attr_name, previous)
            self.logger.warning("Failed to save setting '%s'; rolled back", attr_name)
            self._update_status(force=True)
            return False

    def status_text(self) -> str:
        state = self.monitor.state
        mode = "RUNNING" if state.status is MonitorStatus.RUNNING else "IDLE"
        tick_text = "-"
        if state.last_tick > 0:
            tick_text = datetime.fromtimestamp(state.last_tick).strftime("%H:%M:%S")
        base = (
            f"Status: {mode} | accepted {state.accepted_count} | "
            f"events {state.events_processed}/{state.events_received} | dropped {state.events_dropped}"
        )
        if state.last_error:
            compact_error = state.last_error if len(state.last_error) <= 80 else f"{state.last_error[:77]}..."
            return f"{base} | error {tick_text} {compact_error}"
        return f"{base} | last update {tick_text}"

    def toggle_monitoring(self) -> None:
        try:
            if self.monitor.is_running():
                self.monitor.stop()
                self.logger.info("Monitoring stopped")
            else:
                self.monitor.start()
                self.logger.info("Monitoring started")
        except ProviderUnavailable as exc:
            self.logger.warning("Monitoring could not start: %s", exc)
            self._show_message("Monitoring could not start", str(exc), error=True)
        except ConfigurationError as exc:
            self.logger.warning("Monitoring toggle rejected: %s", exc)
        self._update_status(force=True)

    def toggle_start_minimized(self) -> None:
        target = not self.settings.start_minimized
        if not self._save_setting_attr("start_minimized", target):
            return
        self.logger.info("Start minimized toggled: %s", "ON" if target else "OFF")

    def run_standalone_check(self) -> None:
        if not self.monitor.is_running():
            self._show_message(APP_NAME, "Start monitoring before running a check.")
            return
        try:
            self.monitor.standalone_check(self._on_check_result)
        except (ConfigurationError, queue.Full) as exc:
            self.logger.warning("Standalone check not queued: %s", exc.__class__.__name__)

    def _on_check_result(self, outcome: CheckOutcome) -> None:
        # Called on the monitor worker thread.
        self._safe_after(partial(self._show_message, "Check result", describe_outcome(outcome)))

    def open_data_folder(self) -> None:
        self.monitor.persist_log()
        ShellService.open_folder(APPDATA_DIR)

    def show_window(self) -> None:
        if hasattr(self.root, "deiconify"):
            self.root.deiconify()
        if hasattr(self.root, "lift"):
            self.root.lift()

    def hide_window(self) -> None:
        if hasattr(self.root, "withdraw"):
            self.root.withdraw()

    def _on_close_requested(self) -> None:
        if self.is_tray_available():
            self.hide_window()
            return
        self.shutdown()

    def shutdown(self) -> None:
        self._ui_queue_running = False
        self.stop_tray()
        try:
            self.root.quit()
            self.root.destroy()
        except tk.TclError:
            pass

    def _show_message(self, title: str, message: str, error: bool = False) -> None:
        try:
            parent = self.root if hasattr(self.root, "winfo_exists") else None
            if error:
                messagebox.showerror(title, message, parent=parent)
            else:
                messagebox.showinfo(title, message, parent=parent)
        except tk.TclError:
            self.logger.debug("Message popup skipped: %s", message)

    def _setup_tray(self) -> None:
        if not _load_tray_modules():
            return
        self.icon = pystray.Icon(
            "SkipAutomator",
            self._create_icon(),
            APP_NAME,
            pystray.Menu(
                pystray.MenuItem(lambda _item: self.status_text(), None, enabled=False),
                pystray.MenuItem(
                    lambda _item: "Stop monitoring" if self.monitor.is_running() else "Start monitoring",
                    self._menu_toggle_monitoring,
                ),
                pystray.MenuItem("Check now", self._menu_standalone_check),
                pystray.MenuItem(
                    "Start minimized",
                    self._menu_toggle_start_minimized,
                    checked=lambda _item: self.settings.start_minimized,
                ),
                pystray.MenuItem("Show window", self._menu_show_window),
                pystray.MenuItem("Open data folder", self._menu_open_folder),
                pystray.MenuItem("Exit", self._menu_exit),
            ),
        )
        self._tray_running = True
        threading.Thread(target=self.icon.run, daemon=True).start()

    def stop_tray(self) -> None:
        if self._tray_running and self.icon:
            try:
                self.icon.stop()
            except Exception:
                self.logger.debug("Tray icon stop failed")
        self._tray_running = False
        self._tray_available = False

    def _create_icon(self):
        if not _load_tray_modules():
            return None
        img = Image.new("RGBA", (64, 64), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        draw.rounded_rectangle([(4, 14), (60, 50)], radius=10, fill=(32, 32, 32, 230), outline=(240, 240, 240, 255))
        draw.polygon([(18, 22), (30, 32), (18, 42)], fill=(255, 255, 255, 255))
        draw.polygon([(32, 22), (44, 32), (32, 42)], fill=(255, 255, 255, 255))
        draw.line([(48, 22), (48, 42)], fill=(255, 255, 255, 255), width=4)
        return img

    # Tray callbacks are called from the tray thread.
    def _safe_after(self, callback) -> None:
        if not self._ui_queue_running:
            return
        try:
            if hasattr(self.root, "winfo_exists"):
                if not bool(self.root.winfo_exists()):
                    return
            self._ui_queue.put_nowait(callback)
        except tk.TclError:
            self.logger.debug("Tray callback queueing skipped")

    def _menu_toggle_monitoring(self, _icon, _item) -> None:
        self._safe_after(self.toggle_monitoring)

    def _menu_standalone_check(self, _icon, _item) -> None:
        self._safe_after(self.run_standalone_check)

    def _menu_toggle_start_minimized(self, _icon, _item) -> None:
        self._safe_after(self.toggle_start_minimized)

    def _menu_show_window(self, _icon, _item) -> None:
        self._safe_after(self.show_window)

    def _menu_open_folder(self, _icon, _item) -> None:
        self._safe_after(self.open_data_folder)

    def _menu_exit(self, _icon, _item) -> None:
        self._safe_after(self.shutdown)


class _ValueHolder:
    def __init__(self, value: str):
        self._value = value

    def set(self, value: str) -> None:
        self._value = value

    def get(self) -> str:
        return self._value


__all__ = ["TrayController", "PYSTRAY_AVAILABLE", "describe_outcome"]
