from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional

from .adb_provider import AdbActivationSink, AdbTreeProvider, UiChangeEvent
from .classifier import select
from .config import MonitorSettings
from .errors import ConfigurationError, PersistenceIOError, PersistenceParseError, ProviderUnavailable
from .journal import AcceptanceRecord, PersistenceChannels, RecordJournal, format_current_time
from .outcome import Axis, CheckOutcome, ReasonKind
from .services import ProcessInspector

PLATFORM_PACKAGE = "android"
CHECK_RESULT_BANNER = "========Check Result========"
STANDALONE_RESULT_BANNER = "========Standalone Check Result========"
CONNECT_BANNER = "========Start Connecting========"

ResultCallback = Callable[[CheckOutcome], None]


class MonitorStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class MonitorState:
    status: MonitorStatus = MonitorStatus.IDLE
    accepted_count: int = 0
    events_received: int = 0
    events_processed: int = 0
    events_dropped: int = 0
    last_app: str = ""
    last_tick: float = 0.0
    last_error: str = ""


class SkipMonitor:
    def __init__(
        self,
        logger: logging.Logger,
        settings: MonitorSettings,
        provider: AdbTreeProvider,
        sink: Optional[AdbActivationSink] = None,
        journal: Optional[RecordJournal] = None,
        log_rate_limit_seconds: float = 8.0,
    ) -> None:
        self.logger = logger.getChild("SkipMonitor")
        self.settings = settings
        self.provider = provider
        self.sink = sink
        self.journal = journal or RecordJournal(logger, capacity=settings.max_record_count)
        self.log_rate_limit_seconds = log_rate_limit_seconds

        self._state = MonitorState()
        self._state_lock = threading.Lock()
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue(maxsize=settings.event_queue_size)
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._start_timestamp = -1.0

        self._previous_app: Optional[str] = None
        self._distinct = False
        self._last_log: Dict[str, float] = {}

    @property
    def state(self) -> MonitorState:
        with self._state_lock:
            snapshot = MonitorState(**asdict(self._state))
        snapshot.accepted_count = self.journal.accepted_count
        return snapshot

    @property
    def accepted_count(self) -> int:
        return self.journal.accepted_count

    @property
    def start_timestamp(self) -> float:
        return self._start_timestamp

    @property
    def pid(self) -> int:
        return os.getpid()

    def is_running(self) -> bool:
        with self._state_lock:
            return self._state.status is MonitorStatus.RUNNING

    def hello(self) -> str:
        pid, uid = ProcessInspector.current_identity()
        return f"Hello from the skip monitor! My uid is {uid} & my pid is {pid}"

    # Session control

    def attach_channels(self, channels: PersistenceChannels) -> None:
        self.journal.attach(channels)
        self.journal.log("Persistence channels received")
        try:
            hint = self.journal.read_count_hint()
            self.journal.log(f"The accepted count parsed: {hint}")
            self.journal.load_and_reconcile(hint)
            self.journal.log("The record file parsed")
        except PersistenceParseError as exc:
            self.journal.log(str(exc), level=logging.WARNING)
        except Exception as exc:
            self.journal.dump_error(exc)

    def start(self) -> None:
        with self._state_lock:
            if self._state.status is MonitorStatus.RUNNING:
                raise ConfigurationError("Already connected!")
        self.journal.log(CONNECT_BANNER)
        self.journal.log(self.hello())
        self._previous_app = None
        self._distinct = False
        self._drain_queue()
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._worker_loop, name="SkipMonitorWorker", daemon=True)
        self._worker.start()
        try:
            self.provider.set_listener(self.post_event)
            self.provider.connect()
        except Exception as exc:
            self.provider.set_listener(None)
            self.journal.dump_error(exc)
            self._stop_worker()
            if isinstance(exc, ProviderUnavailable):
                raise
            raise ProviderUnavailable(f"cannot connect to the UI-tree provider: {exc}") from exc
        self._start_timestamp = time.time()
        with self._state_lock:
            self._state.status = MonitorStatus.RUNNING
            self._state.last_error = ""
        self.journal.log(f"Monitoring started at {format_current_time()}")

    def stop(self) -> None:
        with self._state_lock:
            if self._state.status is not MonitorStatus.RUNNING:
                raise ConfigurationError("Already disconnected!")
        try:
            self.provider.disconnect()
        except Exception as exc:
            self.journal.dump_error(exc)
        finally:
            self._stop_worker()
            with self._state_lock:
                self._state.status = MonitorStatus.IDLE

    def shutdown(self) -> None:
        """Stop if running and persist everything; persistence failures are only logged."""
        if self.is_running():
            self.stop()
        self.journal.log(f"Service is dead at {format_current_time()}. Goodbye, world!")
        if self.journal.channels is None:
            return
        try:
            self.journal.flush()
        except PersistenceIOError as exc:
            self.logger.error("Persisting on shutdown failed: %s", exc)

    def set_accepted_count(self, count: int) -> None:
        if count < 0:
            raise ConfigurationError(f"accepted count must not be negative: {count}")
        self.journal.accepted_count = count

    def set_basic_env_info(self, info: Optional[str]) -> None:
        self.journal.log(info)

    def records(self) -> List[AcceptanceRecord]:
        return self.journal.records()

    def persist_log(self) -> None:
        try:
            self.journal.flush_log()
        except PersistenceIOError as exc:
            self.logger.error("Persisting journal failed: %s", exc)

    # Event path

    def post_event(self, event: UiChangeEvent) -> bool:
        """Queue an event for the worker without ever blocking the caller."""
        with self._state_lock:
            self._state.events_received += 1
        try:
            self._queue.put_nowait(partial(self.handle_event, event))
        except queue.Full:
            with self._state_lock:
                self._state.events_dropped += 1
            return False
        return True

    def standalone_check(self, callback: ResultCallback) -> None:
        if not self.is_running():
            raise ConfigurationError("Monitor is not connected")
        self._queue.put(partial(self.run_standalone_check, callback), timeout=1.0)

    def handle_event(self, event: UiChangeEvent) -> Optional[CheckOutcome]:
        outcome: Optional[CheckOutcome] = None
        try:
            package = event.package
            if not package:
                return None
            if package != self._previous_app:
                self._distinct = True
            self._previous_app = package
            source = event.source
            if source is None:
                return None
            if self._is_ignored(package):
                return None

            outcome = CheckOutcome(source_app=package)
            select(source, self.settings.skip_label, outcome, True, self.sink)
            # Count once per foreground app; repeated triggers from the same app are not counted.
            if outcome.accepted and self._distinct:
                self._distinct = False
                self.journal.put_record(outcome)
            # Rendered after counting so the summary carries the latest count.
            if outcome.reason_kind is not ReasonKind.ILLEGAL_TARGET:
                self.journal.append_decision(self.render_decision(outcome, standalone=False))
            return outcome
        except Exception as exc:
            if outcome is not None:
                outcome.mark_error()
            self.journal.dump_error(exc)
            self._set_error("event", exc)
            return outcome
        finally:
            with self._state_lock:
                self._state.events_processed += 1
                self._state.last_tick = time.time()
                if event.package:
                    self._state.last_app = event.package

    def run_standalone_check(self, callback: Optional[ResultCallback] = None) -> CheckOutcome:
        outcome = CheckOutcome()
        try:
            root = self.provider.root_in_active_window()
            if root is None:
                outcome.mark(ReasonKind.ILLEGAL_TARGET, Axis.PORTRAIT)
            else:
                select(root, self.settings.skip_label, outcome, True, self.sink)
        except Exception as exc:
            outcome.mark_error()
            self.journal.dump_error(exc)
            self._set_error("standalone", exc)
        # Logged before the callback sees it; the callback may hold on to the outcome.
        self.journal.append_decision(self.render_decision(outcome, standalone=True))
        if callback is not None:
            callback(outcome)
        return outcome

    def render_decision(self, outcome: CheckOutcome, standalone: bool) -> str:
        lines = [
            STANDALONE_RESULT_BANNER if standalone else CHECK_RESULT_BANNER,
            f"timestamp: {format_current_time()}",
            f"result: {outcome.render()}",
        ]
        if outcome.accepted:
            lines.append(f"skip: count={self.journal.accepted_count}, injection type={outcome.activation.value}")
        return "\n".join(lines)

    def _is_ignored(self, package: str) -> bool:
        launcher = self.settings.launcher_package or self.provider.launcher_package()
        if launcher and package == launcher:
            return True
        if package == PLATFORM_PACKAGE:
            return True
        if any(package.startswith(prefix) for prefix in self.settings.ignored_package_prefixes):
            return True
        return package == self.settings.host_package

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                task()
            except Exception as exc:
                self._set_error("worker", exc)

    def _stop_worker(self) -> None:
        self._stop_event.set()
        worker = self._worker
        if worker and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout=2.0)
        self._worker = None

    def _drain_queue(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def _set_error(self, context: str, exc: BaseException) -> None:
        # Keyed by context and exception type so the map stays bounded.
        message = f"{context}: {exc}"
        key = f"{context}:{exc.__class__.__name__}"
        now = time.time()
        last = self._last_log.get(key, 0.0)
        if now - last >= self.log_rate_limit_seconds:
            self._last_log[key] = now
            self.logger.error(message)
        with self._state_lock:
            self._state.last_error = message
            self._state.last_tick = now


__all__ = [
    "PLATFORM_PACKAGE",
    "CHECK_RESULT_BANNER",
    "STANDALONE_RESULT_BANNER",
    "CONNECT_BANNER",
    "MonitorStatus",
    "MonitorState",
    "SkipMonitor",
]
