"""UI-tree provider and activation sink backed by ``adb``.

The device is polled with ``uiautomator dump``; every dump that differs from
the previous one is delivered to the listener as a ``UiChangeEvent`` carrying
the freshly parsed tree. Activation goes through ``input tap`` (direct invoke)
or a ``DOWN``/``UP`` pair of ``input motionevent`` (synthetic pointer).
"""

from __future__ import annotations

import hashlib
import logging
import re
import subprocess
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from .errors import ProviderUnavailable
from .outcome import Rect, rect_center

BOUNDS_PATTERN = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")
HOME_INTENT_ARGS = (
    "cmd",
    "package",
    "resolve-activity",
    "--brief",
    "-a",
    "android.intent.action.MAIN",
    "-c",
    "android.intent.category.HOME",
)
VIRTUAL_ROOT_CLASS = "VirtualRoot"
LAUNCHER_RETRY_SECONDS = 60.0


class AdbError(ProviderUnavailable):
    pass


@dataclass(eq=False)
class UiTreeNode:
    text: str = ""
    package: str = ""
    bounds: Rect = (0, 0, 0, 0)
    clickable: bool = False
    visible_to_user: bool = True
    class_name: str = ""
    resource_id: str = ""
    parent: Optional["UiTreeNode"] = field(default=None, repr=False)
    window: Optional["UiTreeNode"] = field(default=None, repr=False)
    children: List["UiTreeNode"] = field(default_factory=list, repr=False)

    def bounds_in_screen(self) -> Rect:
        return self.bounds

    def window_bounds(self) -> Rect:
        return (self.window or self).bounds

    def iter_subtree(self) -> Iterator["UiTreeNode"]:
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_by_text(self, label: str) -> List["UiTreeNode"]:
        return [node for node in self.iter_subtree() if node.text == label]

    def add_child(self, child: "UiTreeNode") -> "UiTreeNode":
        child.parent = self
        self.children.append(child)
        return child


@dataclass
class UiChangeEvent:
    package: Optional[str]
    source: Optional[UiTreeNode]
    timestamp: float = field(default_factory=time.time)


def parse_bounds(value: str) -> Rect:
    match = BOUNDS_PATTERN.search(value or "")
    if not match:
        return (0, 0, 0, 0)
    left, top, right, bottom = (int(x) for x in match.groups())
    return (left, top, right, bottom)


def _is_true(element: ET.Element, name: str, default: bool = False) -> bool:
    value = element.get(name)
    if value is None:
        return default
    return value.lower() == "true"


def _build_node(element: ET.Element, window: Optional[UiTreeNode]) -> UiTreeNode:
    node = UiTreeNode(
        text=element.get("text", ""),
        package=element.get("package", ""),
        bounds=parse_bounds(element.get("bounds", "")),
        clickable=_is_true(element, "clickable"),
        visible_to_user=_is_true(element, "visible-to-user", default=True),
        class_name=element.get("class", ""),
        resource_id=element.get("resource-id", ""),
    )
    node.window = window or node
    for child in element:
        if child.tag == "node":
            node.add_child(_build_node(child, node.window))
    return node


def parse_hierarchy(xml_text: str) -> Optional[UiTreeNode]:
    """Parse a ``uiautomator dump`` into a tree of ``UiTreeNode``.

    Each top-level node is a window root. Several window roots are wrapped in
    a virtual root whose package is the first window's package.
    """
    content = (xml_text or "").strip()
    if not content.startswith("<?xml") and not content.startswith("<hierarchy"):
        start = content.find("<hierarchy")
        if start == -1:
            raise ProviderUnavailable("no <hierarchy> tag in uiautomator output")
        content = content[start:]
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ProviderUnavailable(f"malformed uiautomator dump: {exc}") from exc

    if root.tag != "hierarchy":
        return _build_node(root, None) if root.tag == "node" else None

    windows = [_build_node(child, None) for child in root if child.tag == "node"]
    if not windows:
        return None
    if len(windows) == 1:
        return windows[0]

    virtual = UiTreeNode(
        package=windows[0].package,
        bounds=(
            min(w.bounds[0] for w in windows),
            min(w.bounds[1] for w in windows),
            max(w.bounds[2] for w in windows),
            max(w.bounds[3] for w in windows),
        ),
        class_name=VIRTUAL_ROOT_CLASS,
    )
    virtual.window = virtual
    for window in windows:
        virtual.children.append(window)
        window.parent = virtual
    return virtual


class AdbBridge:
    def __init__(self, adb_path: str = "adb", serial: str = "", timeout: float = 10.0) -> None:
        self.adb_path = adb_path or "adb"
        self.serial = serial
        self.timeout = timeout

    def command(self, args: Sequence[str]) -> List[str]:
        cmd = [self.adb_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        cmd.extend(args)
        return cmd

    def run(self, args: Sequence[str]) -> str:
        cmd = self.command(args)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise AdbError(f"ADB command failed ({' '.join(cmd)}): {exc.__class__.__name__}: {exc}") from exc
        if proc.returncode != 0:
            raise AdbError(f"ADB command failed ({' '.join(cmd)}): {(proc.stderr or '').strip()}")
        return proc.stdout or ""

    def shell(self, *args: str) -> str:
        return self.run(["shell", *args])


class AdbTreeProvider:
    def __init__(
        self,
        bridge: AdbBridge,
        logger: logging.Logger,
        poll_interval_ms: int = 500,
        remote_path: str = "/sdcard/window_dump.xml",
        launcher_override: str = "",
        log_rate_limit_seconds: float = 8.0,
        launcher_retry_seconds: float = LAUNCHER_RETRY_SECONDS,
    ) -> None:
        self.bridge = bridge
        self.logger = logger.getChild("AdbTreeProvider")
        self.poll_interval_ms = poll_interval_ms
        self.remote_path = remote_path
        self.launcher_override = launcher_override
        self.log_rate_limit_seconds = log_rate_limit_seconds
        self.launcher_retry_seconds = launcher_retry_seconds

        self._listener: Optional[Callable[[UiChangeEvent], None]] = None
        self._listener_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None
        self._last_digest: Optional[str] = None
        self._launcher_cache: Optional[str] = None
        self._launcher_resolved = False
        self._launcher_retry_at = 0.0
        self._last_log: Dict[str, float] = {}

    def connect(self) -> None:
        state = self.bridge.run(["get-state"]).strip()
        if state != "device":
            raise ProviderUnavailable(f"adb device state is {state!r}")
        self._last_digest = None
        self._stop_event.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, name="AdbTreeProvider", daemon=True)
        self._poll_thread.start()

    def disconnect(self) -> None:
        """Stop polling and drop the listener unconditionally."""
        self.set_listener(None)
        self._stop_event.set()
        if self._poll_thread and self._poll_thread.is_alive() and self._poll_thread is not threading.current_thread():
            self._poll_thread.join(timeout=self.bridge.timeout + 1.0)
        self._poll_thread = None

    def is_connected(self) -> bool:
        return bool(self._poll_thread and self._poll_thread.is_alive())

    def set_listener(self, listener: Optional[Callable[[UiChangeEvent], None]]) -> None:
        with self._listener_lock:
            self._listener = listener

    def dump(self) -> str:
        self.bridge.shell("uiautomator", "dump", self.remote_path)
        return self.bridge.shell("cat", self.remote_path)

    def root_in_active_window(self) -> Optional[UiTreeNode]:
        return parse_hierarchy(self.dump())

    def launcher_package(self) -> Optional[str]:
        if self.launcher_override:
            return self.launcher_override
        if self._launcher_resolved:
            return self._launcher_cache
        now = time.time()
        if now < self._launcher_retry_at:
            return None
        try:
            output = self.bridge.shell(*HOME_INTENT_ARGS)
        except AdbError as exc:
            self._launcher_retry_at = now + self.launcher_retry_seconds
            self.logger.warning("Launcher lookup failed, retrying in %.0fs: %s", self.launcher_retry_seconds, exc)
            return None
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        component = lines[-1] if lines else ""
        self._launcher_cache = component.split("/", 1)[0] if "/" in component else None
        self._launcher_resolved = True
        return self._launcher_cache

    def poll_once(self) -> Optional[UiChangeEvent]:
        xml_text = self.dump()
        digest = hashlib.sha1(xml_text.encode("utf-8")).hexdigest()
        if digest == self._last_digest:
            return None
        self._last_digest = digest
        root = parse_hierarchy(xml_text)
        event = UiChangeEvent(package=(root.package or None) if root else None, source=root)
        with self._listener_lock:
            listener = self._listener
        if listener is not None:
            listener(event)
        return event

    def _poll_loop(self) -> None:
        interval = max(int(self.poll_interval_ms), 100) / 1000.0
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except ProviderUnavailable as exc:
                self._warn(exc)
            self._stop_event.wait(interval)

    def _warn(self, exc: BaseException) -> None:
        key = exc.__class__.__name__
        now = time.time()
        last = self._last_log.get(key, 0.0)
        if now - last >= self.log_rate_limit_seconds:
            self._last_log[key] = now
            self.logger.warning(str(exc))


class AdbActivationSink:
    def __init__(self, bridge: AdbBridge, logger: logging.Logger) -> None:
        self.bridge = bridge
        self.logger = logger.getChild("AdbActivationSink")

    def invoke(self, node: UiTreeNode) -> None:
        x, y = rect_center(node.bounds_in_screen())
        self.logger.debug("invoke %r at (%d, %d)", node.text, int(x), int(y))
        self.bridge.shell("input", "tap", str(int(x)), str(int(y)))

    def tap(self, x: float, y: float) -> None:
        xs, ys = str(int(x)), str(int(y))
        self.logger.debug("pointer down/up at (%s, %s)", xs, ys)
        self.bridge.shell("input", "motionevent", "DOWN", xs, ys)
        self.bridge.shell("input", "motionevent", "UP", xs, ys)


__all__ = [
    "AdbError",
    "UiTreeNode",
    "UiChangeEvent",
    "parse_bounds",
    "parse_hierarchy",
    "AdbBridge",
    "AdbTreeProvider",
    "AdbActivationSink",
]
