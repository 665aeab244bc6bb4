import logging
import subprocess

import pytest

import skip_automator.adb_provider as adb_provider
from skip_automator.adb_provider import (
    VIRTUAL_ROOT_CLASS,
    AdbActivationSink,
    AdbBridge,
    AdbError,
    AdbTreeProvider,
    UiTreeNode,
    parse_bounds,
    parse_hierarchy,
)
from skip_automator.errors import ProviderUnavailable

SINGLE_WINDOW_DUMP = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node index="0" text="" class="android.widget.FrameLayout" package="com.example.video"
        clickable="false" bounds="[0,0][1080,2400]">
    <node index="0" text="" class="android.widget.LinearLayout" package="com.example.video"
          clickable="true" bounds="[800,150][1000,250]">
      <node index="0" text="跳过" resource-id="com.example.video:id/skip" class="android.widget.TextView"
            package="com.example.video" clickable="false" visible-to-user="true" bounds="[825,170][975,230]" />
    </node>
    <node index="1" text="Ad" class="android.widget.ImageView" package="com.example.video"
          clickable="false" visible-to-user="false" bounds="[0,0][1080,2400]" />
  </node>
</hierarchy>
"""

TWO_WINDOW_DUMP = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node text="" class="android.widget.FrameLayout" package="com.example.video" bounds="[0,0][1080,2400]" />
  <node text="跳过" class="android.widget.Button" package="com.example.overlay" clickable="true"
        bounds="[900,100][1080,200]" />
</hierarchy>
"""


class FakeBridge:
    def __init__(self, responses=None, state="device"):
        self.timeout = 1.0
        self.calls = []
        self.responses = dict(responses or {})
        self.state = state

    def run(self, args):
        self.calls.append(list(args))
        if list(args) == ["get-state"]:
            return self.state + "\n"
        return ""

    def shell(self, *args):
        self.calls.append(["shell", *args])
        response = self.responses.get(args[0], "")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response()
        return response


class FakeCompleted:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_parse_bounds_reads_uiautomator_format():
    assert parse_bounds("[825,170][975,230]") == (825, 170, 975, 230)
    assert parse_bounds("[-10,0][5,5]") == (-10, 0, 5, 5)
    assert parse_bounds("garbage") == (0, 0, 0, 0)


def test_parse_hierarchy_builds_linked_tree():
    root = parse_hierarchy(SINGLE_WINDOW_DUMP)

    assert root.package == "com.example.video"
    assert root.bounds == (0, 0, 1080, 2400)
    [skip] = root.find_by_text("跳过")
    assert skip.resource_id == "com.example.video:id/skip"
    assert skip.clickable is False
    assert skip.parent.clickable is True
    assert skip.parent.bounds == (800, 150, 1000, 250)
    assert skip.window is root
    assert skip.window_bounds() == (0, 0, 1080, 2400)
    [ad] = root.find_by_text("Ad")
    assert ad.visible_to_user is False


def test_visible_to_user_defaults_to_true():
    root = parse_hierarchy(TWO_WINDOW_DUMP)
    assert all(node.visible_to_user for node in root.iter_subtree())


def test_parse_hierarchy_wraps_several_windows_in_virtual_root():
    root = parse_hierarchy(TWO_WINDOW_DUMP)

    assert root.class_name == VIRTUAL_ROOT_CLASS
    assert root.package == "com.example.video"
    assert root.bounds == (0, 0, 1080, 2400)
    assert len(root.children) == 2
    [skip] = root.find_by_text("跳过")
    assert skip.package == "com.example.overlay"
    assert skip.window_bounds() == (900, 100, 1080, 200)


def test_parse_hierarchy_skips_leading_noise():
    root = parse_hierarchy("UI hierchary dumped to: /sdcard/window_dump.xml\n<hierarchy rotation=\"0\">"
                           "<node package=\"com.example.video\" bounds=\"[0,0][10,10]\" /></hierarchy>")
    assert root.package == "com.example.video"


@pytest.mark.parametrize("text", ["", "ERROR: null root node returned by UiTestAutomationBridge.", "<hierarchy><node"])
def test_parse_hierarchy_rejects_bad_dumps(text):
    with pytest.raises(ProviderUnavailable):
        parse_hierarchy(text)


def test_parse_hierarchy_without_windows_returns_none():
    assert parse_hierarchy("<hierarchy rotation=\"0\"></hierarchy>") is None


def test_find_by_text_matches_exactly_and_includes_self():
    node = UiTreeNode(text="跳过")
    node.add_child(UiTreeNode(text="跳过广告"))
    assert node.find_by_text("跳过") == [node]


def test_bridge_builds_command_with_serial(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["timeout"] = kwargs["timeout"]
        return FakeCompleted(stdout="device\n")

    monkeypatch.setattr(adb_provider.subprocess, "run", fake_run)
    bridge = AdbBridge("/opt/adb", serial="emulator-5554", timeout=3.0)

    assert bridge.shell("echo", "hi") == "device\n"
    assert seen["cmd"] == ["/opt/adb", "-s", "emulator-5554", "shell", "echo", "hi"]
    assert seen["timeout"] == 3.0


def test_bridge_raises_on_failed_command(monkeypatch):
    monkeypatch.setattr(
        adb_provider.subprocess, "run", lambda *_a, **_k: FakeCompleted(returncode=1, stderr="no devices/emulators found")
    )
    with pytest.raises(AdbError, match="no devices"):
        AdbBridge().run(["get-state"])


@pytest.mark.parametrize("exc", [FileNotFoundError("adb"), subprocess.TimeoutExpired(["adb"], 1)])
def test_bridge_raises_when_adb_cannot_run(monkeypatch, exc):
    def fake_run(*_args, **_kwargs):
        raise exc

    monkeypatch.setattr(adb_provider.subprocess, "run", fake_run)
    with pytest.raises(AdbError):
        AdbBridge().run(["devices"])


def test_poll_once_emits_only_when_dump_changes():
    dumps = [SINGLE_WINDOW_DUMP, SINGLE_WINDOW_DUMP, TWO_WINDOW_DUMP]
    bridge = FakeBridge({"cat": lambda: dumps.pop(0)})
    provider = AdbTreeProvider(bridge, logging.getLogger("test"))
    events = []
    provider.set_listener(events.append)

    first = provider.poll_once()
    assert provider.poll_once() is None
    third = provider.poll_once()

    assert events == [first, third]
    assert first.package == "com.example.video"
    assert first.source.find_by_text("跳过")
    assert ["shell", "uiautomator", "dump", "/sdcard/window_dump.xml"] in bridge.calls


def test_connect_requires_device_state():
    provider = AdbTreeProvider(FakeBridge(state="unauthorized"), logging.getLogger("test"))
    with pytest.raises(ProviderUnavailable, match="unauthorized"):
        provider.connect()
    assert not provider.is_connected()


def test_connect_and_disconnect_manage_poll_thread():
    bridge = FakeBridge({"cat": SINGLE_WINDOW_DUMP})
    provider = AdbTreeProvider(bridge, logging.getLogger("test"), poll_interval_ms=100)
    provider.set_listener(lambda _event: None)

    provider.connect()
    assert provider.is_connected()
    provider.disconnect()

    assert not provider.is_connected()
    assert provider._listener is None


def test_launcher_package_is_resolved_once():
    bridge = FakeBridge({"cmd": "priority=0 preferredOrder=0 match=0x108000\ncom.example.launcher/.Launcher\n"})
    provider = AdbTreeProvider(bridge, logging.getLogger("test"))

    assert provider.launcher_package() == "com.example.launcher"
    assert provider.launcher_package() == "com.example.launcher"
    assert sum(1 for call in bridge.calls if call[:2] == ["shell", "cmd"]) == 1


def test_launcher_override_and_lookup_failure():
    provider = AdbTreeProvider(FakeBridge(), logging.getLogger("test"), launcher_override="com.custom.home")
    assert provider.launcher_package() == "com.custom.home"

    failing = AdbTreeProvider(FakeBridge({"cmd": AdbError("cmd: not found")}), logging.getLogger("test"))
    assert failing.launcher_package() is None


def test_activation_sink_taps_center_and_sends_pointer_pair():
    bridge = FakeBridge()
    sink = AdbActivationSink(bridge, logging.getLogger("test"))

    sink.invoke(UiTreeNode(text="跳过", bounds=(825, 170, 975, 230)))
    sink.tap(900.0, 200.5)

    assert bridge.calls == [
        ["shell", "input", "tap", "900", "200"],
        ["shell", "input", "motionevent", "DOWN", "900", "200"],
        ["shell", "input", "motionevent", "UP", "900", "200"],
    ]


def test_failed_launcher_lookup_backs_off():
    bridge = FakeBridge({"cmd": AdbError("cmd: not found")})
    provider = AdbTreeProvider(bridge, logging.getLogger("test"))

    assert [provider.launcher_package() for _ in range(3)] == [None, None, None]
    assert sum(1 for call in bridge.calls if call[:2] == ["shell", "cmd"]) == 1

    provider._launcher_retry_at = 0.0
    bridge.responses["cmd"] = "com.example.launcher/.Launcher\n"
    assert provider.launcher_package() == "com.example.launcher"
    assert sum(1 for call in bridge.calls if call[:2] == ["shell", "cmd"]) == 2


def test_launcher_lookup_retries_immediately_without_backoff():
    bridge = FakeBridge({"cmd": AdbError("cmd: not found")})
    provider = AdbTreeProvider(bridge, logging.getLogger("test"), launcher_retry_seconds=0.0)

    provider.launcher_package()
    provider.launcher_package()

    assert sum(1 for call in bridge.calls if call[:2] == ["shell", "cmd"]) == 2


def test_poll_warnings_are_rate_limited_per_error_type():
    provider = AdbTreeProvider(FakeBridge(), logging.getLogger("test"))
    for i in range(50):
        provider._warn(ProviderUnavailable(f"dump failed on attempt {i}"))
    provider._warn(AdbError("adb: device offline"))

    assert sorted(provider._last_log) == ["AdbError", "ProviderUnavailable"]
