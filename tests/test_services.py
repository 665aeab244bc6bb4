import os
import subprocess

import psutil

from skip_automator import services


def test_process_inspector_isolates_per_process_psutil_errors(monkeypatch):
    class BrokenProc:
        @property
        def info(self):
            raise psutil.AccessDenied(pid=1)

    class GoodProc:
        info = {"pid": 4242, "name": "adb"}

    class OtherProc:
        info = {"pid": 7, "name": "python3"}

    monkeypatch.setattr(services.psutil, "process_iter", lambda _attrs: [BrokenProc(), GoodProc(), OtherProc()])

    assert services.ProcessInspector.get_process_ids("adb") == {4242}


def test_process_inspector_normalizes_windows_image_names(monkeypatch):
    class WinProc:
        info = {"pid": 5000, "name": "ADB.EXE"}

    monkeypatch.setattr(services.psutil, "process_iter", lambda _attrs: [WinProc()])

    assert services.ProcessInspector.get_process_ids("adb.exe") == {5000}
    assert services.ProcessInspector.get_process_ids("") == set()


def test_current_identity_reports_this_process():
    pid, uid = services.ProcessInspector.current_identity()
    assert pid == os.getpid()
    if hasattr(os, "geteuid"):
        assert uid == os.geteuid()


def test_find_adb_reports_version(monkeypatch):
    class Result:
        returncode = 0
        stdout = "Android Debug Bridge version 1.0.41\nVersion 34.0.5\n"
        stderr = ""

    monkeypatch.setattr(services.subprocess, "run", lambda *_a, **_k: Result())

    ok, detail = services.ProcessInspector.find_adb("/opt/adb")
    assert ok is True
    assert detail == "Android Debug Bridge version 1.0.41"


def test_find_adb_handles_missing_binary(monkeypatch):
    def fake_run(*_args, **_kwargs):
        raise FileNotFoundError("adb")

    monkeypatch.setattr(services.subprocess, "run", fake_run)

    ok, detail = services.ProcessInspector.find_adb()
    assert ok is False
    assert "FileNotFoundError" in detail


def test_find_adb_handles_timeout(monkeypatch):
    def fake_run(*_args, **_kwargs):
        raise subprocess.TimeoutExpired(["adb", "version"], 5)

    monkeypatch.setattr(services.subprocess, "run", fake_run)

    assert services.ProcessInspector.find_adb()[0] is False


def test_find_adb_server(monkeypatch):
    monkeypatch.setattr(services.ProcessInspector, "get_process_ids", staticmethod(lambda _name="adb": {12, 3}))
    assert services.ProcessInspector.find_adb_server() == (True, "adb server running (pid 3, 12)")

    monkeypatch.setattr(services.ProcessInspector, "get_process_ids", staticmethod(lambda _name="adb": set()))
    assert services.ProcessInspector.find_adb_server()[0] is False


def test_shell_service_open_folder(monkeypatch, tmp_path):
    opened = []
    monkeypatch.setattr(services.os, "name", "posix")
    monkeypatch.setattr(services.webbrowser, "open", lambda url: opened.append(url) or True)

    target = tmp_path / "data"
    assert services.ShellService.open_folder(str(target)) is True
    assert target.is_dir()
    assert opened == [f"file://{target}"]
