from __future__ import annotations

import os
import subprocess
import webbrowser
from typing import Optional, Set, Tuple

import psutil


class ProcessInspector:
    @staticmethod
    def _normalize_image_name(image_name: str) -> str:
        name = (image_name or "").strip().lower()
        return name[:-4] if name.endswith(".exe") else name

    @staticmethod
    def get_process_ids(image_name: str = "adb") -> Set[int]:
        normalized = ProcessInspector._normalize_image_name(image_name)
        if not normalized:
            return set()

        pids: Set[int] = set()
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                proc_info = proc.info or {}
                proc_name = ProcessInspector._normalize_image_name(proc_info.get("name") or "")
                if proc_name == normalized:
                    pids.add(int(proc_info["pid"]))
            except (psutil.Error, KeyError, TypeError, ValueError):
                continue
        return pids

    @staticmethod
    def current_identity() -> Tuple[int, Optional[int]]:
        proc = psutil.Process()
        try:
            uid: Optional[int] = proc.uids().effective
        except (AttributeError, psutil.Error):
            uid = None
        return proc.pid, uid

    @staticmethod
    def find_adb(adb_path: str = "adb") -> Tuple[bool, str]:
        try:
            result = subprocess.run(
                [adb_path, "version"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            return False, f"{exc.__class__.__name__}: {exc}"
        if result.returncode != 0:
            return False, (result.stderr or "").strip() or f"exit code {result.returncode}"
        lines = (result.stdout or "").strip().splitlines()
        return True, lines[0] if lines else "adb responded"

    @staticmethod
    def find_adb_server() -> Tuple[bool, str]:
        pids = ProcessInspector.get_process_ids("adb")
        if not pids:
            return False, "adb server process not found"
        return True, f"adb server running (pid {', '.join(str(p) for p in sorted(pids))})"


class ShellService:
    @staticmethod
    def open_folder(path: str) -> bool:
        try:
            os.makedirs(path, exist_ok=True)
            if os.name == "nt":
                os.startfile(path)  # type: ignore[attr-defined]
            else:
                webbrowser.open(f"file://{path}")
            return True
        except OSError:
            return False


__all__ = ["ProcessInspector", "ShellService"]
