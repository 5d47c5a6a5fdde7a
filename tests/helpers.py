"""Shared test helpers for the reboot-cycle harness test suite.

Fixtures are in conftest.py. This module contains non-fixture helpers
(fake sleep, scripted probes, Popen and subprocess.run mocks).
"""

import subprocess
from unittest.mock import MagicMock

from device_link import DeviceLink
from state_probe import PowerState


# --- Timing ---

class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


# --- Probe ---

class ScriptedProbe:
    """Probe returning states from a script.

    By default the last state repeats forever; with loop=True the whole
    script restarts, which lets one script describe every cycle of a run.
    """

    def __init__(self, *states: PowerState, loop: bool = False) -> None:
        self._states = list(states) or [PowerState.UNKNOWN]
        self._loop = loop
        self.reads = 0

    def read(self) -> PowerState:
        if self._loop:
            index = self.reads % len(self._states)
        else:
            index = min(self.reads, len(self._states) - 1)
        self.reads += 1
        return self._states[index]


def settings_output(value: str | None) -> str:
    """Build 'settings list global' output with the given bluetooth_on value."""
    lines = [
        "adb_enabled=1",
        "airplane_mode_on=0",
        "ble_scan_always_enabled=1",
    ]
    if value is not None:
        lines.append(f"bluetooth_on={value}")
    lines.extend(["boot_count=42", "wifi_on=1"])
    return "\n".join(lines) + "\n"


# --- Popen mock for logcat streaming ---

class MockPopen:
    """Mock subprocess.Popen standing in for a running logcat stream."""

    def __init__(self, pid: int = 4242, ignore_terminate: bool = False) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.ignore_terminate = ignore_terminate
        self.terminate_calls = 0
        self.kill_calls = 0

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.returncode = -15

    def kill(self) -> None:
        self.kill_calls += 1
        self.returncode = -9

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            raise subprocess.TimeoutExpired("adb logcat", timeout)
        return self.returncode


def make_link(popen: MockPopen | None = None) -> MagicMock:
    """DeviceLink mock whose stream_logs hands out MockPopen instances."""
    link = MagicMock(spec=DeviceLink)
    link.spawned = []

    def stream_logs(out, buffer="all"):
        proc = popen or MockPopen(pid=4242 + len(link.spawned))
        link.spawned.append(proc)
        return proc

    link.stream_logs.side_effect = stream_logs
    return link


# --- subprocess.run mock for adb commands ---

def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    """Build a mock subprocess.run result."""
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def make_adb_dispatcher(responses: dict | None = None, default=None):
    """Create a subprocess.run side_effect for adb command lines.

    Keys are the adb sub-command tuple after the executable and optional
    '-s <serial>' (e.g. ("shell", "whoami") or ("root",)); values are a
    result, an exception to raise, or a list consumed one item per call.
    Unmatched commands get `default` or a successful empty result.
    """
    responses = dict(responses or {})
    calls: list[list[str]] = []

    def side_effect(*args, **kwargs):
        cmd = list(args[0] if args else kwargs.get("args", []))
        calls.append(cmd)
        sub = cmd[1:]
        if len(sub) >= 2 and sub[0] == "-s":
            sub = sub[2:]
        key = tuple(sub)
        response = responses.get(key, default if default is not None else completed())
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, BaseException):
            raise response
        return response

    side_effect.calls = calls
    return side_effect
