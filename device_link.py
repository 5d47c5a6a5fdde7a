"""Thin wrapper around the adb executable.

Every device interaction of the harness goes through DeviceLink: waiting for
the device, adb root, one-shot shell commands, reboot, restarting the adb
server and starting a logcat stream. Failures are surfaced as BridgeError
subclasses so the cycle can tell fatal conditions from diagnostic noise.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from typing import IO, Callable, Optional

from config import BridgeConfig

logger = logging.getLogger(__name__)

# adbd may still be restarting after adb root
IDENTITY_ATTEMPTS = 3
IDENTITY_RETRY_SECONDS = 1.0


class BridgeError(Exception):
    """Base class for adb failures."""


class ConnectivityError(BridgeError):
    """Device unreachable or adb unusable."""


class PrivilegeError(BridgeError):
    """Root shell could not be obtained."""


class CommandError(BridgeError):
    """A one-shot adb command failed."""

    def __init__(
        self, command: str, returncode: Optional[int] = None, stderr: str = ""
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f"rc={returncode}" if returncode is not None else "timed out"
        message = f"adb command failed ({detail}): {command}"
        if stderr:
            message += f": {stderr.strip()[:200]}"
        super().__init__(message)


class DeviceLink:
    """Runs adb commands against a single device."""

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or BridgeConfig()
        self._sleep = sleep

    def _base_args(self) -> list[str]:
        args = [self.config.adb_path]
        if self.config.serial:
            args.extend(["-s", self.config.serial])
        return args

    def _adb(
        self, *args: str, timeout: Optional[float] = None
    ) -> subprocess.CompletedProcess:
        """Run adb with the given arguments and return the completed process.

        Raises ConnectivityError if adb itself cannot be executed. Timeouts
        propagate as subprocess.TimeoutExpired for the caller to classify.
        """
        cmd = self._base_args() + list(args)
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout or self.config.command_timeout_seconds,
            )
        except FileNotFoundError as e:
            raise ConnectivityError(
                f"adb not found at '{self.config.adb_path}'. "
                "Install Android platform-tools or set bridge.adb_path."
            ) from e

    def version(self) -> str:
        """Return the first line of 'adb version'."""
        try:
            result = self._adb("version")
        except subprocess.TimeoutExpired as e:
            raise ConnectivityError("adb version timed out") from e
        if result.returncode != 0:
            raise ConnectivityError(f"adb version failed: {result.stderr.strip()[:200]}")
        return result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""

    def wait_for_device(self) -> None:
        """Block until the device is reachable.

        A wait that times out is retried once after restarting the adb
        server; a second timeout or any adb error is a ConnectivityError.
        """
        timeout = self.config.wait_for_device_timeout_seconds
        for attempt in (1, 2):
            try:
                result = self._adb("wait-for-device", timeout=timeout)
            except subprocess.TimeoutExpired:
                if attempt == 1:
                    logger.warning(
                        "Device not reachable after %ds, restarting adb server", timeout
                    )
                    self.restart_bridge_service()
                    continue
                raise ConnectivityError(
                    f"Device not reachable after {timeout}s (adb server restarted once)"
                )
            if result.returncode != 0:
                raise ConnectivityError(
                    f"adb wait-for-device failed (rc={result.returncode}): "
                    f"{result.stderr.strip()[:200]}"
                )
            logger.debug("Device online")
            return

    def elevate(self) -> None:
        """Restart adbd as root and verify the shell identity."""
        try:
            result = self._adb("root")
        except subprocess.TimeoutExpired as e:
            raise PrivilegeError("adb root timed out") from e
        output = (result.stdout + result.stderr).lower()
        if result.returncode != 0 or "cannot run as root" in output:
            raise PrivilegeError(
                f"adb root refused: {(result.stdout + result.stderr).strip()[:200]}"
            )

        # adbd restarts when switching to root
        self.wait_for_device()

        expected = self.config.privileged_user
        problem = ""
        for attempt in range(1, IDENTITY_ATTEMPTS + 1):
            if attempt > 1:
                logger.debug("Identity check %d/%d: %s", attempt, IDENTITY_ATTEMPTS, problem)
                self._sleep(IDENTITY_RETRY_SECONDS)
            try:
                identity = self.run_shell("whoami").strip()
            except CommandError as e:
                problem = f"Identity check failed: {e}"
                continue
            if identity == expected:
                logger.info("Shell elevated to %s", identity)
                return
            problem = f"Shell runs as '{identity}', expected '{expected}'"
        raise PrivilegeError(problem)

    def run_shell(self, command: str) -> str:
        """Run a one-shot shell command and return its stdout."""
        try:
            result = self._adb("shell", *shlex.split(command))
        except subprocess.TimeoutExpired as e:
            raise CommandError(command) from e
        if result.returncode != 0:
            raise CommandError(command, result.returncode, result.stderr)
        return result.stdout

    def reboot(self) -> None:
        """Request a reboot. Does not wait for the device to go down or come back."""
        try:
            result = self._adb("reboot")
        except subprocess.TimeoutExpired as e:
            raise CommandError("reboot") from e
        if result.returncode != 0:
            raise CommandError("reboot", result.returncode, result.stderr)
        logger.info("Reboot requested")

    def restart_bridge_service(self) -> None:
        """Restart the adb server. Best effort: failures are only logged."""
        for action in ("kill-server", "start-server"):
            try:
                result = subprocess.run(
                    [self.config.adb_path, action],
                    capture_output=True,
                    text=True,
                    timeout=self.config.command_timeout_seconds,
                )
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning("adb %s failed: %s", action, e)
                continue
            if result.returncode != 0:
                logger.warning(
                    "adb %s failed (rc=%d): %s",
                    action, result.returncode, result.stderr.strip()[:200],
                )

    def stream_logs(self, out: IO, buffer: str = "all") -> subprocess.Popen:
        """Start 'adb logcat' writing to an open file; returns immediately."""
        cmd = self._base_args() + ["logcat", "-b", buffer]
        logger.debug("Spawning: %s", " ".join(cmd))
        try:
            return subprocess.Popen(cmd, stdout=out, stderr=subprocess.STDOUT)
        except FileNotFoundError as e:
            raise ConnectivityError(
                f"adb not found at '{self.config.adb_path}'"
            ) from e
