"""Background logcat capture bracketing a cycle's test window."""

from __future__ import annotations

import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO, Iterator, Optional

from config import CaptureConfig
from device_link import DeviceLink

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class CaptureBusyError(RuntimeError):
    """A capture is already running."""


@dataclass(eq=False)
class CaptureHandle:
    """A running logcat process and the file it writes to."""

    path: Path
    process: subprocess.Popen = field(repr=False)
    _out: IO = field(repr=False)
    stopped: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid


def capture_filename(
    cycle: int, config: CaptureConfig, now: Optional[datetime] = None
) -> Path:
    """Build '<prefix>_<cycle>_<YYYYMMDD-HHMMSS>.<ext>' under the output dir."""
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return Path(config.output_dir) / f"{config.file_prefix}_{cycle}_{stamp}.{config.extension}"


class LogCapture:
    """Starts and stops the logcat stream. At most one capture is live at a time."""

    def __init__(self, link: DeviceLink, config: Optional[CaptureConfig] = None) -> None:
        self.link = link
        self.config = config or CaptureConfig()
        self._active: Optional[CaptureHandle] = None

    @property
    def active(self) -> Optional[CaptureHandle]:
        return self._active

    def start(self, path: str | Path) -> CaptureHandle:
        if self._active is not None:
            raise CaptureBusyError(
                f"Capture to {self._active.path} is still running (PID {self._active.pid})"
            )
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        out = open(path, "wb")
        try:
            process = self.link.stream_logs(out, buffer=self.config.buffer)
        except BaseException:
            out.close()
            raise
        handle = CaptureHandle(path=path, process=process, _out=out)
        self._active = handle
        logger.info("Log capture started: %s (PID %d)", path, handle.pid)
        return handle

    def stop(self, handle: CaptureHandle) -> None:
        """Terminate the capture process. Safe to call more than once."""
        if handle.stopped:
            return
        handle.stopped = True
        if self._active is handle:
            self._active = None

        proc = handle.process
        try:
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=self.config.stop_timeout_seconds)
                except subprocess.TimeoutExpired:
                    logger.warning(
                        "logcat PID %d ignored SIGTERM, killing", handle.pid
                    )
                    proc.kill()
                    proc.wait(timeout=self.config.stop_timeout_seconds)
            else:
                logger.info(
                    "logcat PID %d already exited (rc=%s)", handle.pid, proc.returncode
                )
        except ProcessLookupError:
            logger.info("logcat PID %d already gone", handle.pid)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Failed to stop logcat PID %d: %s", handle.pid, e)
        finally:
            try:
                handle._out.close()
            except OSError as e:
                logger.warning("Failed to close %s: %s", handle.path, e)
        logger.info("Log capture stopped: %s", handle.path)

    @contextmanager
    def capture(self, path: str | Path) -> Iterator[CaptureHandle]:
        """Run a capture for the duration of the with-block."""
        handle = self.start(path)
        try:
            yield handle
        finally:
            self.stop(handle)
