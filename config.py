"""Configuration validation for the Bluetooth reboot-cycle harness."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIG_PATH = Path("radio_cycle.json")


@dataclass
class Result(Generic[T]):
    """Type-safe result wrapper for operations that can fail."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "UNKNOWN") -> Result[T]:
        return cls(success=False, error=error, error_code=code)


class RunConfig(BaseModel):
    """Cycle budget and the fixed delays applied inside each cycle."""

    model_config = ConfigDict(frozen=True)

    max_cycles: int = Field(default=5, ge=1, le=10_000)
    verify_timeout_seconds: int = Field(
        default=10, ge=1, le=600,
        description="Number of one-second polls allowed for a toggle to converge",
    )
    post_transition_settle_seconds: float = Field(default=5.0, ge=0)
    post_reboot_wait_seconds: float = Field(
        default=60.0, ge=0,
        description="Delay after the reboot request before waiting for the device",
    )
    post_online_stabilize_seconds: float = Field(default=30.0, ge=0)
    toggle_failure_policy: Literal["abort_run", "continue"] = Field(
        default="abort_run",
        description="'abort_run' ends the run on a failed toggle; 'continue' skips the rest of that cycle",
    )


class BridgeConfig(BaseModel):
    """adb invocation settings."""

    model_config = ConfigDict(frozen=True)

    adb_path: str = Field(default="adb")
    serial: Optional[str] = Field(
        default=None,
        description="Device serial passed as 'adb -s'; None uses the only attached device",
    )
    command_timeout_seconds: int = Field(default=30, ge=1, le=600)
    wait_for_device_timeout_seconds: int = Field(default=300, ge=1, le=3600)
    privileged_user: str = Field(default="root")


class CaptureConfig(BaseModel):
    """logcat capture file naming and teardown."""

    model_config = ConfigDict(frozen=True)

    output_dir: Path = Field(default=Path("."))
    file_prefix: str = Field(default="logcat", min_length=1)
    extension: str = Field(default="txt", min_length=1)
    buffer: str = Field(default="all")
    stop_timeout_seconds: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    """Log output redaction settings."""

    model_config = ConfigDict(frozen=True)

    redact_patterns: list[str] = Field(
        default_factory=lambda: [
            r"(?i)\b(?:[0-9a-f]{2}:){5}[0-9a-f]{2}\b",
        ]
    )


class HarnessConfig(BaseModel):
    """Root configuration model for radio_cycle.json."""

    model_config = ConfigDict(frozen=True)

    run: RunConfig = Field(default_factory=RunConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str | Path) -> Result[HarnessConfig]:
    """Load and validate harness config from JSON file."""
    path = Path(config_path)
    if not path.exists():
        logger.info("Config not found at %s, using defaults", path)
        return Result.ok(HarnessConfig())

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        config = HarnessConfig.model_validate(raw)
        return Result.ok(config)
    except json.JSONDecodeError as e:
        return Result.fail(f"Invalid JSON in {path}: {e}", "JSON_ERROR")
    except Exception as e:
        return Result.fail(f"Config validation failed: {e}", "VALIDATION_ERROR")


def apply_overrides(
    config: HarnessConfig,
    max_cycles: Optional[int] = None,
    serial: Optional[str] = None,
) -> HarnessConfig:
    """Return a copy of config with command-line overrides applied."""
    run = config.run
    bridge = config.bridge
    if max_cycles is not None:
        run = RunConfig.model_validate({**run.model_dump(), "max_cycles": max_cycles})
    if serial is not None:
        bridge = bridge.model_copy(update={"serial": serial})
    return config.model_copy(update={"run": run, "bridge": bridge})
