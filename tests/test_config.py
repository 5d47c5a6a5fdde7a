"""Tests for config module."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from config import HarnessConfig, Result, RunConfig, apply_overrides, load_config


class TestHarnessConfig:
    def test_defaults(self) -> None:
        config = HarnessConfig()
        assert config.run.max_cycles == 5
        assert config.run.verify_timeout_seconds == 10
        assert config.run.post_transition_settle_seconds == 5
        assert config.run.post_reboot_wait_seconds == 60
        assert config.run.post_online_stabilize_seconds == 30
        assert config.run.toggle_failure_policy == "abort_run"
        assert config.bridge.adb_path == "adb"
        assert config.bridge.serial is None
        assert config.bridge.privileged_user == "root"
        assert config.capture.file_prefix == "logcat"
        assert config.capture.output_dir == Path(".")
        assert len(config.logging.redact_patterns) == 1

    def test_custom_values(self) -> None:
        config = HarnessConfig(
            run={"max_cycles": 100, "verify_timeout_seconds": 20},
            bridge={"serial": "R58M123ABC"},
        )
        assert config.run.max_cycles == 100
        assert config.run.verify_timeout_seconds == 20
        assert config.bridge.serial == "R58M123ABC"

    def test_validation_rejects_bad_values(self) -> None:
        with pytest.raises(ValidationError):
            HarnessConfig(run={"max_cycles": 0})  # ge=1

        with pytest.raises(ValidationError):
            HarnessConfig(run={"verify_timeout_seconds": 0})  # ge=1

        with pytest.raises(ValidationError):
            HarnessConfig(run={"toggle_failure_policy": "retry"})

    def test_config_is_immutable(self) -> None:
        config = HarnessConfig()
        with pytest.raises(ValidationError):
            config.run.max_cycles = 7


class TestApplyOverrides:
    def test_overrides_return_copy(self) -> None:
        config = HarnessConfig()
        updated = apply_overrides(config, max_cycles=12, serial="emulator-5554")
        assert updated.run.max_cycles == 12
        assert updated.bridge.serial == "emulator-5554"
        assert config.run.max_cycles == 5
        assert config.bridge.serial is None

    def test_no_overrides_keeps_values(self) -> None:
        config = HarnessConfig(run={"max_cycles": 9})
        assert apply_overrides(config).run.max_cycles == 9

    def test_invalid_override_rejected(self) -> None:
        with pytest.raises(ValueError):
            apply_overrides(HarnessConfig(), max_cycles=0)


class TestLoadConfig:
    def test_load_valid_config(self, tmp_path: Path) -> None:
        config_file = tmp_path / "radio_cycle.json"
        config_file.write_text(
            json.dumps({
                "run": {"max_cycles": 25, "toggle_failure_policy": "continue"},
                "bridge": {"serial": "ABC123"},
            }),
            encoding="utf-8",
        )

        result = load_config(config_file)
        assert result.success
        assert result.data is not None
        assert result.data.run.max_cycles == 25
        assert result.data.run.toggle_failure_policy == "continue"
        assert result.data.bridge.serial == "ABC123"

    def test_load_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        result = load_config(tmp_path / "nonexistent.json")
        assert result.success
        assert result.data is not None
        assert result.data.run.max_cycles == 5

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        config_file = tmp_path / "radio_cycle.json"
        config_file.write_text("not json {{{", encoding="utf-8")

        result = load_config(config_file)
        assert not result.success
        assert result.error_code == "JSON_ERROR"

    def test_load_invalid_values(self, tmp_path: Path) -> None:
        config_file = tmp_path / "radio_cycle.json"
        config_file.write_text(
            json.dumps({"run": {"max_cycles": -5}}), encoding="utf-8"
        )

        result = load_config(config_file)
        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"

    def test_partial_config_keeps_other_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "radio_cycle.json"
        config_file.write_text(
            json.dumps({"run": {"post_reboot_wait_seconds": 90}}), encoding="utf-8"
        )

        result = load_config(config_file)
        assert result.success
        assert result.data.run.post_reboot_wait_seconds == 90
        assert result.data.run.verify_timeout_seconds == 10
        assert result.data.bridge.privileged_user == "root"


class TestResult:
    def test_ok(self) -> None:
        result = Result.ok(RunConfig())
        assert result.success
        assert result.error is None

    def test_fail(self) -> None:
        result = Result.fail("boom", "JSON_ERROR")
        assert not result.success
        assert result.data is None
        assert result.error_code == "JSON_ERROR"
