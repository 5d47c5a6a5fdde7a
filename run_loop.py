"""Bluetooth reboot-cycle harness: main entry point.

Repeats the cycle (probe, verified toggle under logcat capture, reboot,
stabilize) until the cycle budget is spent or a cycle fails fatally.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Callable, Optional

from config import DEFAULT_CONFIG_PATH, HarnessConfig, apply_overrides, load_config
from cycle_runner import CycleRunner, CycleVerdict, RunState
from device_link import ConnectivityError, DeviceLink
from log_redactor import RedactingFilter

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CYCLE_FAILED = 1
EXIT_CONNECTIVITY = 2
EXIT_PRIVILEGE = 3
EXIT_COMMAND = 4
EXIT_CONFIG = 5
EXIT_CAPTURE = 6

_EXIT_BY_ERROR_CODE = {
    "TOGGLE_TIMEOUT": EXIT_CYCLE_FAILED,
    "CONNECTIVITY_ERROR": EXIT_CONNECTIVITY,
    "PRIVILEGE_ERROR": EXIT_PRIVILEGE,
    "COMMAND_ERROR": EXIT_COMMAND,
    "CAPTURE_ERROR": EXIT_CAPTURE,
}


class JsonFormatter(logging.Formatter):
    """Structured JSON log formatter for machine-readable output."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        })


class RunLoop:
    """Runs cycles until the budget is reached or a cycle fails fatally."""

    def __init__(
        self,
        config: HarnessConfig,
        link: Optional[DeviceLink] = None,
        runner: Optional[CycleRunner] = None,
        skip_preflight: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.link = link or DeviceLink(config.bridge, sleep=sleep)
        self.runner = runner or CycleRunner(config, self.link, sleep=sleep)
        self.skip_preflight = skip_preflight

    def _preflight_check(self) -> bool:
        """Verify adb is usable before the first cycle."""
        try:
            version = self.link.version()
        except ConnectivityError as e:
            logger.error("adb preflight failed: %s", e)
            return False
        logger.info("adb preflight OK: %s", version[:100])
        return True

    def run(self) -> int:
        """Execute the cycle loop. Returns exit code."""
        run_cfg = self.config.run
        logger.info("=" * 60)
        logger.info("Bluetooth Reboot-Cycle Harness")
        logger.info("Device: %s", self.config.bridge.serial or "(default)")
        logger.info("Max cycles: %d", run_cfg.max_cycles)
        logger.info(
            "Verify timeout: %ds, settle: %.0fs, reboot wait: %.0fs, stabilize: %.0fs",
            run_cfg.verify_timeout_seconds,
            run_cfg.post_transition_settle_seconds,
            run_cfg.post_reboot_wait_seconds,
            run_cfg.post_online_stabilize_seconds,
        )
        logger.info("On toggle failure: %s", run_cfg.toggle_failure_policy)
        logger.info("=" * 60)

        if not self.skip_preflight and not self._preflight_check():
            return EXIT_CONNECTIVITY

        state = RunState()
        while state.verdict is CycleVerdict.CONTINUE and state.cycle < run_cfg.max_cycles:
            state = self.runner.run_cycle(state)

        self._log_summary(state)
        return self._exit_code(state)

    @staticmethod
    def _exit_code(state: RunState) -> int:
        if state.verdict is CycleVerdict.STOP_FATAL_FAILURE:
            return _EXIT_BY_ERROR_CODE.get(state.error_code or "", EXIT_CYCLE_FAILED)
        if not state.run_ok:
            return EXIT_CYCLE_FAILED
        return EXIT_SUCCESS

    def _log_summary(self, state: RunState) -> None:
        """Log final run summary."""
        logger.info("")
        logger.info("=" * 60)
        if state.verdict is CycleVerdict.STOP_FATAL_FAILURE:
            logger.error(
                "RUN FAILED at cycle %d (%s), Bluetooth last %s: %s",
                state.failed_cycle or state.cycle,
                state.error_code,
                state.last_state.value,
                state.error,
            )
        elif not state.run_ok:
            logger.warning(
                "RUN ENDED with failures (first failure at cycle %d): %s",
                state.failed_cycle, state.error,
            )
        else:
            logger.info("RUN COMPLETE")
        logger.info("Cycles run: %d / %d", state.cycle, self.config.run.max_cycles)
        logger.info("Capture files: %d", len(state.capture_files))
        for path in state.capture_files:
            logger.info("  %s", path)
        logger.info("=" * 60)


def setup_logging(config: HarnessConfig, verbose: bool = False, json_log: bool = False) -> None:
    """Configure root logging with device-identifier redaction."""
    log_level = logging.DEBUG if verbose else logging.INFO
    if json_log:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        logging.root.addHandler(handler)
        logging.root.setLevel(log_level)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    for handler in logging.root.handlers:
        handler.addFilter(
            RedactingFilter(config.logging.redact_patterns, serial=config.bridge.serial)
        )


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Bluetooth toggle + logcat capture + reboot cycle harness"
    )
    parser.add_argument(
        "--config", default=str(DEFAULT_CONFIG_PATH), help="Path to JSON config"
    )
    parser.add_argument("--max-cycles", type=int, default=None, help="Number of cycles to run")
    parser.add_argument("--serial", default=None, help="Device serial (adb -s)")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-log", action="store_true", help="Output structured JSON logs")
    parser.add_argument("--skip-preflight", action="store_true", help="Skip adb preflight check")
    args = parser.parse_args(argv)

    config_result = load_config(args.config)
    if not config_result.success:
        setup_logging(HarnessConfig(), args.verbose, args.json_log)
        logger.error("Config error: %s", config_result.error)
        sys.exit(EXIT_CONFIG)

    try:
        config = apply_overrides(
            config_result.data, max_cycles=args.max_cycles, serial=args.serial
        )
    except ValueError as e:
        setup_logging(config_result.data, args.verbose, args.json_log)
        logger.error("Invalid override: %s", e)
        sys.exit(EXIT_CONFIG)

    setup_logging(config, args.verbose, args.json_log)

    loop = RunLoop(config, skip_preflight=args.skip_preflight)
    sys.exit(loop.run())


if __name__ == "__main__":
    main()
