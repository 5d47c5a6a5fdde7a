"""Bluetooth toggle with bounded polling verification."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from config import RunConfig
from device_link import CommandError, DeviceLink
from state_probe import PowerState, StateProbe

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0

TOGGLE_COMMANDS = {
    PowerState.ON: "svc bluetooth enable",
    PowerState.OFF: "svc bluetooth disable",
}


class ToggleResult(str, enum.Enum):
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ToggleOutcome:
    """Verdict of one toggle attempt."""

    result: ToggleResult
    target: PowerState
    observed: PowerState
    polls: int

    @property
    def succeeded(self) -> bool:
        return self.result is ToggleResult.SUCCEEDED


class ToggleTimeout(Exception):
    """A toggle was not observed on the device within the verification window."""

    def __init__(self, outcome: ToggleOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f"Bluetooth did not reach {outcome.target.value} after {outcome.polls} polls "
            f"(last observed: {outcome.observed.value})"
        )


class StateToggler:
    """Issues enable/disable and polls the probe until the target is observed."""

    def __init__(
        self,
        link: DeviceLink,
        probe: StateProbe,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.link = link
        self.probe = probe
        self._sleep = sleep

    def apply(self, target: PowerState, cfg: RunConfig) -> ToggleOutcome:
        if target not in TOGGLE_COMMANDS:
            raise ValueError(f"Toggle target must be ON or OFF, got {target!r}")

        logger.info("Switching Bluetooth %s", target.value)
        try:
            self.link.run_shell(TOGGLE_COMMANDS[target])
        except CommandError as e:
            # Verification below decides the outcome
            logger.warning("Toggle command failed: %s", e)

        observed = PowerState.UNKNOWN
        polls = 0
        for polls in range(1, cfg.verify_timeout_seconds + 1):
            self._sleep(POLL_INTERVAL_SECONDS)
            observed = self.probe.read()
            logger.debug(
                "Verify %d/%d: %s", polls, cfg.verify_timeout_seconds, observed.value
            )
            if observed is target:
                logger.info("Bluetooth %s confirmed after %d poll(s)", target.value, polls)
                return ToggleOutcome(ToggleResult.SUCCEEDED, target, observed, polls)

        logger.error(
            "Bluetooth did not reach %s within %d polls (last observed: %s)",
            target.value, polls, observed.value,
        )
        return ToggleOutcome(ToggleResult.TIMED_OUT, target, observed, polls)
