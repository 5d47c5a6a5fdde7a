"""One reboot cycle: connect, elevate, probe, toggle under capture, reboot, stabilize."""

from __future__ import annotations

import enum
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import HarnessConfig
from device_link import CommandError, ConnectivityError, DeviceLink, PrivilegeError
from log_capture import LogCapture, capture_filename
from state_probe import PowerState, StateProbe
from state_toggler import StateToggler, ToggleTimeout

logger = logging.getLogger(__name__)

# Off -> on -> off, only attempted from a known-off baseline
TOGGLE_SEQUENCE = (PowerState.ON, PowerState.OFF)


class CyclePhase(str, enum.Enum):
    CONNECTING = "connecting"
    ELEVATING = "elevating"
    PROBING = "probing"
    CAPTURING = "capturing"
    TOGGLING = "toggling"
    REBOOTING = "rebooting"
    WAITING_ONLINE = "waiting_online"
    STABILIZING = "stabilizing"
    DONE = "done"


class CycleVerdict(str, enum.Enum):
    CONTINUE = "continue"
    STOP_BUDGET_REACHED = "stop_budget_reached"
    STOP_FATAL_FAILURE = "stop_fatal_failure"


class RunState(BaseModel):
    """Run progress threaded through each cycle. Each cycle returns a new value."""

    model_config = ConfigDict(frozen=True)

    cycle: int = 0  # last cycle started
    last_state: PowerState = PowerState.UNKNOWN
    run_ok: bool = True
    verdict: CycleVerdict = CycleVerdict.CONTINUE
    phase: Optional[CyclePhase] = None  # phase reached by the last cycle
    failed_cycle: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    capture_files: tuple[str, ...] = Field(default_factory=tuple)


class _CycleFailure(Exception):
    def __init__(self, phase: CyclePhase, code: str, error: Exception) -> None:
        self.phase = phase
        self.code = code
        self.error = error
        super().__init__(str(error))


class CycleRunner:
    """Drives a single cycle against the device."""

    def __init__(
        self,
        config: HarnessConfig,
        link: DeviceLink,
        probe: Optional[StateProbe] = None,
        toggler: Optional[StateToggler] = None,
        capture: Optional[LogCapture] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.link = link
        self.probe = probe or StateProbe(link)
        self.toggler = toggler or StateToggler(link, self.probe, sleep=sleep)
        self.capture = capture or LogCapture(link, config.capture)
        self._sleep = sleep
        self._clock = clock
        self._phase = CyclePhase.CONNECTING
        self._last_state = PowerState.UNKNOWN

    def _enter(self, phase: CyclePhase) -> None:
        self._phase = phase
        logger.debug("Phase: %s", phase.value)

    def _wait(self, seconds: float, reason: str) -> None:
        if seconds > 0:
            logger.info("Waiting %.0fs (%s)", seconds, reason)
            self._sleep(seconds)

    def run_cycle(self, state: RunState) -> RunState:
        """Run the next cycle and return the updated run state."""
        run_cfg = self.config.run
        cycle = state.cycle + 1
        self._phase = CyclePhase.CONNECTING
        self._last_state = state.last_state
        captured: list[str] = []

        logger.info("")
        logger.info("=" * 60)
        logger.info("CYCLE %d / %d", cycle, run_cfg.max_cycles)
        logger.info("=" * 60)

        try:
            self._connect()
            self._probe_and_toggle(cycle, captured)
            self._reboot()
        except _CycleFailure as failure:
            return self._failed(state, cycle, captured, failure)

        self._enter(CyclePhase.DONE)
        verdict = (
            CycleVerdict.STOP_BUDGET_REACHED
            if cycle >= run_cfg.max_cycles
            else CycleVerdict.CONTINUE
        )
        logger.info("Cycle %d complete (Bluetooth was %s)", cycle, self._last_state.value)
        return state.model_copy(update={
            "cycle": cycle,
            "last_state": self._last_state,
            "verdict": verdict,
            "phase": CyclePhase.DONE,
            "capture_files": state.capture_files + tuple(captured),
        })

    def _connect(self) -> None:
        self._enter(CyclePhase.CONNECTING)
        try:
            self.link.wait_for_device()
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e

        self._enter(CyclePhase.ELEVATING)
        try:
            self.link.elevate()
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e
        except PrivilegeError as e:
            raise _CycleFailure(self._phase, "PRIVILEGE_ERROR", e) from e

    def _probe_and_toggle(self, cycle: int, captured: list[str]) -> None:
        self._enter(CyclePhase.PROBING)
        try:
            self._last_state = self.probe.read()
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e
        logger.info("Bluetooth is %s", self._last_state.value)

        self._enter(CyclePhase.CAPTURING)
        path = capture_filename(cycle, self.config.capture, self._clock())
        try:
            with self.capture.capture(path):
                captured.append(str(path))
                if self._last_state is PowerState.OFF:
                    self._toggle_sequence()
                else:
                    logger.info(
                        "Skipping toggle: baseline is %s, not off", self._last_state.value
                    )
        except ToggleTimeout as e:
            raise _CycleFailure(CyclePhase.TOGGLING, "TOGGLE_TIMEOUT", e) from e
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e
        except OSError as e:
            # capture file could not be created or written
            raise _CycleFailure(CyclePhase.CAPTURING, "CAPTURE_ERROR", e) from e

    def _toggle_sequence(self) -> None:
        self._enter(CyclePhase.TOGGLING)
        run_cfg = self.config.run
        for i, target in enumerate(TOGGLE_SEQUENCE):
            if i > 0:
                self._wait(run_cfg.post_transition_settle_seconds, "settle")
            outcome = self.toggler.apply(target, run_cfg)
            self._last_state = outcome.observed
            if not outcome.succeeded:
                raise ToggleTimeout(outcome)

    def _reboot(self) -> None:
        run_cfg = self.config.run
        self._enter(CyclePhase.REBOOTING)
        try:
            self.link.reboot()
        except CommandError as e:
            raise _CycleFailure(self._phase, "COMMAND_ERROR", e) from e
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e
        self._wait(run_cfg.post_reboot_wait_seconds, "reboot")

        self._enter(CyclePhase.WAITING_ONLINE)
        try:
            self.link.wait_for_device()
        except ConnectivityError as e:
            raise _CycleFailure(self._phase, "CONNECTIVITY_ERROR", e) from e

        self._enter(CyclePhase.STABILIZING)
        self._wait(run_cfg.post_online_stabilize_seconds, "stabilize")

    def _failed(
        self,
        state: RunState,
        cycle: int,
        captured: list[str],
        failure: _CycleFailure,
    ) -> RunState:
        lenient = (
            failure.code == "TOGGLE_TIMEOUT"
            and self.config.run.toggle_failure_policy == "continue"
        )
        if lenient and cycle < self.config.run.max_cycles:
            verdict = CycleVerdict.CONTINUE
        elif lenient:
            verdict = CycleVerdict.STOP_BUDGET_REACHED
        else:
            verdict = CycleVerdict.STOP_FATAL_FAILURE

        logger.error(
            "Cycle %d failed during %s (Bluetooth last %s): %s",
            cycle, failure.phase.value, self._last_state.value, failure.error,
        )
        if lenient:
            logger.warning("Skipping the rest of cycle %d, run continues", cycle)

        return state.model_copy(update={
            "cycle": cycle,
            "last_state": self._last_state,
            "run_ok": False,
            "verdict": verdict,
            "phase": failure.phase,
            "failed_cycle": state.failed_cycle or cycle,
            "error": str(failure.error),
            "error_code": failure.code,
            "capture_files": state.capture_files + tuple(captured),
        })
