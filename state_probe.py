"""Bluetooth power state probe."""

from __future__ import annotations

import enum
import logging
import re

from device_link import CommandError, DeviceLink

logger = logging.getLogger(__name__)

STATE_QUERY = "settings list global"
WATCHED_KEY = "bluetooth_on"
ON_TOKEN = "1"
OFF_TOKEN = "0"

_VALUE_RE = re.compile(rf"{re.escape(WATCHED_KEY)}\s*=\s*(\S*)")


class PowerState(str, enum.Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"


def parse_power_state(text: str) -> PowerState:
    """Map raw key=value output to a PowerState.

    Only the first line carrying the watched key counts. Anything other than
    the exact on/off token is UNKNOWN.
    """
    for line in text.splitlines():
        match = _VALUE_RE.search(line)
        if match is None:
            continue
        token = match.group(1)
        if token == ON_TOKEN:
            return PowerState.ON
        if token == OFF_TOKEN:
            return PowerState.OFF
        return PowerState.UNKNOWN
    return PowerState.UNKNOWN


class StateProbe:
    """Reads the current Bluetooth power state from the device."""

    def __init__(self, link: DeviceLink) -> None:
        self.link = link

    def read(self) -> PowerState:
        try:
            output = self.link.run_shell(STATE_QUERY)
        except CommandError as e:
            logger.warning("State query failed, treating as unknown: %s", e)
            return PowerState.UNKNOWN
        state = parse_power_state(output)
        logger.debug("Probe: %s=%s", WATCHED_KEY, state.value)
        return state
