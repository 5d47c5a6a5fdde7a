"""Log redaction: masks device identifiers (Bluetooth MACs, adb serial) in log output."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

MASK = "[REDACTED]"
SERIAL_MASK = "[SERIAL]"


def compile_patterns(patterns: Sequence[str]) -> list[re.Pattern[str]]:
    """Compile redaction patterns, skipping (and logging) invalid ones."""
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            logging.getLogger(__name__).warning(
                "Ignoring invalid redact pattern %r: %s", pattern, e
            )
    return compiled


def redact_string(
    text: str,
    patterns: Sequence[str | re.Pattern[str]],
    literals: Iterable[str] = (),
) -> str:
    """Mask regex matches with [REDACTED] and exact literals with [SERIAL]."""
    for literal in literals:
        if literal:
            text = text.replace(literal, SERIAL_MASK)
    for pattern in patterns:
        try:
            text = re.sub(pattern, MASK, text)
        except re.error:
            continue
    return text


class RedactingFilter(logging.Filter):
    """Logging filter that masks device identifiers in log records.

    `serial` is the adb serial of the device under test; it appears in
    every adb command line logged at debug level.
    """

    def __init__(
        self, patterns: Sequence[str], serial: Optional[str] = None, name: str = ""
    ) -> None:
        super().__init__(name)
        self._patterns = compile_patterns(patterns)
        self._literals = [serial] if serial else []

    def _redact(self, value: str) -> str:
        return redact_string(value, self._patterns, self._literals)

    def filter(self, record: logging.LogRecord) -> bool:
        if not (self._patterns or self._literals):
            return True
        record.msg = self._redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(a) if isinstance(a, str) else a for a in record.args
            )
        elif isinstance(record.args, dict):
            record.args = {
                k: self._redact(v) if isinstance(v, str) else v
                for k, v in record.args.items()
            }
        return True
