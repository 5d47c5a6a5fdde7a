"""Shared pytest fixtures for the reboot-cycle harness test suite.

Non-fixture helpers (fake sleep, mock builders) are in helpers.py.
"""

import sys
from pathlib import Path

import pytest

# Add the tests directory to sys.path so test files can import helpers.py
sys.path.insert(0, str(Path(__file__).parent))

from config import HarnessConfig  # noqa: E402
from helpers import FakeSleep  # noqa: E402


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def config(tmp_path: Path) -> HarnessConfig:
    """Small budget, captures written under tmp_path."""
    return HarnessConfig(
        run={
            "max_cycles": 3,
            "verify_timeout_seconds": 5,
            "post_transition_settle_seconds": 5,
            "post_reboot_wait_seconds": 60,
            "post_online_stabilize_seconds": 30,
        },
        capture={"output_dir": str(tmp_path)},
    )
