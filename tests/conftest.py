"""Shared test fixtures for the Miracle Boot test suite.

Test doubles and fact builders live in ``helpers``; this module only wires
them into fixtures. Integration tests (tests/integration/) run against a real
Windows machine.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from helpers import ScriptedExecutor, healthy_machine, make_facts

from miracle_boot.action_log import ActionLog
from miracle_boot.config import BootConfig
from miracle_boot.models import FactRecord
from miracle_boot.session import ScanSession


@pytest.fixture
def boot_config(tmp_path: Path) -> BootConfig:
    """Return a BootConfig with test values."""
    return BootConfig(
        MIRACLE_TARGET_DRIVE="C",
        MIRACLE_ESP_LETTER="S",
        MIRACLE_PROBE_TIMEOUT=5,
        MIRACLE_STEP_TIMEOUT=60,
        MIRACLE_ACTION_LOG_PATH=str(tmp_path / "logs" / "actions.log"),
        MIRACLE_BACKUP_DIR="X:\\Backups",
        MIRACLE_DRIVER_PATH="X:\\Drivers",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def executor() -> ScriptedExecutor:
    """Return an executor where every command succeeds with no output."""
    return ScriptedExecutor()


@pytest.fixture
def healthy_executor() -> ScriptedExecutor:
    """Return an executor scripted as a healthy UEFI machine."""
    return healthy_machine(ScriptedExecutor())


@pytest.fixture
def healthy_facts() -> FactRecord:
    return make_facts()


@pytest.fixture
def action_log() -> ActionLog:
    """Return an in-memory action log."""
    return ActionLog()


@pytest.fixture
def session(action_log: ActionLog) -> ScanSession:
    return ScanSession(action_log)
