"""Scenario simulation harness.

Each named failure scenario has a mock FactRecord: a healthy UEFI/GPT baseline
with exactly one fault injected. Simulations run the full pipeline in dry-run
mode against an executor that refuses every call, so nothing on the host is
touched.
"""

from __future__ import annotations

from miracle_boot.action_log import ActionLog
from miracle_boot.config import BootConfig
from miracle_boot.engine import BootScanEngine
from miracle_boot.exceptions import ScanError
from miracle_boot.models import CommandResult, FactRecord, ScanResult
from miracle_boot.session import ScanSession

HEALTHY_BASELINE: dict[str, object] = {
    "firmware_type": "UEFI",
    "disk_layout": "GPT",
    "esp_present": True,
    "esp_filesystem": "FAT32",
    "bcd_file_exists": True,
    "bcd_readable": True,
    "bcd_default_points_to_existing_partition": True,
    "winload_present": True,
    "winload_signature_valid": True,
    "secure_boot_enabled": True,
    "storage_driver_loaded": True,
    "bitlocker_lock_state": "NotEncrypted",
    "windows_installation_count": 1,
}

SIMULATED_FAULTS: dict[str, dict[str, object]] = {
    "WinloadMissing": {"winload_present": False},
    "BcdMissing": {"bcd_file_exists": False, "bcd_readable": False},
    "EspMissing": {"esp_present": False, "esp_filesystem": "Absent"},
    "BcdPointsWrongPartition": {"bcd_default_points_to_existing_partition": False},
    "SecureBootBlocksLoader": {"winload_signature_valid": False},
    "StorageDriverMissing": {"storage_driver_loaded": False},
    "BitlockerLocked": {"bitlocker_lock_state": "Locked"},
    "MultipleWindowsInstalls": {"windows_installation_count": 2},
    "EfiCorrupted": {"esp_filesystem": "RAW"},
    "BcdCorrupted": {"bcd_readable": False},
}


class _RefusingExecutor:
    """Executor that fails loudly if a simulation ever tries to run a command."""

    def execute(self, command: str, timeout_seconds: int) -> CommandResult:
        raise ScanError("Simulations must not execute commands", details={"command": command})


def simulated_facts(scenario: str, target_drive: str = "C") -> FactRecord:
    """Return the mock fact record for ``scenario`` ("Healthy" gives the baseline).

    Raises:
        KeyError: If ``scenario`` is not a simulated failure or "Healthy".
    """
    faults = {} if scenario == "Healthy" else SIMULATED_FAULTS[scenario]
    return FactRecord(target_drive=target_drive, **{**HEALTHY_BASELINE, **faults})


def run_simulation(config: BootConfig, scenario: str) -> ScanResult:
    """Run one scenario simulation end to end in dry-run mode."""
    facts = simulated_facts(scenario, config.target_drive)
    engine = BootScanEngine(config, _RefusingExecutor(), session=ScanSession(ActionLog()))
    return engine.evaluate(facts, mode="dry-run")
