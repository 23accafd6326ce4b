"""Test doubles and fact builders shared by the Miracle Boot test modules.

Unit tests never spawn native tools: command execution goes through
ScriptedExecutor, which matches command lines against regex rules.
"""

from __future__ import annotations

import re

from miracle_boot.models import CommandResult, FactRecord

class ScriptedExecutor:
    """CommandExecutor double: the first matching rule decides the result."""

    def __init__(self, default: CommandResult | None = None) -> None:
        self.rules: list[tuple[re.Pattern[str], CommandResult]] = []
        self.default = default or CommandResult(exit_code=0)
        self.calls: list[tuple[str, int]] = []

    def on(
        self,
        pattern: str,
        stdout: str = "",
        exit_code: int = 0,
        stderr: str = "",
        timed_out: bool = False,
    ) -> ScriptedExecutor:
        result = CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr, timed_out=timed_out)
        self.rules.append((re.compile(pattern, re.IGNORECASE), result))
        return self

    def execute(self, command: str, timeout_seconds: int) -> CommandResult:
        self.calls.append((command, timeout_seconds))
        for pattern, result in self.rules:
            if pattern.search(command):
                return result
        return self.default

    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


HEALTHY_FACTS = {
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
    "target_drive": "C",
}


def make_facts(**overrides: object) -> FactRecord:
    """Return a healthy UEFI/GPT fact record with ``overrides`` applied."""
    return FactRecord(**{**HEALTHY_FACTS, **overrides})


def healthy_machine(executor: ScriptedExecutor) -> ScriptedExecutor:
    """Script every probe command to describe a healthy UEFI machine with C: and ESP at S:."""
    return (
        executor.on(r"PEFirmwareType", stdout="    PEFirmwareType    REG_DWORD    0x2\n")
        .on(r"PartitionStyle", stdout="GPT\n")
        .on(r"GptType -eq", stdout="FAT32|S\n")
        .on(r"if exist .*BCD", stdout="PRESENT\n")
        .on(r"bcdedit /store .* /enum \{default\}", stdout="Windows Boot Loader\ndevice                  partition=C:\n")
        .on(r"if exist .*winload", stdout="PRESENT\n")
        .on(r"if exist \"C:\\\"", stdout="PRESENT\n")
        .on(r"if exist \"S:\\\"", stdout="ABSENT\n")
        .on(r"Confirm-SecureBootUEFI", stdout="True\n")
        .on(r"Get-AuthenticodeSignature", stdout="Valid\n")
        .on(r"pnputil", stdout="No devices were found on the system.\n")
        .on(r"manage-bde -status", stdout="Conversion Status:    Fully Decrypted\nLock Status:          Unlocked\n")
        .on(r"Get-PSDrive", stdout="1\n")
    )
