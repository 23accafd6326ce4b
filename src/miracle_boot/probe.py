"""Environment probe: gathers boot-environment facts into a FactRecord.

Each sub-probe issues one short, timeout-bounded command through the injected
executor and interprets a single token of its output. A sub-probe that cannot
determine its fact yields an ``unknown``/``failed`` ProbeResult and the fact
falls back to a conservative default; the probe as a whole never raises for
environmental reasons.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from miracle_boot.config import normalize_drive_letter
from miracle_boot.executor import CommandExecutor, render_command
from miracle_boot.models import (
    CommandResult,
    FactRecord,
    ProbeResult,
    bcd_store_path,
    loader_name,
)
from miracle_boot.session import ScanSession

logger = logging.getLogger(__name__)

# Conservative values used when a fact cannot be determined.
FACT_DEFAULTS: dict[str, bool | int | str | None] = {
    "firmware_type": "UEFI",
    "disk_layout": "GPT",
    "esp_present": False,
    "esp_filesystem": "Absent",
    "system_partition_letter": None,
    "bcd_file_exists": False,
    "bcd_readable": False,
    "bcd_default_points_to_existing_partition": False,
    "winload_present": False,
    "winload_signature_valid": False,
    "secure_boot_enabled": False,
    "storage_driver_loaded": False,
    "bitlocker_lock_state": "NotEncrypted",
    "windows_installation_count": 0,
}

MINIMUM_FACTS: tuple[str, ...] = ("firmware_type", "esp_present", "bcd_file_exists")

_ESP_GPT_TYPE = "{c12a7328-f81f-11d2-ba4b-00a0c93ec93b}"

FIRMWARE_REGISTRY_COMMAND = r"reg query HKLM\System\CurrentControlSet\Control /v PEFirmwareType"
FIRMWARE_ENV_COMMAND = 'powershell -NoProfile -Command "$env:firmware_type"'
DISK_LAYOUT_COMMAND = 'powershell -NoProfile -Command "(Get-Partition -DriveLetter {drive} | Get-Disk).PartitionStyle"'
ESP_GPT_COMMAND = (
    'powershell -NoProfile -Command "$d = (Get-Partition -DriveLetter {drive}).DiskNumber; '
    f"$p = Get-Partition -DiskNumber $d | Where-Object GptType -eq '{_ESP_GPT_TYPE}' | Select-Object -First 1; "
    "if ($p) { $v = $p | Get-Volume; '{0}|{1}' -f $v.FileSystem, $p.DriveLetter } else { 'ABSENT' }\""
)
ESP_MBR_COMMAND = (
    'powershell -NoProfile -Command "$d = (Get-Partition -DriveLetter {drive}).DiskNumber; '
    "$p = Get-Partition -DiskNumber $d | Where-Object IsActive | Select-Object -First 1; "
    "if ($p) { $v = $p | Get-Volume; '{0}|{1}' -f $v.FileSystem, $p.DriveLetter } else { 'ABSENT' }\""
)
MOUNT_ESP_UEFI_COMMAND = "mountvol {esp}: /s"
MOUNT_ESP_MBR_COMMAND = (
    'powershell -NoProfile -Command "$d = (Get-Partition -DriveLetter {drive}).DiskNumber; '
    'Get-Partition -DiskNumber $d | Where-Object IsActive | Select-Object -First 1 | Set-Partition -NewDriveLetter {esp}"'
)
BCD_ENUM_COMMAND = 'bcdedit /store "{store}" /enum {default}'
SIGNATURE_COMMAND = (
    "powershell -NoProfile -Command \"(Get-AuthenticodeSignature '{drive}:\\Windows\\System32\\winload.efi').Status\""
)
SECURE_BOOT_COMMAND = 'powershell -NoProfile -Command "Confirm-SecureBootUEFI"'
STORAGE_DRIVER_COMMAND = "pnputil /enum-devices /problem /class SCSIAdapter"
BITLOCKER_COMMAND = "manage-bde -status {drive}:"
INSTALL_COUNT_COMMAND = (
    'powershell -NoProfile -Command "@(Get-PSDrive -PSProvider FileSystem | '
    "Where-Object { Test-Path (Join-Path $_.Root 'Windows\\System32\\config\\SYSTEM') }).Count\""
)

_MISSING_COMMAND_EXIT_CODES = frozenset({127, 9009})
_PE_FIRMWARE_RE = re.compile(r"PEFirmwareType\s+REG_DWORD\s+0x0*([12])", re.IGNORECASE)
_DEFAULT_DEVICE_RE = re.compile(r"^\s*device\s+partition=([A-Za-z]):", re.IGNORECASE | re.MULTILINE)
_LOCK_STATUS_RE = re.compile(r"Lock Status:\s*(Locked|Unlocked)", re.IGNORECASE)
_FULLY_DECRYPTED_RE = re.compile(r"Conversion Status:\s*Fully Decrypted", re.IGNORECASE)


def exists_command(path: str) -> str:
    return f'cmd /c if exist "{path}" (echo PRESENT) else (echo ABSENT)'


def last_token(result: CommandResult) -> str:
    """Return the last non-empty output line, stripped."""
    lines = [line.strip().strip("\x00") for line in result.stdout.splitlines()]
    lines = [line for line in lines if line]
    return lines[-1] if lines else ""


def is_sufficient(facts: FactRecord) -> bool:
    """True when the facts every classification depends on were determined."""
    return all(facts.is_known(fact) for fact in MINIMUM_FACTS)


class EnvironmentProbe:
    """Builds a FactRecord by querying the machine through a CommandExecutor."""

    def __init__(
        self,
        executor: CommandExecutor,
        timeout_seconds: int = 5,
        session: ScanSession | None = None,
    ) -> None:
        self.executor = executor
        self.timeout_seconds = timeout_seconds
        self.session = session

    def probe(self, target_drive: str, esp_letter_hint: str) -> FactRecord:
        """Return the fact record for ``target_drive``."""
        facts, _ = self.collect(target_drive, esp_letter_hint)
        return facts

    def collect(self, target_drive: str, esp_letter_hint: str) -> tuple[FactRecord, tuple[ProbeResult, ...]]:
        """Run every sub-probe and return the fact record plus per-fact outcomes.

        Raises:
            InvalidDriveError: If either drive letter is malformed.
        """
        drive = normalize_drive_letter(target_drive)
        esp_hint = normalize_drive_letter(esp_letter_hint)
        results: dict[str, ProbeResult] = {}

        def value_of(fact: str) -> bool | int | str | None:
            result = results[fact]
            return result.value if result.is_ok and result.value is not None else FACT_DEFAULTS[fact]

        results["firmware_type"] = self._safe("firmware_type", self._probe_firmware)
        firmware = value_of("firmware_type")
        results["disk_layout"] = self._safe("disk_layout", lambda: self._probe_disk_layout(drive))

        esp_present, esp_fs, letter = self._probe_esp(drive, esp_hint, str(firmware), str(value_of("disk_layout")))
        results["esp_present"] = esp_present
        results["esp_filesystem"] = esp_fs
        results["system_partition_letter"] = letter

        store: str | None = None
        if letter.is_ok and letter.value:
            store_path = bcd_store_path(firmware, str(letter.value))  # type: ignore[arg-type]
            store = store_path
            results["bcd_file_exists"] = self._safe(
                "bcd_file_exists", lambda: self._probe_exists("bcd_file_exists", store_path)
            )
        elif esp_present.is_ok and (not esp_present.value or esp_fs.value in ("RAW", "Other")):
            # No partition, or no filesystem that could hold a store.
            results["bcd_file_exists"] = ProbeResult.ok("bcd_file_exists", False)
        else:
            results["bcd_file_exists"] = ProbeResult.unknown("bcd_file_exists", "System partition is not reachable")
        readable, points = self._probe_bcd(drive, store, results["bcd_file_exists"])
        results["bcd_readable"] = readable
        results["bcd_default_points_to_existing_partition"] = points

        visible = self._safe("target_visible", lambda: self._probe_exists("target_visible", f"{drive}:\\"))
        if visible.is_ok and visible.value:
            loader_path = f"{drive}:\\Windows\\System32\\{loader_name(firmware)}"  # type: ignore[arg-type]
            results["winload_present"] = self._safe(
                "winload_present", lambda: self._probe_exists("winload_present", loader_path)
            )
        else:
            results["winload_present"] = ProbeResult.unknown("winload_present", f"Target drive {drive}: is not visible")

        results["secure_boot_enabled"] = self._safe("secure_boot_enabled", lambda: self._probe_secure_boot(str(firmware)))
        secure_boot_on = results["secure_boot_enabled"].is_ok and bool(results["secure_boot_enabled"].value)
        if not secure_boot_on:
            results["winload_signature_valid"] = ProbeResult.unknown(
                "winload_signature_valid", "Secure Boot is not enabled; signature not checked"
            )
        elif not (visible.is_ok and visible.value):
            results["winload_signature_valid"] = ProbeResult.unknown(
                "winload_signature_valid", f"Target drive {drive}: is not visible"
            )
        else:
            results["winload_signature_valid"] = self._safe(
                "winload_signature_valid", lambda: self._probe_signature(drive)
            )

        results["storage_driver_loaded"] = self._safe("storage_driver_loaded", self._probe_storage_driver)
        results["bitlocker_lock_state"] = self._safe("bitlocker_lock_state", lambda: self._probe_bitlocker(drive))
        results["windows_installation_count"] = self._safe("windows_installation_count", self._probe_install_count)

        values = {fact: value_of(fact) for fact in FACT_DEFAULTS}
        unknown = frozenset(fact for fact in FACT_DEFAULTS if not results[fact].is_ok)
        for fact in sorted(unknown):
            logger.info("Fact %s undetermined (%s); using default %r", fact, results[fact].reason, FACT_DEFAULTS[fact])

        facts = FactRecord(target_drive=drive, unknown_facts=unknown, **values)
        return facts, tuple(results[fact] for fact in FACT_DEFAULTS)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _safe(self, fact: str, probe_fn: Callable[[], ProbeResult]) -> ProbeResult:
        try:
            return probe_fn()
        except Exception as exc:
            logger.error("Probe %s raised: %s", fact, exc)
            return ProbeResult.failed(fact, f"Probe error: {exc}")

    def _run(self, command: str) -> CommandResult:
        if self.session is None:
            return self.executor.execute(command, self.timeout_seconds)
        return self.session.cached(command, lambda: self.executor.execute(command, self.timeout_seconds))

    def _not_ok(self, fact: str, result: CommandResult) -> ProbeResult:
        if result.timed_out:
            return ProbeResult.unknown(fact, f"Timed out after {self.timeout_seconds}s")
        if result.exit_code in _MISSING_COMMAND_EXIT_CODES:
            return ProbeResult.unknown(fact, "Command not available in this environment")
        detail = (result.stderr or result.stdout).strip().splitlines()
        return ProbeResult.failed(fact, f"Exit code {result.exit_code}: {detail[0] if detail else 'no output'}")

    def _probe_exists(self, fact: str, path: str) -> ProbeResult:
        result = self._run(exists_command(path))
        if not result.ok:
            return self._not_ok(fact, result)
        token = last_token(result).upper()
        if token in ("PRESENT", "ABSENT"):
            return ProbeResult.ok(fact, token == "PRESENT")
        return ProbeResult.unknown(fact, f"Unexpected output: {token!r}")

    # ------------------------------------------------------------------
    # Sub-probes
    # ------------------------------------------------------------------
    def _probe_firmware(self) -> ProbeResult:
        result = self._run(FIRMWARE_REGISTRY_COMMAND)
        if result.ok:
            match = _PE_FIRMWARE_RE.search(result.stdout)
            if match:
                return ProbeResult.ok("firmware_type", "UEFI" if match.group(1) == "2" else "BIOS")

        result = self._run(FIRMWARE_ENV_COMMAND)
        if not result.ok:
            return self._not_ok("firmware_type", result)
        token = last_token(result).upper()
        if token == "UEFI":
            return ProbeResult.ok("firmware_type", "UEFI")
        if token in ("LEGACY", "BIOS"):
            return ProbeResult.ok("firmware_type", "BIOS")
        return ProbeResult.unknown("firmware_type", f"Unrecognized firmware type {token!r}")

    def _probe_disk_layout(self, drive: str) -> ProbeResult:
        result = self._run(render_command(DISK_LAYOUT_COMMAND, {"drive": drive}))
        if not result.ok:
            return self._not_ok("disk_layout", result)
        token = last_token(result).upper()
        if token in ("GPT", "MBR"):
            return ProbeResult.ok("disk_layout", token)
        return ProbeResult.unknown("disk_layout", f"Unrecognized partition style {token!r}")

    def _probe_esp(
        self, drive: str, esp_hint: str, firmware: str, layout: str
    ) -> tuple[ProbeResult, ProbeResult, ProbeResult]:
        """Locate the ESP (or BIOS active partition).

        Returns presence, filesystem, and the letter the partition is reachable
        at. The letter is ``ok(None)`` when the partition has no letter and the
        hint letter is free for the plan to mount it at, and ``unknown`` when no
        letter can be used safely. An unlettered FAT32/NTFS partition is mounted
        at the hint letter so its BCD store can be read.
        """
        template = ESP_MBR_COMMAND if layout == "MBR" else ESP_GPT_COMMAND
        try:
            result = self._run(render_command(template, {"drive": drive}))
        except Exception as exc:
            logger.error("ESP probe raised: %s", exc)
            failure = f"Probe error: {exc}"
            return (
                ProbeResult.failed("esp_present", failure),
                ProbeResult.failed("esp_filesystem", failure),
                ProbeResult.failed("system_partition_letter", failure),
            )

        if not result.ok:
            return (
                self._not_ok("esp_present", result),
                self._not_ok("esp_filesystem", result),
                self._not_ok("system_partition_letter", result),
            )

        token = last_token(result)
        if token.upper() == "ABSENT":
            return (
                ProbeResult.ok("esp_present", False),
                ProbeResult.ok("esp_filesystem", "Absent"),
                self._safe("system_partition_letter", lambda: self._hint_free(esp_hint)),
            )

        filesystem, _, letter = token.partition("|")
        filesystem = filesystem.strip().upper()
        if filesystem in ("FAT32", "NTFS"):
            fs_value = filesystem
        elif filesystem in ("", "RAW"):
            fs_value = "RAW"
        else:
            fs_value = "Other"
        present = ProbeResult.ok("esp_present", True)
        fs = ProbeResult.ok("esp_filesystem", fs_value)

        letter = letter.strip()
        if len(letter) == 1 and letter.isalpha():
            return present, fs, ProbeResult.ok("system_partition_letter", letter.upper())

        free = self._safe("system_partition_letter", lambda: self._hint_free(esp_hint))
        if not free.is_ok or fs_value not in ("FAT32", "NTFS"):
            return present, fs, free
        if not self._mount_esp(drive, esp_hint, firmware):
            return present, fs, ProbeResult.unknown(
                "system_partition_letter", f"System partition could not be mounted at {esp_hint}:"
            )
        return present, fs, ProbeResult.ok("system_partition_letter", esp_hint)

    def _hint_free(self, esp_hint: str) -> ProbeResult:
        """``ok(None)`` when nothing is mounted at the hint letter."""
        fact = "system_partition_letter"
        result = self._run(exists_command(f"{esp_hint}:\\"))
        if not result.ok:
            return self._not_ok(fact, result)
        token = last_token(result).upper()
        if token == "ABSENT":
            return ProbeResult.ok(fact, None)
        if token == "PRESENT":
            return ProbeResult.unknown(fact, f"Drive letter {esp_hint}: is already used by another volume")
        return ProbeResult.unknown(fact, f"Unexpected output: {token!r}")

    def _mount_esp(self, drive: str, esp_letter: str, firmware: str) -> bool:
        template = MOUNT_ESP_MBR_COMMAND if firmware == "BIOS" else MOUNT_ESP_UEFI_COMMAND
        command = render_command(template, {"drive": drive, "esp": esp_letter})
        result = self.executor.execute(command, self.timeout_seconds)
        if self.session is not None:
            self.session.action_log.append(f"PROBE mount system partition at {esp_letter}: exit={result.exit_code}")
        if not result.ok:
            logger.warning("Could not mount system partition at %s: (exit %s)", esp_letter, result.exit_code)
        return result.ok

    def _probe_bcd(self, drive: str, store: str | None, exists: ProbeResult) -> tuple[ProbeResult, ProbeResult]:
        readable_fact = "bcd_readable"
        points_fact = "bcd_default_points_to_existing_partition"
        if not exists.is_ok:
            reason = "BCD presence could not be determined"
            return ProbeResult.unknown(readable_fact, reason), ProbeResult.unknown(points_fact, reason)
        if not exists.value:
            return ProbeResult.ok(readable_fact, False), ProbeResult.ok(points_fact, False)

        try:
            result = self._run(render_command(BCD_ENUM_COMMAND, {"store": store}))
        except Exception as exc:
            logger.error("BCD probe raised: %s", exc)
            return ProbeResult.failed(readable_fact, str(exc)), ProbeResult.failed(points_fact, str(exc))

        if result.timed_out:
            return self._not_ok(readable_fact, result), self._not_ok(points_fact, result)
        combined = f"{result.stdout}\n{result.stderr}".lower()
        if not result.ok or "could not be opened" in combined:
            return ProbeResult.ok(readable_fact, False), ProbeResult.unknown(points_fact, "BCD store is not readable")

        match = _DEFAULT_DEVICE_RE.search(result.stdout)
        if match is None:
            return ProbeResult.ok(readable_fact, True), ProbeResult.unknown(
                points_fact, "Default entry device is not a lettered partition"
            )
        return ProbeResult.ok(readable_fact, True), ProbeResult.ok(points_fact, match.group(1).upper() == drive)

    def _probe_secure_boot(self, firmware: str) -> ProbeResult:
        if firmware == "BIOS":
            return ProbeResult.ok("secure_boot_enabled", False)
        result = self._run(SECURE_BOOT_COMMAND)
        if not result.ok:
            return self._not_ok("secure_boot_enabled", result)
        token = last_token(result).upper()
        if token in ("TRUE", "FALSE"):
            return ProbeResult.ok("secure_boot_enabled", token == "TRUE")
        return ProbeResult.unknown("secure_boot_enabled", f"Unexpected output: {token!r}")

    def _probe_signature(self, drive: str) -> ProbeResult:
        result = self._run(render_command(SIGNATURE_COMMAND, {"drive": drive}))
        if not result.ok:
            return self._not_ok("winload_signature_valid", result)
        return ProbeResult.ok("winload_signature_valid", last_token(result).upper() == "VALID")

    def _probe_storage_driver(self) -> ProbeResult:
        result = self._run(STORAGE_DRIVER_COMMAND)
        if not result.ok:
            return self._not_ok("storage_driver_loaded", result)
        # pnputil lists one "Instance ID:" block per controller with a driver problem.
        return ProbeResult.ok("storage_driver_loaded", "instance id:" not in result.stdout.lower())

    def _probe_bitlocker(self, drive: str) -> ProbeResult:
        result = self._run(render_command(BITLOCKER_COMMAND, {"drive": drive}))
        if not result.ok:
            return self._not_ok("bitlocker_lock_state", result)
        lock = _LOCK_STATUS_RE.search(result.stdout)
        if lock and lock.group(1).lower() == "locked":
            return ProbeResult.ok("bitlocker_lock_state", "Locked")
        if _FULLY_DECRYPTED_RE.search(result.stdout):
            return ProbeResult.ok("bitlocker_lock_state", "NotEncrypted")
        if lock:
            return ProbeResult.ok("bitlocker_lock_state", "Unlocked")
        return ProbeResult.unknown("bitlocker_lock_state", "Lock status not reported")

    def _probe_install_count(self) -> ProbeResult:
        result = self._run(INSTALL_COUNT_COMMAND)
        if not result.ok:
            return self._not_ok("windows_installation_count", result)
        token = last_token(result)
        if token.isdigit():
            return ProbeResult.ok("windows_installation_count", int(token))
        return ProbeResult.unknown("windows_installation_count", f"Unexpected output: {token!r}")
