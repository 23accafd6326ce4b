"""Remediation planner: the fixed, ordered repair recipe for each scenario.

Command templates use the placeholders listed in ``executor.PLACEHOLDERS``;
they are rendered at execution time so the plan itself stays a pure function
of (scenario, facts). UEFI and BIOS variants differ where the firmware changes
the command, and UEFI systems on an MBR disk fall back to an MBR-to-GPT
conversion when the ESP is missing.

A mount step is only planned when the system partition has no drive letter;
when it already has one, that letter is used as-is.
"""

from __future__ import annotations

from miracle_boot.classifier import describe_scenario
from miracle_boot.models import FactRecord, RemediationPlan, RemediationStep, Scenario, StepPhase, loader_name

ESP_GPT_TYPE = "{c12a7328-f81f-11d2-ba4b-00a0c93ec93b}"

BACKUP_COMMAND_TEMPLATE = (
    'cmd /c if not exist "{backup_dir}" mkdir "{backup_dir}" & bcdedit /store "{store}" /export "{backup_path}"'
)

_MOUNT_UEFI = "mountvol {esp}: /s"
_MOUNT_BIOS = (
    "powershell -NoProfile -Command "
    '"Get-Partition -DiskNumber (Get-Partition -DriveLetter {drive}).DiskNumber | '
    'Where-Object IsActive | Select-Object -First 1 | Set-Partition -NewDriveLetter {esp}"'
)
_VERIFY_BCD = 'bcdedit /store "{store}" /enum {default}'
_NO_SAFE_LETTER = "No safe drive letter for the system partition; re-run with --esp set to a free letter"

# Scenario -> planner method; Healthy and Ambiguous have no steps.
_BUILDERS: dict[str, str] = {
    "BitlockerLocked": "_plan_bitlocker_locked",
    "EspMissing": "_plan_esp_missing",
    "EfiCorrupted": "_plan_efi_corrupted",
    "BcdMissing": "_plan_bcd_missing",
    "BcdCorrupted": "_plan_bcd_corrupted",
    "BcdPointsWrongPartition": "_plan_bcd_points_wrong_partition",
    "WinloadMissing": "_plan_winload_missing",
    "SecureBootBlocksLoader": "_plan_secure_boot_blocks_loader",
    "StorageDriverMissing": "_plan_storage_driver_missing",
    "MultipleWindowsInstalls": "_plan_multiple_windows_installs",
}


def _needs_esp(raw_steps: list[dict]) -> bool:
    return any("{esp}" in raw["command_template"] or "{store}" in raw["command_template"] for raw in raw_steps)


def _step(
    description: str,
    command: str,
    *,
    destructive: bool = False,
    confirm: bool = False,
    backup: bool = False,
    phase: StepPhase = "repair",
) -> dict:
    return {
        "description": description,
        "command_template": command,
        "destructive": destructive,
        "requires_confirmation": confirm,
        "requires_backup": backup,
        "phase": phase,
    }


class RemediationPlanner:
    """Produces an immutable RemediationPlan for a classified scenario."""

    def plan(self, scenario: Scenario, facts: FactRecord) -> RemediationPlan:
        """Return the ordered remediation plan for ``scenario``.

        ``Healthy`` and ``Ambiguous`` produce plans with no steps.
        """
        builder_name = _BUILDERS.get(scenario)
        builder = getattr(self, builder_name) if builder_name else None
        description = describe_scenario(scenario, facts)
        if builder is None:
            return RemediationPlan(
                scenario=scenario,
                description=description,
                manual_instructions=self._manual_for_empty(scenario, facts),
            )

        raw_steps, manual, blocker = builder(facts)
        raw_steps = [raw for raw in raw_steps if raw is not None]
        if blocker is None and not facts.is_known("system_partition_letter") and _needs_esp(raw_steps):
            blocker = _NO_SAFE_LETTER
        steps = tuple(RemediationStep(order=index, **raw) for index, raw in enumerate(raw_steps, start=1))
        return RemediationPlan(
            scenario=scenario,
            description=description,
            steps=steps,
            blocker=blocker,
            manual_instructions=tuple(manual),
        )

    # ------------------------------------------------------------------
    # Shared fragments
    # ------------------------------------------------------------------
    @staticmethod
    def _mount(facts: FactRecord) -> dict | None:
        if facts.system_partition_letter:
            return None
        if facts.firmware_type == "BIOS":
            return _step("Assign a drive letter to the active system partition", _MOUNT_BIOS, phase="diagnose")
        return _step("Mount the EFI System Partition", _MOUNT_UEFI, phase="diagnose")

    @staticmethod
    def _bcdboot(facts: FactRecord, description: str, *, backup: bool = False) -> dict:
        target = "BIOS" if facts.firmware_type == "BIOS" else "UEFI"
        return _step(
            description,
            f"bcdboot {{drive}}:\\Windows /s {{esp}}: /f {target}",
            destructive=True,
            backup=backup,
        )

    @staticmethod
    def _verify_bcd() -> dict:
        return _step("Verify the BCD store opens and lists a default entry", _VERIFY_BCD, phase="verify")

    @staticmethod
    def _manual_for_empty(scenario: Scenario, facts: FactRecord) -> tuple[str, ...]:
        if scenario != "Ambiguous":
            return ()
        return (
            "Re-run the scan with --debug to see which probes could not complete",
            f"Confirm the recovery environment can see {facts.target_drive}: (load storage drivers if it cannot)",
            "Unlock BitLocker volumes before scanning if manage-bde is available",
        )

    # ------------------------------------------------------------------
    # Scenario tables
    # ------------------------------------------------------------------
    def _plan_bitlocker_locked(self, facts: FactRecord) -> tuple[list[dict | None], list[str], str]:
        drive = facts.target_drive
        steps = [
            _step(f"Show BitLocker protection status for {drive}:", "manage-bde -status {drive}:", phase="diagnose"),
            _step(
                f"Unlock {drive}: with the 48-digit BitLocker recovery key",
                "manage-bde -unlock {drive}: -RecoveryPassword {recovery_key}",
            ),
            _step(f"Confirm {drive}: reports Lock Status: Unlocked", "manage-bde -status {drive}:", phase="verify"),
        ]
        manual = [
            "Retrieve the recovery key from https://aka.ms/myrecoverykey or your organization's key escrow",
            "After unlocking, re-run the scan; no other fault can be diagnosed on a locked volume",
        ]
        blocker = f"BitLocker volume {drive}: is locked; all other repairs are blocked until it is unlocked"
        return steps, manual, blocker

    def _plan_esp_missing(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        drive = facts.target_drive
        if facts.firmware_type == "BIOS":
            steps = [
                _step("Rewrite the master boot record boot code", "bootrec /fixmbr", destructive=True),
                _step(f"Write BOOTMGR boot sector code to {drive}:", "bootsect /nt60 {drive}: /mbr", destructive=True),
                _step(
                    f"Mark {drive}: as the active partition",
                    'powershell -NoProfile -Command "Set-Partition -DriveLetter {drive} -IsActive $true"',
                    destructive=True,
                ),
                _step(
                    f"Create boot files and a new BCD store on {drive}: with bcdboot",
                    "bcdboot {drive}:\\Windows /s {drive}: /f BIOS",
                    destructive=True,
                ),
                _step(
                    "Verify the BCD store opens and lists a default entry",
                    'bcdedit /store "{drive}:\\Boot\\BCD" /enum {default}',
                    phase="verify",
                ),
            ]
            manual = [
                "If the machine still does not boot, run bootrec /scanos and bootrec /rebuildbcd from WinRE",
            ]
            return steps, manual, None

        if facts.disk_layout == "MBR":
            disk = "(Get-Partition -DriveLetter {drive}).DiskNumber"
            steps = [
                _step(
                    "Validate that the disk can be converted from MBR to GPT",
                    f'powershell -NoProfile -Command "mbr2gpt /validate /disk:$({disk}) /allowFullOS"',
                    phase="diagnose",
                ),
                _step(
                    "Convert the disk from MBR to GPT, creating an EFI System Partition",
                    f'powershell -NoProfile -Command "mbr2gpt /convert /disk:$({disk}) /allowFullOS"',
                    destructive=True,
                    confirm=True,
                ),
                _step("Mount the new EFI System Partition", _MOUNT_UEFI, phase="diagnose"),
                self._bcdboot(facts, "Create UEFI boot files and a new BCD store with bcdboot"),
                self._verify_bcd(),
            ]
            manual = ["Switch the firmware boot mode to UEFI after conversion"]
            return steps, manual, None

        steps = [
            _step(
                f"Shrink {drive}: by 260 MB to make room for a new EFI System Partition",
                'powershell -NoProfile -Command "$p = Get-Partition -DriveLetter {drive}; '
                'Resize-Partition -DriveLetter {drive} -Size ($p.Size - 260MB)"',
                destructive=True,
                confirm=True,
            ),
            _step(
                "Create a 260 MB EFI System Partition",
                'powershell -NoProfile -Command "New-Partition -DiskNumber (Get-Partition -DriveLetter {drive}).DiskNumber '
                f"-Size 260MB -GptType '{ESP_GPT_TYPE}' -DriveLetter {{esp}}\"",
                destructive=True,
                confirm=True,
            ),
            _step(
                "Format the new EFI System Partition as FAT32",
                "format {esp}: /FS:FAT32 /V:System /Q /Y",
                destructive=True,
                confirm=True,
            ),
            self._bcdboot(facts, "Create UEFI boot files and a new BCD store with bcdboot"),
            self._verify_bcd(),
        ]
        manual = [
            f"If {drive}: cannot be shrunk, free space with diskpart and create the ESP manually",
            "Firmware may need a new boot entry pointing at \\EFI\\Microsoft\\Boot\\bootmgfw.efi",
        ]
        return steps, manual, None

    def _plan_efi_corrupted(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        filesystem = "NTFS" if facts.firmware_type == "BIOS" else "FAT32"
        if facts.system_partition_letter and facts.system_partition_letter == facts.target_drive:
            # The Windows volume doubles as the system partition; never format it.
            repair = _step(
                "Check and repair the file system of the system partition",
                "chkdsk {drive}: /f",
                destructive=True,
                confirm=True,
            )
        else:
            repair = _step(
                f"Reformat the system partition as {filesystem} (erases its contents)",
                f"format {{esp}}: /FS:{filesystem} /V:System /Q /Y",
                destructive=True,
                confirm=True,
            )
        steps = [
            self._mount(facts),
            repair,
            self._bcdboot(facts, "Recreate boot files and the BCD store with bcdboot"),
            self._verify_bcd(),
        ]
        manual = ["If formatting fails, delete and recreate the partition with diskpart"]
        return steps, manual, None

    def _plan_bcd_missing(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        steps = [
            self._mount(facts),
            self._bcdboot(facts, "Run bcdboot to create a new BCD store"),
            _step("Verify the BCD store was created and is readable", _VERIFY_BCD, phase="verify"),
        ]
        manual = ["If bcdboot fails, run bootrec /rebuildbcd from WinRE"]
        if facts.firmware_type == "BIOS":
            manual.append("For legacy BIOS also run bootrec /fixmbr and bootrec /fixboot")
        return steps, manual, None

    def _plan_bcd_corrupted(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        steps = [
            self._mount(facts),
            _step(
                "Set aside the corrupted BCD store as BCD.corrupt",
                'cmd /c attrib -h -s -r "{store}" && ren "{store}" BCD.corrupt',
                destructive=True,
            ),
            self._bcdboot(facts, "Rebuild the BCD store with bcdboot"),
            self._verify_bcd(),
        ]
        manual = ["If the rebuilt store is also unreadable, run chkdsk /f against the system partition"]
        return steps, manual, None

    def _plan_bcd_points_wrong_partition(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        drive = facts.target_drive
        steps = [
            self._mount(facts),
            _step("List every BCD entry", 'bcdedit /store "{store}" /enum all', phase="diagnose"),
            _step(
                f"Point the default entry's device at {drive}:",
                'bcdedit /store "{store}" /set {default} device partition={drive}:',
                destructive=True,
                backup=True,
            ),
            _step(
                f"Point the default entry's osdevice at {drive}:",
                'bcdedit /store "{store}" /set {default} osdevice partition={drive}:',
                destructive=True,
                backup=True,
            ),
            self._verify_bcd(),
        ]
        manual = [f"If several entries exist, confirm {drive}: is the installation you want to boot by default"]
        return steps, manual, None

    def _plan_winload_missing(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        drive = facts.target_drive
        loader = loader_name(facts.firmware_type)
        steps = [
            _step(
                f"Restore {loader} into {drive}:\\Windows\\System32 from the component store (DISM)",
                "dism /Image:{drive}:\\ /Cleanup-Image /RestoreHealth /Source:{drive}:\\Windows\\WinSxS /LimitAccess",
                destructive=True,
            ),
            _step(
                "Run offline SFC to verify protected boot files",
                "sfc /scannow /offbootdir={drive}:\\ /offwindir={drive}:\\Windows",
                destructive=True,
            ),
            self._bcdboot(facts, f"Refresh boot files so the BCD references the restored {loader}", backup=True),
        ]
        manual = [
            f"If DISM cannot restore {loader}, copy it from install media (sources\\install.wim) of the same build",
        ]
        return steps, manual, None

    def _plan_secure_boot_blocks_loader(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        loader_path = "{drive}:\\Windows\\System32\\winload.efi"
        steps = [
            _step(
                "Check the Authenticode signature of winload.efi",
                f"powershell -NoProfile -Command \"(Get-AuthenticodeSignature '{loader_path}').Status\"",
                phase="diagnose",
            ),
            _step(
                "Replace winload.efi with a signed copy from the component store (DISM)",
                "dism /Image:{drive}:\\ /Cleanup-Image /RestoreHealth /Source:{drive}:\\Windows\\WinSxS /LimitAccess",
                destructive=True,
            ),
            self._bcdboot(facts, "Refresh signed boot manager files on the EFI System Partition", backup=True),
            _step(
                "Verify winload.efi now carries a valid signature",
                "powershell -NoProfile -Command "
                f"\"if ((Get-AuthenticodeSignature '{loader_path}').Status -ne 'Valid') {{ exit 1 }}\"",
                phase="verify",
            ),
        ]
        manual = [
            "If the signature is still rejected, disable Secure Boot in firmware setup, boot, update Windows, "
            "then re-enable Secure Boot",
            "Remove third-party boot managers that replaced bootmgfw.efi",
        ]
        return steps, manual, None

    def _plan_storage_driver_missing(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        drive = facts.target_drive
        steps = [
            _step(
                "Load the storage controller driver (VMD/RAID) into this recovery session",
                'cmd /c for /r "{driver_path}" %i in (*.inf) do drvload "%i"',
            ),
            _step(
                f"Inject the storage driver into the offline Windows image on {drive}:",
                'dism /Image:{drive}:\\ /Add-Driver /Driver:"{driver_path}" /Recurse',
                destructive=True,
            ),
            _step("Confirm the driver is staged in the offline image", "dism /Image:{drive}:\\ /Get-Drivers", phase="verify"),
        ]
        manual = [
            "Download the Intel RST/VMD driver for this platform and extract it to the driver path",
            "Alternatively switch the controller from RAID/VMD to AHCI in firmware setup",
        ]
        return steps, manual, None

    def _plan_multiple_windows_installs(self, facts: FactRecord) -> tuple[list[dict | None], list[str], None]:
        drive = facts.target_drive
        steps = [
            _step("List all Windows boot entries", 'bcdedit /store "{store}" /enum osloader', phase="diagnose"),
            self._bcdboot(facts, f"Make {drive}:\\Windows the default boot entry with bcdboot", backup=True),
            _step("Verify the default boot entry", _VERIFY_BCD, phase="verify"),
        ]
        manual = [
            f"Confirm {drive}: is the installation you intend to boot; the others stay in the boot menu",
        ]
        return steps, manual, None
