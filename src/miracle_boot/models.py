"""Pydantic v2 data models for facts, scenarios, remediation plans, and verdicts.

All core data structures used throughout the planner live here. Every model
is frozen: a re-scan produces new objects rather than mutating old ones.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from miracle_boot.config import normalize_drive_letter
from miracle_boot.exceptions import InvalidDriveError

FirmwareType = Literal["UEFI", "BIOS"]
DiskLayout = Literal["GPT", "MBR"]
EspFilesystem = Literal["FAT32", "NTFS", "RAW", "Other", "Absent"]
BitlockerLockState = Literal["Unlocked", "Locked", "NotEncrypted"]
Scenario = Literal[
    "BitlockerLocked",
    "EspMissing",
    "EfiCorrupted",
    "BcdMissing",
    "BcdCorrupted",
    "BcdPointsWrongPartition",
    "WinloadMissing",
    "SecureBootBlocksLoader",
    "StorageDriverMissing",
    "MultipleWindowsInstalls",
    "Healthy",
    "Ambiguous",
]
Verdict = Literal["YES", "NO", "UNKNOWN"]
Confidence = Literal["LOW", "MEDIUM", "HIGH"]
ExecutionMode = Literal["dry-run", "apply"]
RunState = Literal["completed", "previewed", "aborted", "cancelled"]
StepPhase = Literal["diagnose", "repair", "verify"]
ProbeStatus = Literal["ok", "unknown", "failed"]


class FactRecord(BaseModel):
    """Immutable snapshot of the boot environment at scan time.

    ``unknown_facts`` names the fields whose probe could not determine a value;
    those fields hold their conservative default.

    ``system_partition_letter`` is the letter the ESP (or BIOS active partition)
    is reachable at, or None when it has none. It is unknown when no letter can
    be used safely for it.
    """

    model_config = ConfigDict(frozen=True)

    firmware_type: FirmwareType
    disk_layout: DiskLayout
    esp_present: bool
    esp_filesystem: EspFilesystem
    system_partition_letter: str | None = None
    bcd_file_exists: bool
    bcd_readable: bool
    bcd_default_points_to_existing_partition: bool
    winload_present: bool
    winload_signature_valid: bool
    secure_boot_enabled: bool
    storage_driver_loaded: bool
    bitlocker_lock_state: BitlockerLockState
    windows_installation_count: int = Field(ge=0)
    target_drive: str
    unknown_facts: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("target_drive", "system_partition_letter", mode="before")
    @classmethod
    def _single_letter(cls, value: object) -> str | None:
        if value is None:
            return None
        try:
            return normalize_drive_letter(value)
        except InvalidDriveError as exc:
            raise ValueError(str(exc)) from exc

    def is_known(self, fact: str) -> bool:
        return fact not in self.unknown_facts


class ProbeResult(BaseModel):
    """Outcome of a single sub-probe: a value, or the reason there is none."""

    model_config = ConfigDict(frozen=True)

    fact: str
    status: ProbeStatus
    value: bool | int | str | None = None
    reason: str = ""

    @classmethod
    def ok(cls, fact: str, value: bool | int | str | None) -> ProbeResult:
        return cls(fact=fact, status="ok", value=value)

    @classmethod
    def unknown(cls, fact: str, reason: str) -> ProbeResult:
        return cls(fact=fact, status="unknown", reason=reason)

    @classmethod
    def failed(cls, fact: str, reason: str) -> ProbeResult:
        return cls(fact=fact, status="failed", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"


class RemediationStep(BaseModel):
    """A single planned remediation action."""

    model_config = ConfigDict(frozen=True)

    order: int = Field(ge=1)
    description: str
    command_template: str
    destructive: bool = False
    requires_confirmation: bool = False
    requires_backup: bool = False
    phase: StepPhase = "repair"

    @model_validator(mode="after")
    def _confirmation_implies_destructive(self) -> RemediationStep:
        if self.requires_confirmation and not self.destructive:
            raise ValueError("requires_confirmation is only valid on destructive steps")
        return self


class RemediationPlan(BaseModel):
    """Ordered remediation steps for one classified scenario."""

    model_config = ConfigDict(frozen=True)

    scenario: Scenario
    description: str = ""
    steps: tuple[RemediationStep, ...] = ()
    blocker: str | None = None
    manual_instructions: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.steps


class CommandResult(BaseModel):
    """What the command executor reports back for one invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ExecutionResult(BaseModel):
    """Outcome of one remediation step within a run."""

    model_config = ConfigDict(frozen=True)

    step: RemediationStep
    attempted: bool
    succeeded: bool
    command: str = ""
    output: str = ""
    error: str | None = None


class ScanVerdict(BaseModel):
    """Terminal output of a scan-and-plan cycle."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    confidence: Confidence
    blocking_reason: str = ""
    detected: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()


class RunOutcome(BaseModel):
    """Everything the execution coordinator produced for one plan walk."""

    model_config = ConfigDict(frozen=True)

    state: RunState
    results: tuple[ExecutionResult, ...] = ()
    verdict: ScanVerdict
    halted_at: int | None = None


class ScanResult(BaseModel):
    """Complete result of one scan invocation."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    mode: ExecutionMode
    facts: FactRecord
    probe_results: tuple[ProbeResult, ...] = ()
    sufficient: bool = True
    scenario: Scenario
    plan: RemediationPlan
    outcome: RunOutcome
    report: str = ""
    exit_code: int = 0


def bcd_store_path(firmware_type: FirmwareType, esp_letter: str) -> str:
    """Location of the BCD store on the mounted system partition."""
    if firmware_type == "BIOS":
        return f"{esp_letter}:\\Boot\\BCD"
    return f"{esp_letter}:\\EFI\\Microsoft\\Boot\\BCD"


def loader_name(firmware_type: FirmwareType) -> str:
    return "winload.exe" if firmware_type == "BIOS" else "winload.efi"
