"""Scenario classifier: maps a FactRecord onto exactly one named scenario.

Rules are evaluated in priority order and the first rule whose predicate holds
decides the scenario. Rules are not mutually exclusive, so the order below is
part of the contract. A match that rests on an undetermined fact, or a clean
pass with undetermined facts, classifies as ``Ambiguous`` instead.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from miracle_boot.models import FactRecord, Scenario, loader_name


@dataclass(frozen=True)
class ClassificationRule:
    """One prioritized scenario rule."""

    scenario: Scenario
    facts: tuple[str, ...]
    predicate: Callable[[FactRecord], bool]
    summary: str


CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        "BitlockerLocked",
        ("bitlocker_lock_state",),
        lambda f: f.bitlocker_lock_state == "Locked",
        "BitLocker volume is locked",
    ),
    ClassificationRule(
        "EspMissing",
        ("esp_present",),
        lambda f: not f.esp_present,
        "EFI System Partition (or BIOS system partition) is missing",
    ),
    ClassificationRule(
        "EfiCorrupted",
        ("esp_filesystem", "firmware_type"),
        lambda f: f.esp_filesystem in ("RAW", "Other") or (f.esp_filesystem == "NTFS" and f.firmware_type == "UEFI"),
        "System partition filesystem is not bootable",
    ),
    ClassificationRule(
        "BcdMissing",
        ("bcd_file_exists",),
        lambda f: not f.bcd_file_exists,
        "BCD store file is missing",
    ),
    ClassificationRule(
        "BcdCorrupted",
        ("bcd_file_exists", "bcd_readable"),
        lambda f: f.bcd_file_exists and not f.bcd_readable,
        "BCD store exists but cannot be opened",
    ),
    ClassificationRule(
        "BcdPointsWrongPartition",
        ("bcd_default_points_to_existing_partition",),
        lambda f: not f.bcd_default_points_to_existing_partition,
        "BCD default entry points at the wrong partition",
    ),
    ClassificationRule(
        "WinloadMissing",
        ("winload_present",),
        lambda f: not f.winload_present,
        "Windows OS loader is missing",
    ),
    ClassificationRule(
        "SecureBootBlocksLoader",
        ("secure_boot_enabled", "winload_signature_valid"),
        lambda f: f.secure_boot_enabled and not f.winload_signature_valid,
        "Secure Boot rejects the OS loader signature",
    ),
    ClassificationRule(
        "StorageDriverMissing",
        ("storage_driver_loaded",),
        lambda f: not f.storage_driver_loaded,
        "Storage controller driver is not loaded",
    ),
    ClassificationRule(
        "MultipleWindowsInstalls",
        ("windows_installation_count",),
        lambda f: f.windows_installation_count > 1,
        "More than one Windows installation is present",
    ),
)

RULES_BY_SCENARIO: dict[str, ClassificationRule] = {rule.scenario: rule for rule in CLASSIFICATION_RULES}

SCENARIO_NAMES: tuple[str, ...] = tuple(rule.scenario for rule in CLASSIFICATION_RULES) + ("Healthy", "Ambiguous")


def _relevant_facts(facts: FactRecord) -> set[str]:
    relevant = {name for rule in CLASSIFICATION_RULES for name in rule.facts}
    if facts.is_known("secure_boot_enabled") and not facts.secure_boot_enabled:
        relevant.discard("winload_signature_valid")
    return relevant


def classify(facts: FactRecord) -> Scenario:
    """Return the highest-priority scenario for ``facts``.

    Pure and total: never raises for a valid FactRecord.
    """
    for rule in CLASSIFICATION_RULES:
        if rule.predicate(facts):
            if any(not facts.is_known(name) for name in rule.facts):
                return "Ambiguous"
            return rule.scenario
    if _relevant_facts(facts) & facts.unknown_facts:
        return "Ambiguous"
    return "Healthy"


def still_failing(scenario: Scenario, facts: FactRecord) -> bool:
    """True when ``scenario``'s rule still matches ``facts`` (used after remediation)."""
    rule = RULES_BY_SCENARIO.get(scenario)
    if rule is None:
        return False
    return rule.predicate(facts) or any(not facts.is_known(name) for name in rule.facts)


def describe_scenario(scenario: Scenario, facts: FactRecord) -> str:
    """Human description of a scenario, specific to the observed environment."""
    drive = facts.target_drive
    loader = loader_name(facts.firmware_type)
    partition = "EFI System Partition" if facts.firmware_type == "UEFI" else "active system partition"
    descriptions: dict[str, str] = {
        "BitlockerLocked": f"BitLocker volume {drive}: is locked; unlock it with the recovery key before any repair",
        "EspMissing": f"{partition} missing on the disk holding {drive}:",
        "EfiCorrupted": f"{partition} filesystem is corrupted ({facts.esp_filesystem})",
        "BcdMissing": "BCD store missing from the system partition",
        "BcdCorrupted": "BCD store present but unreadable (corrupted)",
        "BcdPointsWrongPartition": f"BCD default entry does not point to {drive}:",
        "WinloadMissing": f"{loader} missing from {drive}:\\Windows\\System32",
        "SecureBootBlocksLoader": f"Secure Boot is blocking {loader} (signature not valid)",
        "StorageDriverMissing": "Storage controller driver (VMD/RAID) not loaded; the Windows disk may be hidden",
        "MultipleWindowsInstalls": (
            f"{facts.windows_installation_count} Windows installations found; default boot target may be wrong"
        ),
        "Healthy": "",
    }
    if scenario == "Ambiguous":
        unknown = ", ".join(sorted(facts.unknown_facts)) or "none"
        return f"Boot environment could not be classified; undetermined facts: {unknown}"
    return descriptions[scenario]


def summarize_facts(facts: FactRecord) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split the fact record into what was detected and what is missing."""
    detected: list[str] = []
    missing: list[str] = []
    drive = facts.target_drive
    loader = loader_name(facts.firmware_type)
    partition = "ESP" if facts.firmware_type == "UEFI" else "System partition"

    def known(name: str) -> bool:
        if facts.is_known(name):
            return True
        missing.append(f"{name} (unknown)")
        return False

    if known("firmware_type"):
        detected.append(f"{facts.firmware_type} firmware")
    if known("disk_layout"):
        detected.append(f"{facts.disk_layout} disk")
    if known("esp_present"):
        if facts.esp_present:
            where = f" at {facts.system_partition_letter}:" if facts.system_partition_letter else ""
            detected.append(f"{partition} ({facts.esp_filesystem}){where}")
        else:
            missing.append(partition)
    if known("bcd_file_exists"):
        if facts.bcd_file_exists:
            detected.append("BCD store")
            if known("bcd_readable"):
                if facts.bcd_readable:
                    detected.append("BCD readable")
                    if known("bcd_default_points_to_existing_partition"):
                        if facts.bcd_default_points_to_existing_partition:
                            detected.append(f"BCD default -> {drive}:")
                        else:
                            missing.append(f"BCD default entry for {drive}:")
                else:
                    missing.append("readable BCD")
        else:
            missing.append("BCD store")
    if known("winload_present"):
        (detected if facts.winload_present else missing).append(loader)
    if known("secure_boot_enabled"):
        detected.append("Secure Boot on" if facts.secure_boot_enabled else "Secure Boot off")
        if facts.secure_boot_enabled and known("winload_signature_valid"):
            (detected if facts.winload_signature_valid else missing).append(f"valid {loader} signature")
    if known("storage_driver_loaded"):
        (detected if facts.storage_driver_loaded else missing).append("storage driver")
    if known("bitlocker_lock_state"):
        if facts.bitlocker_lock_state == "Locked":
            missing.append("BitLocker unlock")
        elif facts.bitlocker_lock_state == "Unlocked":
            detected.append("BitLocker unlocked")
        else:
            detected.append("BitLocker not encrypted")
    if known("windows_installation_count"):
        if facts.windows_installation_count:
            detected.append(f"{facts.windows_installation_count} Windows installation(s)")
        else:
            missing.append("Windows installation")
    return tuple(detected), tuple(missing)
