"""Tests for pydantic data models."""

from __future__ import annotations

import pytest
from helpers import make_facts
from pydantic import ValidationError

from miracle_boot.models import (
    CommandResult,
    FactRecord,
    ProbeResult,
    RemediationPlan,
    RemediationStep,
    bcd_store_path,
    loader_name,
)


class TestFactRecord:
    def test_healthy_record(self) -> None:
        facts = make_facts()
        assert facts.firmware_type == "UEFI"
        assert facts.unknown_facts == frozenset()
        assert facts.is_known("bcd_readable")

    def test_is_frozen(self) -> None:
        facts = make_facts()
        with pytest.raises(ValidationError):
            facts.esp_present = False  # type: ignore[misc]

    def test_target_drive_normalized(self) -> None:
        facts = make_facts(target_drive="d:")
        assert facts.target_drive == "D"

    def test_target_drive_rejects_multiple_letters(self) -> None:
        with pytest.raises(ValidationError):
            make_facts(target_drive="CD")

    def test_system_partition_letter_normalized(self) -> None:
        assert make_facts(system_partition_letter="z:").system_partition_letter == "Z"
        assert make_facts().system_partition_letter is None

    def test_negative_installation_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_facts(windows_installation_count=-1)

    def test_invalid_enum_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_facts(firmware_type="CSM")

    def test_unknown_facts_reported(self) -> None:
        facts = make_facts(unknown_facts=frozenset({"secure_boot_enabled"}))
        assert not facts.is_known("secure_boot_enabled")
        assert facts.is_known("firmware_type")

    def test_json_round_trip(self) -> None:
        facts = make_facts(unknown_facts=frozenset({"storage_driver_loaded"}))
        restored = FactRecord.model_validate_json(facts.model_dump_json())
        assert restored == facts


class TestProbeResult:
    def test_constructors(self) -> None:
        ok = ProbeResult.ok("esp_present", True)
        assert ok.is_ok
        assert ok.value is True

        unknown = ProbeResult.unknown("esp_present", "Timed out after 5s")
        assert unknown.status == "unknown"
        assert unknown.value is None
        assert not unknown.is_ok

        failed = ProbeResult.failed("esp_present", "boom")
        assert failed.status == "failed"
        assert failed.reason == "boom"


class TestRemediationStep:
    def test_defaults(self) -> None:
        step = RemediationStep(order=1, description="Check", command_template="bcdedit /enum")
        assert not step.destructive
        assert not step.requires_confirmation
        assert not step.requires_backup
        assert step.phase == "repair"

    def test_confirmation_requires_destructive(self) -> None:
        with pytest.raises(ValidationError, match="requires_confirmation"):
            RemediationStep(
                order=1,
                description="Format",
                command_template="format S:",
                requires_confirmation=True,
            )

    def test_order_starts_at_one(self) -> None:
        with pytest.raises(ValidationError):
            RemediationStep(order=0, description="x", command_template="x")


class TestRemediationPlan:
    def test_empty_plan(self) -> None:
        plan = RemediationPlan(scenario="Healthy")
        assert plan.is_empty
        assert plan.blocker is None

    def test_plan_with_steps(self) -> None:
        step = RemediationStep(order=1, description="x", command_template="x")
        plan = RemediationPlan(scenario="BcdMissing", steps=(step,))
        assert not plan.is_empty

    def test_rejects_unknown_scenario(self) -> None:
        with pytest.raises(ValidationError):
            RemediationPlan(scenario="DiskOnFire")


class TestCommandResult:
    def test_ok(self) -> None:
        assert CommandResult(exit_code=0).ok
        assert not CommandResult(exit_code=1).ok
        assert not CommandResult(exit_code=0, timed_out=True).ok


class TestHelpers:
    def test_bcd_store_path(self) -> None:
        assert bcd_store_path("UEFI", "S") == "S:\\EFI\\Microsoft\\Boot\\BCD"
        assert bcd_store_path("BIOS", "S") == "S:\\Boot\\BCD"

    def test_loader_name(self) -> None:
        assert loader_name("UEFI") == "winload.efi"
        assert loader_name("BIOS") == "winload.exe"
