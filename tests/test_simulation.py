"""Tests for the scenario simulation harness."""

from __future__ import annotations

import pytest

from miracle_boot.classifier import RULES_BY_SCENARIO, classify
from miracle_boot.config import BootConfig
from miracle_boot.exceptions import ScanError
from miracle_boot.simulation import SIMULATED_FAULTS, _RefusingExecutor, run_simulation, simulated_facts


class TestSimulatedFacts:
    def test_covers_every_failure_scenario(self) -> None:
        assert set(SIMULATED_FAULTS) == set(RULES_BY_SCENARIO)

    @pytest.mark.parametrize("scenario", list(SIMULATED_FAULTS))
    def test_classifies_as_itself(self, scenario: str) -> None:
        assert classify(simulated_facts(scenario)) == scenario

    def test_healthy_baseline(self) -> None:
        assert classify(simulated_facts("Healthy")) == "Healthy"

    def test_unknown_scenario(self) -> None:
        with pytest.raises(KeyError):
            simulated_facts("DiskOnFire")

    def test_target_drive(self) -> None:
        assert simulated_facts("BcdMissing", "D").target_drive == "D"


class TestRunSimulation:
    def test_winload_missing(self, boot_config: BootConfig) -> None:
        result = run_simulation(boot_config, "WinloadMissing")
        assert result.scenario == "WinloadMissing"
        assert result.mode == "dry-run"
        assert len(result.plan.steps) == 3
        assert "VERDICT (SIM): NO" in result.report
        assert result.outcome.state == "previewed"

    def test_multiple_installs_medium(self, boot_config: BootConfig) -> None:
        result = run_simulation(boot_config, "MultipleWindowsInstalls")
        assert result.outcome.verdict.confidence == "MEDIUM"

    def test_no_action_log_entries(self, boot_config: BootConfig) -> None:
        result = run_simulation(boot_config, "EspMissing")
        assert result.exit_code == 0
        assert result.outcome.verdict.verdict == "NO"

    def test_refusing_executor(self) -> None:
        with pytest.raises(ScanError):
            _RefusingExecutor().execute("bcdedit /enum", 5)
