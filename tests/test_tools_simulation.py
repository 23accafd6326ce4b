"""Tests for the scenario simulation tool."""

from __future__ import annotations

from miracle_boot.config import BootConfig
from miracle_boot.tools.simulation import simulate_scenarios


class TestSimulateScenarios:
    def test_all(self, boot_config: BootConfig) -> None:
        result = simulate_scenarios(boot_config)
        assert result["status"] == "ok"
        assert result["total_count"] == 10
        assert result["matched_count"] == 10
        for simulation in result["simulations"]:
            assert simulation["scenario"] == simulation["simulated"]
            assert simulation["mode"] == "dry-run"

    def test_single(self, boot_config: BootConfig) -> None:
        result = simulate_scenarios(boot_config, "BcdCorrupted")
        assert result["total_count"] == 1
        assert result["simulations"][0]["scenario"] == "BcdCorrupted"

    def test_healthy(self, boot_config: BootConfig) -> None:
        result = simulate_scenarios(boot_config, "Healthy")
        assert result["simulations"][0]["verdict"]["verdict"] == "YES"

    def test_unknown(self, boot_config: BootConfig) -> None:
        result = simulate_scenarios(boot_config, "DiskOnFire")
        assert result["status"] == "error"
        assert "DiskOnFire" in result["message"]
        assert "Healthy" in result["available"]
