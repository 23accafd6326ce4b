"""Scenario simulation tool: previews the plan for mock failure scenarios."""

from __future__ import annotations

from miracle_boot.config import BootConfig
from miracle_boot.simulation import SIMULATED_FAULTS, run_simulation
from miracle_boot.tools.scan import scan_result_to_dict


def simulate_scenarios(config: BootConfig, scenario: str | None = None) -> dict:
    """Run one named simulation, or all of them.

    Args:
        config: Application configuration.
        scenario: Scenario name to simulate; all failure scenarios when None.

    Returns:
        Dict with one entry per simulated scenario.
    """
    if scenario is not None and scenario != "Healthy" and scenario not in SIMULATED_FAULTS:
        return {
            "status": "error",
            "message": f"Unknown scenario {scenario!r}",
            "available": sorted([*SIMULATED_FAULTS, "Healthy"]),
        }

    names = [scenario] if scenario else list(SIMULATED_FAULTS)
    simulations = []
    for name in names:
        result = scan_result_to_dict(run_simulation(config, name))
        result["simulated"] = name
        simulations.append(result)

    matched = sum(1 for s in simulations if s["scenario"] == s["simulated"])
    return {
        "status": "ok",
        "simulations": simulations,
        "total_count": len(simulations),
        "matched_count": matched,
    }
