"""Scenario catalogue tool: lists the classification rules in priority order."""

from __future__ import annotations

from miracle_boot.classifier import CLASSIFICATION_RULES
from miracle_boot.coordinator import scenario_confidence


def list_scenarios() -> dict:
    """List every failure scenario with its priority and the facts it reads.

    Returns:
        Dict with the ordered scenario list and total count.
    """
    scenarios = [
        {
            "priority": priority,
            "name": rule.scenario,
            "summary": rule.summary,
            "facts": list(rule.facts),
            "confidence": scenario_confidence(rule.scenario),
        }
        for priority, rule in enumerate(CLASSIFICATION_RULES, start=1)
    ]
    return {
        "scenarios": scenarios,
        "total_count": len(scenarios),
        "terminal": ["Healthy", "Ambiguous"],
    }
