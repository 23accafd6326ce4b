"""Canonical human-readable rendering of a scan.

The layout is fixed so the CLI, the MCP server and the tests all diff against
one format: header banner, SCENARIO, DETECTED, MISSING, numbered PLAN, RESULTS
(apply mode only), VERDICT, CONFIDENCE, BLOCKING REASON, closing banner.

``VERDICT (SIM)`` means nothing was applied: the verdict is a prediction from
the plan, whether the facts came from a dry-run against this machine or from a
scenario simulation. ``VERDICT (REAL)`` only follows an apply run.
"""

from __future__ import annotations

from collections.abc import Sequence

from miracle_boot.models import (
    ExecutionResult,
    FactRecord,
    RemediationPlan,
    RemediationStep,
    Scenario,
    ScanVerdict,
)

BANNER = "=" * 72
TITLE = "MIRACLE BOOT - PRECISION DETECTION & REPAIR PLAN"


def _step_flags(step: RemediationStep) -> str:
    flags = []
    if step.destructive:
        flags.append("DESTRUCTIVE")
    if step.requires_confirmation:
        flags.append("CONFIRM")
    if step.requires_backup:
        flags.append("BACKUP FIRST")
    return f" [{', '.join(flags)}]" if flags else ""


def _result_status(result: ExecutionResult) -> str:
    if result.succeeded:
        return "OK"
    if result.attempted:
        return "FAILED"
    return "SKIPPED" if result.error else "PREVIEW"


def format_report(
    facts: FactRecord,
    scenario: Scenario,
    plan: RemediationPlan,
    results: Sequence[ExecutionResult],
    verdict: ScanVerdict,
    *,
    simulated: bool = True,
) -> str:
    """Render a scan as the fixed-layout text report.

    Args:
        facts: The fact record the scan classified.
        scenario: The classified scenario.
        plan: The remediation plan for the scenario.
        results: Per-step results from the coordinator (previews in dry-run).
        verdict: The final verdict.
        simulated: True for dry-run/simulation output, False after apply.

    Returns:
        The report text, newline-terminated.
    """
    lines = [
        BANNER,
        TITLE,
        BANNER,
        f"Target: {facts.target_drive}:  Firmware: {facts.firmware_type}  Disk: {facts.disk_layout}",
        f"SCENARIO: {scenario}",
    ]
    if plan.description:
        lines.append(f"DESCRIPTION: {plan.description}")
    lines.append(f"DETECTED: {', '.join(verdict.detected) or '(none)'}")
    lines.append(f"MISSING: {', '.join(verdict.missing) or '(none)'}")
    if plan.blocker:
        lines.append(f"BLOCKER: {plan.blocker}")

    lines.append("PLAN:")
    if not plan.steps:
        lines.append("  (no remediation steps)")
    by_order = {r.step.order: r for r in results}
    for step in plan.steps:
        lines.append(f"  {step.order}. {step.description}{_step_flags(step)}")
        result = by_order.get(step.order)
        command = result.command if result and result.command else step.command_template
        lines.append(f"     > {command}")
    for instruction in plan.manual_instructions:
        lines.append(f"  * {instruction}")

    if not simulated and results:
        lines.append("RESULTS:")
        for result in results:
            status = _result_status(result)
            suffix = f" - {result.error}" if result.error else ""
            lines.append(f"  {result.step.order}. {status}{suffix}")

    lines.append(f"VERDICT ({'SIM' if simulated else 'REAL'}): {verdict.verdict}")
    lines.append(f"CONFIDENCE: {verdict.confidence}")
    lines.append(f"BLOCKING REASON: {verdict.blocking_reason or '(none)'}")
    lines.append(BANNER)
    return "\n".join(lines) + "\n"
