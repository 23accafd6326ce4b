"""Execution coordinator: walks a RemediationPlan in dry-run or apply mode.

Dry-run renders each step as a preview and never touches the executor. Apply
runs steps strictly in order with these rules:

* a failed destructive step halts the run; later steps are recorded as not attempted
* a failed non-destructive step is recorded and the walk continues
* the BCD is exported once before the first step that edits an existing store
* steps that need confirmation ask the ``confirm`` callback; a refusal cancels
* cancellation is checked before each step, never mid-step

The verdict is YES only when every step succeeded and a re-probe shows the
scenario's rule no longer matches.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping

from miracle_boot.action_log import ActionLog
from miracle_boot.classifier import RULES_BY_SCENARIO, still_failing, summarize_facts
from miracle_boot.exceptions import TemplateRenderError
from miracle_boot.executor import CommandExecutor, redact_command, render_command
from miracle_boot.models import (
    CommandResult,
    Confidence,
    ExecutionMode,
    ExecutionResult,
    FactRecord,
    RemediationPlan,
    RemediationStep,
    RunOutcome,
    ScanVerdict,
    Verdict,
)
from miracle_boot.planner import BACKUP_COMMAND_TEMPLATE

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[RemediationStep], bool]
ReprobeCallback = Callable[[], FactRecord]


def scenario_confidence(scenario: str) -> Confidence:
    """Baseline confidence for a classified scenario."""
    if scenario == "Ambiguous":
        return "LOW"
    if scenario == "MultipleWindowsInstalls":
        return "MEDIUM"
    return "HIGH"


class ExecutionCoordinator:
    """Runs a plan against a CommandExecutor and produces the scan verdict."""

    def __init__(
        self,
        action_log: ActionLog,
        *,
        render_values: Mapping[str, str | None] | None = None,
        step_timeout: int = 300,
        confirm: ConfirmCallback | None = None,
        cancel_event: threading.Event | None = None,
        reprobe: ReprobeCallback | None = None,
        backup_template: str = BACKUP_COMMAND_TEMPLATE,
    ) -> None:
        self.action_log = action_log
        self.render_values = dict(render_values or {})
        self.step_timeout = step_timeout
        self.confirm = confirm
        self.cancel_event = cancel_event or threading.Event()
        self.reprobe = reprobe
        self.backup_template = backup_template
        self.state = "NotStarted"
        self.transitions: list[str] = ["NotStarted"]

    def run(
        self,
        plan: RemediationPlan,
        mode: ExecutionMode,
        executor: CommandExecutor,
        facts: FactRecord,
    ) -> RunOutcome:
        """Walk ``plan`` and return the per-step results with the final verdict."""
        if mode == "dry-run":
            return self._preview(plan, facts)
        return self._apply(plan, executor, facts)

    # ------------------------------------------------------------------
    # Dry-run
    # ------------------------------------------------------------------
    def _preview(self, plan: RemediationPlan, facts: FactRecord) -> RunOutcome:
        self._enter("Previewing")
        results: list[ExecutionResult] = []
        for step in plan.steps:
            command = redact_command(step.command_template, self.render_values)
            logger.info("[DRY-RUN] Step %d would execute: %s", step.order, command)
            results.append(ExecutionResult(
                step=step,
                attempted=False,
                succeeded=False,
                command=command,
                output=f"[DRY-RUN] Would execute: {command}",
            ))
        self._enter("Completed")
        return RunOutcome(state="previewed", results=tuple(results), verdict=self._plan_verdict(plan, facts))

    def _plan_verdict(self, plan: RemediationPlan, facts: FactRecord) -> ScanVerdict:
        if plan.scenario == "Healthy":
            return self._verdict("YES", "HIGH", "", facts)
        if plan.scenario == "Ambiguous":
            return self._verdict("UNKNOWN", "LOW", plan.description, facts)
        return self._verdict("NO", scenario_confidence(plan.scenario), plan.description, facts)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------
    def _apply(self, plan: RemediationPlan, executor: CommandExecutor, facts: FactRecord) -> RunOutcome:
        if plan.is_empty:
            self._enter("Completed")
            return RunOutcome(state="completed", verdict=self._plan_verdict(plan, facts))

        total = len(plan.steps)
        results: list[ExecutionResult] = []
        first_failure: ExecutionResult | None = None
        halted_at: int | None = None
        cancel_reason: str | None = None
        backup_done = False

        for step in plan.steps:
            if halted_at is not None or cancel_reason is not None:
                skipped = "Skipped: run halted" if halted_at is not None else "Skipped: run cancelled"
                results.append(ExecutionResult(step=step, attempted=False, succeeded=False, error=skipped))
                continue

            if self.cancel_event.is_set():
                cancel_reason = f"Cancelled before step {step.order}: {step.description}"
            elif step.requires_confirmation and (self.confirm is None or not self.confirm(step)):
                cancel_reason = f"Confirmation declined for step {step.order}: {step.description}"
            if cancel_reason is not None:
                self.action_log.append(f"CANCELLED {cancel_reason}")
                logger.warning(cancel_reason)
                results.append(ExecutionResult(step=step, attempted=False, succeeded=False, error=cancel_reason))
                continue

            if step.requires_backup and not backup_done:
                backup_error = self._backup(executor)
                if backup_error is not None:
                    failed = ExecutionResult(step=step, attempted=False, succeeded=False, error=backup_error)
                    results.append(failed)
                    first_failure = first_failure or failed
                    halted_at = step.order
                    self._enter("Aborted")
                    continue
                backup_done = True

            result = self._execute_step(step, total, executor)
            results.append(result)
            if result.succeeded:
                continue
            first_failure = first_failure or result
            if step.destructive:
                halted_at = step.order
                logger.error("Destructive step %d failed; halting remaining steps", step.order)
                self._enter("Aborted")

        if cancel_reason is not None:
            self._enter("Cancelled")
            verdict = self._verdict("NO", "MEDIUM", cancel_reason, facts)
            return RunOutcome(state="cancelled", results=tuple(results), verdict=verdict)

        if first_failure is not None:
            reason = f"Step {first_failure.step.order} failed: {first_failure.step.description} ({first_failure.error})"
            verdict = self._verdict("NO", "HIGH", reason, facts)
            state = "aborted" if halted_at is not None else "completed"
            if state == "completed":
                self._enter("Completed")
            return RunOutcome(state=state, results=tuple(results), verdict=verdict, halted_at=halted_at)

        self._enter("Completed")
        return RunOutcome(state="completed", results=tuple(results), verdict=self._confirm_fix(plan, facts))

    def _execute_step(self, step: RemediationStep, total: int, executor: CommandExecutor) -> ExecutionResult:
        self._enter("Executing")
        shown = redact_command(step.command_template, self.render_values)
        try:
            command = render_command(step.command_template, self.render_values)
        except TemplateRenderError as exc:
            self.action_log.append(f"STEP {step.order}/{total} NOT RUN {step.description}: {exc}")
            self._enter("StepFailed")
            return ExecutionResult(step=step, attempted=False, succeeded=False, command=shown, error=str(exc))

        self.action_log.append(f"STEP {step.order}/{total} START {step.description} :: {shown}")
        logger.info("Step %d/%d: %s", step.order, total, step.description)
        outcome = executor.execute(command, self.step_timeout)
        output = (outcome.stdout + outcome.stderr).strip()

        if outcome.ok:
            self.action_log.append(f"STEP {step.order}/{total} OK exit={outcome.exit_code}")
            self._enter("StepSucceeded")
            return ExecutionResult(step=step, attempted=True, succeeded=True, command=shown, output=output)

        error = self._describe_failure(outcome)
        self.action_log.append(f"STEP {step.order}/{total} FAILED {error}")
        logger.warning("Step %d failed: %s", step.order, error)
        self._enter("StepFailed")
        return ExecutionResult(step=step, attempted=True, succeeded=False, command=shown, output=output, error=error)

    def _backup(self, executor: CommandExecutor) -> str | None:
        """Export the BCD store once; return an error message on failure."""
        try:
            command = render_command(self.backup_template, self.render_values)
        except TemplateRenderError as exc:
            self.action_log.append(f"BACKUP NOT RUN {exc}")
            return f"BCD backup could not be prepared: {exc}"
        self.action_log.append(f"BACKUP START :: {command}")
        outcome = executor.execute(command, self.step_timeout)
        if outcome.ok:
            self.action_log.append("BACKUP OK")
            return None
        error = self._describe_failure(outcome)
        self.action_log.append(f"BACKUP FAILED {error}")
        logger.error("BCD backup failed (%s); refusing to edit the store", error)
        return f"BCD backup failed: {error}"

    def _describe_failure(self, outcome: CommandResult) -> str:
        if outcome.timed_out:
            return f"timed out after {self.step_timeout}s"
        detail = (outcome.stderr or outcome.stdout).strip().splitlines()
        return f"exit code {outcome.exit_code}" + (f": {detail[0]}" if detail else "")

    def _confirm_fix(self, plan: RemediationPlan, facts: FactRecord) -> ScanVerdict:
        if self.reprobe is None:
            return self._verdict("NO", "LOW", "Fix not verified: no post-remediation re-probe available", facts)
        try:
            after = self.reprobe()
        except Exception as exc:
            logger.error("Post-remediation re-probe failed: %s", exc)
            return self._verdict("NO", "LOW", f"Fix not verified: re-probe failed ({exc})", facts)

        if still_failing(plan.scenario, after):
            failing = ", ".join(RULES_BY_SCENARIO[plan.scenario].facts)
            return self._verdict("NO", "HIGH", f"Still failing after remediation: {failing}", after)
        return self._verdict("YES", scenario_confidence(plan.scenario), "", after)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _enter(self, state: str) -> None:
        self.state = state
        self.transitions.append(state)

    @staticmethod
    def _verdict(verdict: Verdict, confidence: Confidence, reason: str, facts: FactRecord) -> ScanVerdict:
        detected, missing = summarize_facts(facts)
        return ScanVerdict(
            verdict=verdict,
            confidence=confidence,
            blocking_reason=reason,
            detected=detected,
            missing=missing,
        )
