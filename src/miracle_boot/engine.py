"""Core scan engine that chains probe, classifier, planner, coordinator and report.

The BootScanEngine starts a fresh ScanSession for every scan after the first,
so cached command output never carries over from one scan into the next. Every
stage except the coordinator is a pure function of its input; the coordinator
performs the only side effects, through the injected CommandExecutor.
"""

from __future__ import annotations

import logging

from miracle_boot.action_log import ActionLog
from miracle_boot.classifier import classify
from miracle_boot.config import BootConfig, normalize_drive_letter
from miracle_boot.coordinator import ConfirmCallback, ExecutionCoordinator, ReprobeCallback
from miracle_boot.exceptions import ActionLogError
from miracle_boot.executor import CommandExecutor
from miracle_boot.models import ExecutionMode, FactRecord, ProbeResult, ScanResult, bcd_store_path
from miracle_boot.planner import RemediationPlanner
from miracle_boot.probe import EnvironmentProbe, is_sufficient
from miracle_boot.report import format_report
from miracle_boot.session import ScanSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INSUFFICIENT_FACTS = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 3


def open_action_log(path: str | None) -> ActionLog:
    """Open the file-backed action log, falling back to memory if it cannot be created."""
    try:
        return ActionLog(path)
    except ActionLogError as exc:
        logger.warning("%s; keeping the action log in memory only", exc)
        return ActionLog()


class BootScanEngine:
    """Runs one scan-and-plan cycle, optionally applying the plan."""

    def __init__(
        self,
        config: BootConfig,
        executor: CommandExecutor,
        session: ScanSession | None = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.session = session or ScanSession(open_action_log(config.action_log_path))
        self._session_used = False
        self.planner = RemediationPlanner()

    def scan(
        self,
        target_drive: str | None = None,
        esp_letter: str | None = None,
        *,
        mode: ExecutionMode = "dry-run",
        confirm: ConfirmCallback | None = None,
        recovery_key: str | None = None,
    ) -> ScanResult:
        """Probe the machine, classify, plan, and walk the plan in ``mode``.

        Raises:
            InvalidDriveError: If a drive letter argument is malformed.
        """
        drive = normalize_drive_letter(target_drive or self.config.target_drive)
        esp = normalize_drive_letter(esp_letter or self.config.esp_letter)
        if self._session_used:
            self.session = ScanSession(self.session.action_log)
        self._session_used = True
        probe = EnvironmentProbe(self.executor, self.config.probe_timeout, self.session)

        logger.info("Scanning %s: (system partition hint %s:)", drive, esp)
        facts, probe_results = probe.collect(drive, esp)

        def reprobe() -> FactRecord:
            self.session.invalidate_cache()
            return probe.probe(drive, esp)

        return self.evaluate(
            facts,
            mode=mode,
            esp_letter=esp,
            probe_results=probe_results,
            confirm=confirm,
            recovery_key=recovery_key,
            reprobe=reprobe,
        )

    def evaluate(
        self,
        facts: FactRecord,
        *,
        mode: ExecutionMode = "dry-run",
        esp_letter: str | None = None,
        probe_results: tuple[ProbeResult, ...] = (),
        confirm: ConfirmCallback | None = None,
        recovery_key: str | None = None,
        reprobe: ReprobeCallback | None = None,
    ) -> ScanResult:
        """Classify and plan an already-gathered fact record, then walk the plan."""
        esp = normalize_drive_letter(esp_letter or self.config.esp_letter)
        scenario = classify(facts)
        plan = self.planner.plan(scenario, facts)
        logger.info("Classified as %s (%d remediation steps)", scenario, len(plan.steps))

        coordinator = ExecutionCoordinator(
            self.session.action_log,
            render_values=self.render_values(facts, esp, recovery_key),
            step_timeout=self.config.step_timeout,
            confirm=confirm,
            cancel_event=self.session.cancel_event,
            reprobe=reprobe,
        )
        if mode == "apply":
            self.session.repair_in_progress = True
            try:
                outcome = coordinator.run(plan, mode, self.executor, facts)
            finally:
                self.session.repair_in_progress = False
        else:
            outcome = coordinator.run(plan, mode, self.executor, facts)

        sufficient = is_sufficient(facts)
        if outcome.state == "aborted":
            exit_code = EXIT_ABORTED
        elif outcome.state == "cancelled":
            exit_code = EXIT_CANCELLED
        elif not sufficient:
            exit_code = EXIT_INSUFFICIENT_FACTS
        else:
            exit_code = EXIT_OK

        report = format_report(
            facts,
            scenario,
            plan,
            outcome.results,
            outcome.verdict,
            simulated=mode == "dry-run",
        )
        return ScanResult(
            session_id=self.session.id,
            mode=mode,
            facts=facts,
            probe_results=probe_results,
            sufficient=sufficient,
            scenario=scenario,
            plan=plan,
            outcome=outcome,
            report=report,
            exit_code=exit_code,
        )

    def render_values(self, facts: FactRecord, esp_letter: str, recovery_key: str | None) -> dict[str, str | None]:
        """Values substituted into command templates for this session.

        The system partition letter the probe discovered wins over the
        ``esp_letter`` hint. When no letter is safe to use, ``esp`` and
        ``store`` are None and any step that needs them is not attempted.
        """
        esp: str | None = None
        if facts.is_known("system_partition_letter"):
            esp = facts.system_partition_letter or esp_letter
        backup_dir = self.config.backup_dir.rstrip("\\")
        return {
            "drive": facts.target_drive,
            "esp": esp,
            "store": bcd_store_path(facts.firmware_type, esp) if esp else None,
            "backup_dir": backup_dir,
            "backup_path": f"{backup_dir}\\BCD-{self.session.id[:8]}.bak",
            "driver_path": self.config.driver_path,
            "recovery_key": recovery_key,
        }
