"""Boot scan tool shared by the CLI and the MCP server.

Wraps BootScanEngine.scan and flattens the ScanResult into a JSON-ready dict.
"""

from __future__ import annotations

from miracle_boot.config import BootConfig
from miracle_boot.coordinator import ConfirmCallback
from miracle_boot.engine import BootScanEngine
from miracle_boot.executor import CommandExecutor
from miracle_boot.models import ScanResult
from miracle_boot.session import ScanSession


def scan_result_to_dict(result: ScanResult) -> dict:
    """Flatten a ScanResult into the dict shape returned by every scan tool."""
    return {
        "session_id": result.session_id,
        "mode": result.mode,
        "scenario": result.scenario,
        "sufficient": result.sufficient,
        "exit_code": result.exit_code,
        "state": result.outcome.state,
        "verdict": result.outcome.verdict.model_dump(mode="json"),
        "plan": result.plan.model_dump(mode="json"),
        "results": [r.model_dump(mode="json") for r in result.outcome.results],
        "facts": result.facts.model_dump(mode="json"),
        "undetermined": [
            {"fact": p.fact, "status": p.status, "reason": p.reason} for p in result.probe_results if not p.is_ok
        ],
        "report": result.report,
    }


def run_boot_scan(
    config: BootConfig,
    executor: CommandExecutor,
    target_drive: str | None = None,
    esp_letter: str | None = None,
    apply: bool = False,
    confirm: ConfirmCallback | None = None,
    recovery_key: str | None = None,
    session: ScanSession | None = None,
) -> dict:
    """Scan the boot environment and plan (or apply) its repair.

    Args:
        config: Application configuration.
        executor: Command executor used for probes and remediation steps.
        target_drive: Windows drive letter; defaults to the configured one.
        esp_letter: Letter to mount the system partition at; defaults to config.
        apply: Run the plan instead of previewing it.
        confirm: Callback consulted before irreversible steps.
        recovery_key: BitLocker recovery key for the unlock step.
        session: Optional pre-built session (e.g. to cancel from another thread).

    Returns:
        Dict representation of the scan result.
    """
    engine = BootScanEngine(config, executor, session=session)
    result = engine.scan(
        target_drive,
        esp_letter,
        mode="apply" if apply else "dry-run",
        confirm=confirm,
        recovery_key=recovery_key,
    )
    return scan_result_to_dict(result)
