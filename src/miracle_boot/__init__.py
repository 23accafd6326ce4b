"""Miracle Boot - precision detection and repair planner for Windows boot failures."""

__version__ = "0.1.0"

from miracle_boot.config import BootConfig, get_config
from miracle_boot.exceptions import (
    ActionLogError,
    BootRepairError,
    InvalidDriveError,
    ScanError,
    TemplateRenderError,
)
from miracle_boot.models import (
    CommandResult,
    ExecutionResult,
    FactRecord,
    ProbeResult,
    RemediationPlan,
    RemediationStep,
    RunOutcome,
    ScanResult,
    ScanVerdict,
    Scenario,
)

__all__ = [
    "__version__",
    "BootConfig",
    "get_config",
    "BootRepairError",
    "InvalidDriveError",
    "TemplateRenderError",
    "ActionLogError",
    "ScanError",
    "FactRecord",
    "ProbeResult",
    "Scenario",
    "RemediationStep",
    "RemediationPlan",
    "CommandResult",
    "ExecutionResult",
    "ScanVerdict",
    "RunOutcome",
    "ScanResult",
]
