"""Custom exception hierarchy for the Miracle Boot planner.

Probe and step failures are reported as values (ProbeResult, ExecutionResult);
these exceptions cover invalid input and genuinely unexpected failures.
"""

from __future__ import annotations


class BootRepairError(Exception):
    """Base exception for all boot-repair errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class InvalidDriveError(BootRepairError):
    """Raised when a drive letter is not a single A-Z letter."""


class TemplateRenderError(BootRepairError):
    """Raised when a command template references a placeholder with no value."""

    def __init__(self, message: str, placeholder: str | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.placeholder = placeholder


class ActionLogError(BootRepairError):
    """Raised when the action log sink cannot be opened or written."""


class ScanError(BootRepairError):
    """Raised for unexpected failures inside the scan pipeline."""
