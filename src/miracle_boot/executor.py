"""Command execution capability used by the probe and the execution coordinator.

The planner never spawns processes itself. It talks to a ``CommandExecutor``,
whose only contract is ``execute(command, timeout_seconds) -> CommandResult``.
Every call carries an explicit timeout; a hung native tool becomes a
``timed_out`` result instead of a blocked scan.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from collections.abc import Mapping
from typing import Protocol

from miracle_boot.exceptions import TemplateRenderError
from miracle_boot.models import CommandResult

logger = logging.getLogger(__name__)

PLACEHOLDERS: tuple[str, ...] = (
    "drive",
    "esp",
    "store",
    "backup_dir",
    "backup_path",
    "driver_path",
    "recovery_key",
)

# Only known names are substituted so bcdedit identifiers like {default} pass through.
_PLACEHOLDER_RE = re.compile(r"\{(" + "|".join(PLACEHOLDERS) + r")\}")

_SECRET_PLACEHOLDERS = frozenset({"recovery_key"})


class CommandExecutor(Protocol):
    """Anything that can run a command line with a deadline."""

    def execute(self, command: str, timeout_seconds: int) -> CommandResult: ...


def render_command(template: str, values: Mapping[str, str | None]) -> str:
    """Substitute known ``{placeholder}`` tokens in a command template.

    Raises:
        TemplateRenderError: If a placeholder in the template has no value.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        value = values.get(name)
        if not value:
            raise TemplateRenderError(
                f"No value supplied for placeholder {{{name}}}",
                placeholder=name,
                details={"template": template},
            )
        return str(value)

    return _PLACEHOLDER_RE.sub(_substitute, template)


def redact_command(template: str, values: Mapping[str, str | None]) -> str:
    """Render a template for display, masking secret placeholders."""
    masked = {k: ("********" if k in _SECRET_PLACEHOLDERS and v else v) for k, v in values.items()}
    return _PLACEHOLDER_RE.sub(lambda m: str(masked.get(m.group(1)) or m.group(0)), template)


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


class SubprocessExecutor:
    """Run commands through the system shell with a hard timeout."""

    def __init__(self, encoding: str | None = None) -> None:
        self.encoding = encoding

    def execute(self, command: str, timeout_seconds: int) -> CommandResult:
        logger.debug("RUN (timeout %ss): %s", timeout_seconds, command)
        started = time.monotonic()
        try:
            proc = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                encoding=self.encoding,
                errors="replace",
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("Command timed out after %ss: %s", timeout_seconds, command)
            return CommandResult(
                exit_code=-1,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
                duration_seconds=time.monotonic() - started,
            )
        except OSError as exc:
            logger.error("Could not launch command %s: %s", command, exc)
            return CommandResult(
                exit_code=127,
                stderr=str(exc),
                duration_seconds=time.monotonic() - started,
            )

        if proc.returncode != 0:
            logger.debug("Command exited %s: %s", proc.returncode, proc.stderr.strip())
        return CommandResult(
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_seconds=time.monotonic() - started,
        )
