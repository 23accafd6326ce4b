"""Append-only action log for attempted remediation steps.

Each line is prefixed with an ISO-8601 UTC timestamp. When a file path is
configured every line is flushed and fsync'd before ``append`` returns, so the
trail survives a crash or power loss mid-repair.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from miracle_boot.exceptions import ActionLogError

logger = logging.getLogger(__name__)


class ActionLog:
    """Timestamped, append-only record of what the coordinator attempted."""

    def __init__(self, path: str | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self.path = Path(path) if path else None
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lines: list[str] = []
        self.sink_failed = False
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ActionLogError(
                    f"Cannot create action log directory: {exc}",
                    details={"path": str(self.path)},
                ) from exc

    @property
    def lines(self) -> tuple[str, ...]:
        return tuple(self._lines)

    def append(self, message: str) -> str:
        """Record one line and persist it to the sink, if any.

        Args:
            message: Free-form description of the action.

        Returns:
            The timestamped line as written.
        """
        line = f"{self._clock().isoformat()} {message}"
        self._lines.append(line)
        if self.path is not None and not self.sink_failed:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                # Keep recording in memory; the report still carries the trail.
                self.sink_failed = True
                logger.error("Action log %s is no longer writable: %s", self.path, exc)
        return line
