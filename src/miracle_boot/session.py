"""Per-invocation scan state.

A ScanSession is created for each scan and never shared between scans. It owns
the command-output cache, the repair-in-progress flag, the cancellation signal,
and the action log.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from miracle_boot.action_log import ActionLog
from miracle_boot.models import CommandResult

logger = logging.getLogger(__name__)


class ScanSession:
    """State owned by exactly one scan run."""

    def __init__(self, action_log: ActionLog | None = None) -> None:
        self.id = str(uuid.uuid4())
        self.started_at = datetime.now(UTC)
        self.action_log = action_log or ActionLog()
        self.command_cache: dict[str, CommandResult] = {}
        self.repair_in_progress = False
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; honored before the next remediation step starts."""
        logger.info("Cancellation requested for session %s", self.id)
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cached(self, command: str, run: Callable[[], CommandResult]) -> CommandResult:
        """Return the cached result for ``command``, running it on first use."""
        if command not in self.command_cache:
            self.command_cache[command] = run()
        return self.command_cache[command]

    def invalidate_cache(self) -> None:
        self.command_cache.clear()
