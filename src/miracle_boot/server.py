"""FastMCP server entry point for Miracle Boot.

Exposes the scan planner to MCP clients. Scans over MCP are always dry-run:
applying repairs needs an operator at the console to confirm irreversible steps.
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from miracle_boot.config import BootConfig, get_config
from miracle_boot.exceptions import BootRepairError
from miracle_boot.executor import CommandExecutor, SubprocessExecutor
from miracle_boot.tools.scan import run_boot_scan
from miracle_boot.tools.scenarios import list_scenarios
from miracle_boot.tools.simulation import simulate_scenarios

logger = logging.getLogger(__name__)

mcp = FastMCP("miracle-boot")

# Module-level singletons initialized on first tool call
_config: BootConfig | None = None
_executor: CommandExecutor | None = None


def _get_dependencies() -> tuple[BootConfig, CommandExecutor]:
    """Lazily initialize and return the shared config and executor."""
    global _config, _executor  # noqa: PLW0603
    if _config is None:
        _config = get_config()
        _executor = SubprocessExecutor()
    return _config, _executor  # type: ignore[return-value]


@mcp.tool()
def boot_scan(target_drive: str | None = None, esp_letter: str | None = None) -> dict:
    """Scan the boot environment and return the verdict with a dry-run repair plan."""
    config, executor = _get_dependencies()
    try:
        return run_boot_scan(config, executor, target_drive=target_drive, esp_letter=esp_letter)
    except BootRepairError as exc:
        return {"status": "error", "message": str(exc), "details": exc.details}


@mcp.tool()
def boot_simulate(scenario: str | None = None) -> dict:
    """Preview the repair plan for one mock failure scenario, or all of them."""
    config, _ = _get_dependencies()
    return simulate_scenarios(config, scenario)


@mcp.tool()
def boot_scenarios() -> dict:
    """List failure scenarios in classification priority order."""
    return list_scenarios()


@mcp.tool()
def health_check() -> dict:
    """Verify the server is running and its configuration loads."""
    try:
        config, _ = _get_dependencies()
        return {"status": "healthy", "target_drive": config.target_drive, "probe_timeout": config.probe_timeout}
    except Exception as exc:
        return {"status": "unhealthy", "error": str(exc)}


def main() -> None:
    """Entry point for the miracle-boot MCP server."""
    config, _ = _get_dependencies()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    logger.info("Starting miracle-boot MCP server")
    mcp.run()
