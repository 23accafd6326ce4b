"""Miracle Boot - CLI entrypoint.

Usage:
    miracle-boot scan --drive C --esp S
    miracle-boot scan --apply --yes
    miracle-boot simulate --scenario BcdMissing
    miracle-boot scenarios
"""

from __future__ import annotations

import json
import logging
import os

import click
from pydantic import ValidationError

from miracle_boot import __version__
from miracle_boot.classifier import SCENARIO_NAMES
from miracle_boot.config import BootConfig, get_config, normalize_drive_letter
from miracle_boot.exceptions import InvalidDriveError
from miracle_boot.executor import SubprocessExecutor
from miracle_boot.models import RemediationStep
from miracle_boot.tools.scan import run_boot_scan
from miracle_boot.tools.scenarios import list_scenarios
from miracle_boot.tools.simulation import simulate_scenarios

logger = logging.getLogger(__name__)


def _drive_option(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return normalize_drive_letter(value)
    except InvalidDriveError as exc:
        raise click.BadParameter(str(exc)) from exc


def _config(ctx: click.Context) -> BootConfig:
    config = ctx.obj.get("config")
    if config is None:
        try:
            config = get_config()
        except ValidationError as exc:
            raise click.ClickException(f"Invalid configuration: {exc}") from exc
        ctx.obj["config"] = config
    return config


@click.group()
@click.version_option(version=__version__, prog_name="miracle-boot")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Miracle Boot - diagnose and repair Windows boot failures."""
    ctx.ensure_object(dict)
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("LOG_LEVEL", "WARNING")
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@cli.command()
@click.option("--drive", default=None, callback=_drive_option, help="Windows drive letter (default: config).")
@click.option("--esp", default=None, callback=_drive_option, help="Letter to mount the system partition at.")
@click.option("--apply", "apply_changes", is_flag=True, help="Execute the plan instead of previewing it.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Confirm irreversible steps without prompting.")
@click.option("--recovery-key", default=None, envvar="MIRACLE_RECOVERY_KEY", help="BitLocker recovery key.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output verdict and plan as JSON.")
@click.pass_context
def scan(
    ctx: click.Context,
    drive: str | None,
    esp: str | None,
    apply_changes: bool,
    assume_yes: bool,
    recovery_key: str | None,
    as_json: bool,
) -> None:
    """Scan the boot environment and plan (or apply) its repair.

    Without --apply nothing is changed and the report shows VERDICT (SIM).

    Exit codes: 0 scan completed, 1 minimum facts could not be gathered,
    2 apply aborted after a destructive step failed, 3 apply cancelled.
    """
    config = _config(ctx)
    executor = ctx.obj.get("executor") or SubprocessExecutor()

    def confirm(step: RemediationStep) -> bool:
        if assume_yes:
            return True
        if as_json:
            return False
        return click.confirm(f"Step {step.order} is irreversible: {step.description}. Continue?", default=False)

    result = run_boot_scan(
        config,
        executor,
        target_drive=drive,
        esp_letter=esp,
        apply=apply_changes,
        confirm=confirm,
        recovery_key=recovery_key,
    )

    if as_json:
        click.echo(json.dumps({"verdict": result["verdict"], "plan": result["plan"]}, indent=2))
    else:
        click.echo(result["report"], nl=False)
    ctx.exit(result["exit_code"])


@cli.command()
@click.option(
    "--scenario",
    type=click.Choice([name for name in SCENARIO_NAMES if name != "Ambiguous"]),
    default=None,
    help="Simulate one scenario (default: every failure scenario).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def simulate(ctx: click.Context, scenario: str | None, as_json: bool) -> None:
    """Preview the repair plan for mock failure scenarios."""
    config = _config(ctx)
    result = simulate_scenarios(config, scenario)

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return
    for simulation in result["simulations"]:
        click.echo(simulation["report"], nl=False)
    click.echo(f"{result['matched_count']}/{result['total_count']} simulations classified as expected")


@cli.command()
def scenarios() -> None:
    """List failure scenarios in classification priority order."""
    for scenario in list_scenarios()["scenarios"]:
        click.echo(f"{scenario['priority']:>2}. {scenario['name']:<24} {scenario['summary']}")


def main() -> None:
    """Entry point for the miracle-boot CLI."""
    cli(obj={})
