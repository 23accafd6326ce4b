"""Tests for the click CLI."""

from __future__ import annotations

import json

from click.testing import CliRunner
from helpers import ScriptedExecutor, healthy_machine

from miracle_boot import __version__
from miracle_boot.cli import cli
from miracle_boot.config import BootConfig
from miracle_boot.models import CommandResult


def _invoke(args: list[str], config: BootConfig, executor: ScriptedExecutor | None = None, **kwargs):
    runner = CliRunner()
    obj = {"config": config}
    if executor is not None:
        obj["executor"] = executor
    return runner.invoke(cli, args, obj=obj, **kwargs)


class TestCli:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"], obj={})
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self) -> None:
        result = CliRunner().invoke(cli, ["--help"], obj={})
        assert result.exit_code == 0
        assert "scan" in result.output
        assert "simulate" in result.output


class TestScanCommand:
    def test_healthy_report(self, boot_config: BootConfig, healthy_executor: ScriptedExecutor) -> None:
        result = _invoke(["scan"], boot_config, healthy_executor)
        assert result.exit_code == 0, result.output
        assert "SCENARIO: Healthy" in result.output
        assert "VERDICT (SIM): YES" in result.output

    def test_json_output(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(ScriptedExecutor().on(r"if exist .*winload", stdout="ABSENT\n"))
        result = _invoke(["scan", "--json"], boot_config, executor)

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["verdict"]["verdict"] == "NO"
        assert payload["plan"]["scenario"] == "WinloadMissing"
        assert len(payload["plan"]["steps"]) == 3

    def test_drive_options(self, boot_config: BootConfig, healthy_executor: ScriptedExecutor) -> None:
        result = _invoke(["scan", "--drive", "c:", "--esp", "s"], boot_config, healthy_executor)
        assert result.exit_code == 0, result.output
        assert "Target: C:" in result.output

    def test_invalid_drive(self, boot_config: BootConfig, healthy_executor: ScriptedExecutor) -> None:
        result = _invoke(["scan", "--drive", "CD"], boot_config, healthy_executor)
        assert result.exit_code != 0
        assert "Invalid drive letter" in result.output
        assert healthy_executor.calls == []

    def test_insufficient_facts_exit_code(self, boot_config: BootConfig) -> None:
        executor = ScriptedExecutor(default=CommandResult(exit_code=9009))
        result = _invoke(["scan"], boot_config, executor)
        assert result.exit_code == 1
        assert "SCENARIO: Ambiguous" in result.output

    def test_apply_aborted_exit_code(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(
            ScriptedExecutor()
            .on(r"if exist .*winload", stdout="ABSENT\n")
            .on(r"^dism", exit_code=1)
        )
        result = _invoke(["scan", "--apply"], boot_config, executor)
        assert result.exit_code == 2
        assert "VERDICT (REAL): NO" in result.output

    def test_apply_prompt_declined(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(ScriptedExecutor().on("GptType -eq", stdout="ABSENT\n"))
        result = _invoke(["scan", "--apply"], boot_config, executor, input="n\n")

        assert result.exit_code == 3
        assert "irreversible" in result.output
        assert not any("Resize-Partition" in c for c in executor.commands())

    def test_apply_yes_skips_prompt(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(ScriptedExecutor().on("GptType -eq", stdout="ABSENT\n"))
        result = _invoke(["scan", "--apply", "--yes"], boot_config, executor)

        assert "irreversible" not in result.output
        assert any("Resize-Partition" in c for c in executor.commands())

    def test_json_apply_declines_confirmation(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(ScriptedExecutor().on("GptType -eq", stdout="ABSENT\n"))
        result = _invoke(["scan", "--apply", "--json"], boot_config, executor)

        assert result.exit_code == 3
        payload = json.loads(result.output)
        assert "Confirmation declined" in payload["verdict"]["blocking_reason"]

    def test_recovery_key_from_environment(self, boot_config: BootConfig) -> None:
        executor = healthy_machine(
            ScriptedExecutor().on("manage-bde -status", stdout="Lock Status:          Locked\n")
        )
        result = _invoke(
            ["scan", "--apply"], boot_config, executor, env={"MIRACLE_RECOVERY_KEY": "111111-222222"}
        )

        assert any("-RecoveryPassword 111111-222222" in c for c in executor.commands())
        assert "111111-222222" not in result.output


class TestSimulateCommand:
    def test_all(self, boot_config: BootConfig) -> None:
        result = _invoke(["simulate"], boot_config)
        assert result.exit_code == 0, result.output
        assert "10/10 simulations classified as expected" in result.output

    def test_single_json(self, boot_config: BootConfig) -> None:
        result = _invoke(["simulate", "--scenario", "BcdMissing", "--json"], boot_config)
        payload = json.loads(result.output)
        assert payload["total_count"] == 1
        assert payload["simulations"][0]["scenario"] == "BcdMissing"

    def test_rejects_unknown_scenario(self, boot_config: BootConfig) -> None:
        result = _invoke(["simulate", "--scenario", "Ambiguous"], boot_config)
        assert result.exit_code == 2


class TestScenariosCommand:
    def test_lists_in_priority_order(self) -> None:
        result = CliRunner().invoke(cli, ["scenarios"], obj={})
        lines = result.output.splitlines()
        assert len(lines) == 10
        assert lines[0].strip().startswith("1. BitlockerLocked")
        assert "MultipleWindowsInstalls" in lines[-1]
