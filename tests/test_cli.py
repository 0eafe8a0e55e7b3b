"""
Tests for CLI commands — global options, run, plan, probe.
"""

import json
from pathlib import Path

from click.testing import CliRunner

from devsetup.core.persistence.audit import AuditWriter
from devsetup.core.use_cases import converge as converge_module
from devsetup.core.use_cases.converge import ProbeSnapshot
from devsetup.main import cli


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "PHP / Laravel" in result.output
        for command in ("run", "plan", "probe"):
            assert command in result.output

    def test_short_help(self):
        result = CliRunner().invoke(cli, ["-h"])
        assert result.exit_code == 0

    def test_subcommand_help(self):
        result = CliRunner().invoke(cli, ["run", "-h"])
        assert result.exit_code == 0
        assert "--skip-composer" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_unknown_global_flag(self):
        result = CliRunner().invoke(cli, ["--bogus"])
        assert result.exit_code == 1

    def test_unknown_command_flag(self):
        result = CliRunner().invoke(cli, ["run", "--bogus"])
        assert result.exit_code == 1

    def test_unknown_command(self):
        result = CliRunner().invoke(cli, ["frobnicate"])
        assert result.exit_code == 1

    def test_yes_and_no_input_conflict(self, host, project_dir: Path):
        result = CliRunner().invoke(
            cli, ["-c", str(project_dir / "devsetup.yml"), "run", "--yes", "--no-input"],
        )
        assert result.exit_code == 1
        assert host.runner.call_count == 0


class TestRunCommand:
    def test_run_converges(self, host, project_dir: Path):
        result = CliRunner().invoke(cli, ["-c", str(project_dir / "devsetup.yml"), "run", "--yes"])
        assert result.exit_code == 0, result.output
        assert "✓ install runtime 8.1" in result.output
        assert "done" in result.output
        assert (project_dir / "database" / "primary.sqlite").is_file()
        assert host.registry.selected == "8.1"

    def test_run_json(self, host, project_dir: Path):
        result = CliRunner().invoke(
            cli, ["-q", "-c", str(project_dir / "devsetup.yml"), "run", "--yes", "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["status"] == "done"
        assert data["target"] == "php 8.1"
        assert data["report"]["succeeded"] == 4

    def test_run_writes_ledger(self, host, project_dir: Path):
        CliRunner().invoke(cli, ["-q", "-c", str(project_dir / "devsetup.yml"), "run", "--yes"])
        (entry,) = AuditWriter(project_root=project_dir).read_all()
        assert entry.command == "run"
        assert entry.status == "done"
        assert entry.steps_succeeded == 4

    def test_run_as_root(self, host, project_dir: Path):
        host.euid = 0
        result = CliRunner().invoke(cli, ["-c", str(project_dir / "devsetup.yml"), "run", "--yes"])
        assert result.exit_code == 1
        assert "Do not run as root" in result.output
        assert host.registry.operations == []

    def test_run_second_time_nothing_to_do(self, host, project_dir: Path):
        config = str(project_dir / "devsetup.yml")
        CliRunner().invoke(cli, ["-q", "-c", config, "run", "--yes"])
        result = CliRunner().invoke(cli, ["-q", "-c", config, "run", "--yes", "--json"])
        data = json.loads(result.output)
        assert data["plan"]["steps"] == []
        assert data["status"] == "done"

    def test_invalid_config(self, tmp_path: Path):
        config = tmp_path / "devsetup.yml"
        config.write_text("runtime_version: latest\n")
        result = CliRunner().invoke(cli, ["-c", str(config), "run", "--yes"])
        assert result.exit_code == 1
        assert "❌" in result.output


class TestPlanCommand:
    def test_plan_json(self, host, project_dir: Path):
        result = CliRunner().invoke(
            cli, ["-q", "-c", str(project_dir / "devsetup.yml"), "plan", "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["status"] == "planned"
        kinds = [s["action"]["kind"] for s in data["plan"]["steps"]]
        assert kinds == [
            "install_runtime", "register_alternative", "set_active_alternative", "create_file",
        ]
        assert host.registry.operations == []
        assert not (project_dir / "database" / "primary.sqlite").exists()

    def test_plan_human(self, host, project_dir: Path):
        result = CliRunner().invoke(cli, ["-c", str(project_dir / "devsetup.yml"), "plan"])
        assert result.exit_code == 0
        assert "1. install runtime 8.1 (sudo)" in result.output
        assert "planned" in result.output


class TestProbeCommand:
    def test_probe_json(self, host, project_dir: Path):
        result = CliRunner().invoke(
            cli, ["-q", "-c", str(project_dir / "devsetup.yml"), "probe", "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["observed"]["active_version"] is None
        assert data["observed"]["existing_files"] == []

    def test_probe_human(self, host, project_dir: Path):
        result = CliRunner().invoke(cli, ["-c", str(project_dir / "devsetup.yml"), "probe"])
        assert result.exit_code == 0
        assert "Active:" in result.output
        assert "absent" in result.output
        assert "✗ database/primary.sqlite" in result.output

    def test_probe_invalid_config(self, tmp_path: Path):
        config = tmp_path / "devsetup.yml"
        config.write_text("- not a mapping\n")
        result = CliRunner().invoke(cli, ["-c", str(config), "probe"])
        assert result.exit_code == 1

    def test_missing_host_state_fails(self, monkeypatch, project_dir: Path):
        monkeypatch.setattr(converge_module, "probe_host", lambda **kwargs: ProbeSnapshot())
        result = CliRunner().invoke(cli, ["-c", str(project_dir / "devsetup.yml"), "probe"])
        assert result.exit_code == 1
        assert "❌ Host state unavailable" in result.output
