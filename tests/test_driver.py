"""
Tests for the convergence driver — end-to-end runs on a simulated host.
"""

from pathlib import Path

from devsetup.core.engine.decisions import PresetDecisions, ScriptedDecisions
from devsetup.core.engine.driver import ConvergenceDriver, DriverState, verify
from devsetup.core.engine.planner import plan
from devsetup.core.errors import (
    ExternalCommandFailure,
    PlanBlocked,
    PrivilegeAcquisitionError,
    PrivilegeMisuseError,
)
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import (
    BootstrapCommand,
    Capability,
    DirectoryRequirement,
    FileRequirement,
    TargetSpec,
)

from simulated_host import SimulatedHost, minimal_target


def _driver(host: SimulatedHost, decisions=None, euid: int = 1000, **kwargs) -> ConvergenceDriver:
    return ConvergenceDriver(
        host.target,
        host.probe(euid=euid),
        host.executor(),
        decisions or PresetDecisions(True),
        **kwargs,
    )


def _guarded_target() -> TargetSpec:
    """Everything the default profile has, with only guarded bootstrap commands."""
    return minimal_target(
        capabilities=(Capability(name="gd"), Capability(name="mysql", module="mysqli")),
        files=(
            FileRequirement(path=".env.environment", policy="write", content="local\n"),
            FileRequirement(path="database/primary.sqlite"),
        ),
        directories=(DirectoryRequirement(path="storage/logs"),),
        skip_dependencies=False,
        bootstrap=(
            BootstrapCommand(name="storage-link", args=("php", "artisan", "storage:link"),
                             creates="public/storage"),
        ),
    )


class TestScenarios:
    def test_fresh_machine(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        result = _driver(host).run()

        assert result.status == "done"
        assert result.exit_code == 0
        assert [a.kind for a in result.plan.actions] == [
            "install_runtime", "register_alternative", "set_active_alternative",
        ]
        assert result.verified.active_version == "8.1"
        assert result.history == [
            DriverState.INIT, DriverState.FACT_PROBE, DriverState.PLAN,
            DriverState.EXECUTE, DriverState.VERIFY, DriverState.DONE,
        ]

    def test_switch_from_older_version(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target(),
                             installed=("7.4", "8.1"), selected="7.4")
        result = _driver(host).run()
        assert result.status == "done"
        assert host.registry.entries() == [("7.4", 100), ("8.1", 150)]
        assert host.registry.selected == "8.1"

    def test_base_tools_installed_before_composer(self, tmp_path: Path):
        target = minimal_target(base_packages=("curl", "unzip"), skip_dependencies=False)
        host = SimulatedHost(tmp_path, target=target, packages=("unzip",))
        host.manifest()
        result = _driver(host).run()

        assert result.status == "done", result.warnings
        assert "curl" in host.packages
        lines = host.runner.command_lines
        base = lines.index(["apt-get", "install", "-y", "curl"])
        download = next(i for i, line in enumerate(lines) if line[0] == "curl")
        assert base < download

    def test_default_profile_fixes_tree_permissions(self, tmp_path: Path):
        log = tmp_path / "storage" / "logs" / "laravel.log"
        log.parent.mkdir(parents=True)
        log.write_text("")
        log.chmod(0o644)
        (tmp_path / "storage").chmod(0o700)
        host = SimulatedHost(tmp_path, target=TargetSpec(), wsl=True)
        host.manifest()
        result = _driver(host).run()

        assert result.status == "done", result.warnings
        assert log.stat().st_mode & 0o777 == 0o775
        assert (tmp_path / "storage").stat().st_mode & 0o777 == 0o775
        assert (tmp_path / "storage" / "framework").stat().st_mode & 0o777 == 0o775
        assert host.registry.selected == "8.1"


class TestIdempotence:
    def test_second_plan_is_empty(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=_guarded_target())
        host.manifest()
        first = _driver(host).run()
        assert first.status == "done"

        second = _driver(host).run()
        assert second.plan.is_empty
        assert second.status == "done"
        assert second.report.total == 0

    def test_replan_after_apply(self, tmp_path: Path):
        target = _guarded_target()
        host = SimulatedHost(tmp_path, target=target)
        host.manifest()
        _driver(host).run()
        assert plan(target, host.probe().probe()).is_empty

    def test_default_profile(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=TargetSpec(), wsl=True)
        host.manifest()
        first = _driver(host).run()

        assert first.status == "done", first.warnings
        assert (tmp_path / ".env.environment").read_text() == "local\n"
        assert (tmp_path / "database" / "primary_database.sqlite").is_file()
        assert (tmp_path / "vendor" / "composer" / "installed.json").is_file()
        assert host.artisan_calls == ["key:generate", "storage:link", "migrate"]

        # key:generate changed .env and migrate has no guard: both come back.
        # Declining the overwrite skips the key regeneration with it.
        decisions = ScriptedDecisions({"Overwrite": False})
        second = _driver(host, decisions=decisions).run()
        assert [s.action.describe() for s in second.plan.steps] == [
            "overwrite file .env",
            "[bootstrap:key-generate] php artisan key:generate --force",
            "[bootstrap:migrate] php artisan migrate --force",
        ]
        assert second.status == "done"
        assert "APP_KEY=base64:" in (tmp_path / ".env").read_text()
        assert decisions.asked == ["Overwrite existing .env?"]
        assert host.artisan_calls[3:] == ["migrate"]

    def test_default_profile_keeps_app_key_when_overwrite_approved(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=TargetSpec(), wsl=True)
        host.manifest()
        for _ in range(4):
            result = _driver(host, decisions=PresetDecisions(True)).run()
            assert result.status == "done", result.warnings
            assert "APP_KEY=base64:" in (tmp_path / ".env").read_text()
        assert host.artisan_calls.count("key:generate") == 4


class TestFailures:
    def test_root_refused(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        result = _driver(host, euid=0).run()
        assert result.status == "failed"
        assert result.exit_code == 1
        assert isinstance(result.error, PrivilegeMisuseError)
        assert result.history == [DriverState.INIT, DriverState.FAILED]
        assert host.runner.call_count == 0

    def test_privilege_refused(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        host.runner.set_failure("sudo")
        result = _driver(host).run()
        assert isinstance(result.error, PrivilegeAcquisitionError)
        assert "usermod" in result.to_dict()["hint"]

    def test_missing_manifest_blocks(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target(skip_dependencies=False))
        result = _driver(host).run()
        assert isinstance(result.error, PlanBlocked)
        assert "composer.json" in str(result.error)
        assert result.report is None

    def test_fatal_step(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        host.runner.set_failure("apt-get install", stderr="E: Unable to locate package")
        result = _driver(host).run()
        assert isinstance(result.error, ExternalCommandFailure)
        assert result.history[-2:] == [DriverState.EXECUTE, DriverState.FAILED]
        assert result.report.halted
        assert host.registry.operations == []

    def test_recoverable_dependency_failure_continue(self, tmp_path: Path):
        target = _guarded_target()
        host = SimulatedHost(tmp_path, target=target, composer=True)
        host.manifest()
        host.runner.set_failure("composer install", stderr="Could not authenticate")
        decisions = ScriptedDecisions({"Continue with setup": True}, default=True)
        result = _driver(host, decisions=decisions).run()

        assert result.state == DriverState.DONE
        assert result.exit_code == 0
        assert result.status == "done-with-warnings"
        assert host.artisan_calls == ["storage:link"]

    def test_recoverable_dependency_failure_stop(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=_guarded_target(), composer=True)
        host.manifest()
        host.runner.set_failure("composer install")
        decisions = ScriptedDecisions({"Continue with setup": False}, default=True)
        result = _driver(host, decisions=decisions).run()
        assert result.status == "failed"
        assert host.artisan_calls == []


class TestVerification:
    def test_wrong_version_after_clean_run(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        host.runner.set_output("php -v", stdout="PHP 7.4.33 (cli)")
        result = _driver(host).run()

        assert result.report.failed == 0
        assert result.status == "done-with-warnings"
        assert result.exit_code == 0
        assert any("active php is 7.4" in str(w) for w in result.warnings)

    def test_declined_file_not_reported(self):
        target = minimal_target(files=(FileRequirement(path=".env", policy="write",
                                                       content="local\n", confirm_overwrite=True),))
        observed = ObservedState(active_version="8.1", existing_files=set())
        declined = plan(target, ObservedState(active_version="8.1"))
        assert verify(target, observed, declined=declined) == []
        assert len(verify(target, observed)) == 1

    def test_tree_drift_reported(self):
        target = minimal_target(directories=(DirectoryRequirement(path="storage", recursive=True),))
        observed = ObservedState(
            active_version="8.1",
            directory_modes={"storage": 0o775},
            tree_drift={"storage": "storage/logs/laravel.log"},
        )
        (warning,) = verify(target, observed)
        assert "storage/logs/laravel.log" in str(warning)

    def test_missing_base_package_reported(self):
        target = minimal_target(base_packages=("curl",))
        (warning,) = verify(target, ObservedState(active_version="8.1"))
        assert "curl" in str(warning)

    def test_directory_mode_mismatch(self):
        target = minimal_target(directories=(DirectoryRequirement(path="storage/logs"),))
        observed = ObservedState(active_version="8.1", directory_modes={"storage/logs": 0o700})
        (warning,) = verify(target, observed)
        assert "0o700" in str(warning)


class TestGatesAndModes:
    def test_wsl_declined(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target(require_wsl=True))
        result = _driver(host, decisions=PresetDecisions(False)).run()
        assert result.status == "cancelled"
        assert result.exit_code == 0
        assert result.plan is None
        assert host.runner.call_count == 0

    def test_wsl_accepted(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target(require_wsl=True))
        result = _driver(host, decisions=PresetDecisions(True)).run()
        assert result.status == "done"

    def test_dry_run(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        result = _driver(host, dry_run=True).run()
        assert result.status == "planned"
        assert result.report is None
        assert len(result.plan.steps) == 3
        assert ["sudo", "-n", "true"] not in host.runner.command_lines
        assert host.registry.operations == []

    def test_confirm_state_entered(self, tmp_path: Path):
        target = minimal_target(files=(FileRequirement(path=".env", policy="write",
                                                       content="local\n", confirm_overwrite=True),))
        host = SimulatedHost(tmp_path, target=target, installed=("8.1",), selected="8.1")
        (tmp_path / ".env").write_text("APP_ENV=production\n")
        decisions = ScriptedDecisions({"Overwrite": True})
        result = _driver(host, decisions=decisions).run()
        assert DriverState.CONFIRM in result.history
        assert (tmp_path / ".env").read_text() == "local\n"
        assert decisions.asked == ["Overwrite existing .env?"]

    def test_memory_limit_passed(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=_guarded_target(), composer=True)
        host.manifest()
        _driver(host, memory_limit="2G").run()
        call = next(c for c in host.runner.call_log
                    if c["command"] == "composer" and c["args"][0] == "install")
        assert call["env"] == {"COMPOSER_MEMORY_LIMIT": "2G"}

    def test_to_dict(self, tmp_path: Path):
        host = SimulatedHost(tmp_path, target=minimal_target())
        data = _driver(host).run().to_dict()
        assert data["status"] == "done"
        assert data["history"][-1] == "done"
        assert data["verified"]["active_version"] == "8.1"
        assert data["report"]["succeeded"] == 3
