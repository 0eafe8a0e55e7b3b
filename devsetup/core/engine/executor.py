"""
Engine executor — run a plan, one step at a time, in order.

Flow per step:
    dependency skipped? → confirmation gate → privilege refresh → handler → result

Steps run strictly in plan order: later steps may rely on earlier ones
(SetActiveAlternative needs its RegisterAlternative siblings). Handlers
raise domain errors; the executor turns every one of them into an
ActionResult, so ``execute`` itself never raises.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from devsetup.adapters.alternatives import AlternativesRegistry
from devsetup.adapters.base import CommandResult, CommandRunner
from devsetup.core.engine.decisions import DecisionSource
from devsetup.core.engine.privilege import PrivilegeLease
from devsetup.core.errors import (
    ExternalCommandFailure,
    PrivilegeAcquisitionError,
    RegistryError,
)
from devsetup.core.models.action import (
    ActionResult,
    CreateFile,
    EnsureDirectory,
    InstallCapability,
    InstallDependencyManager,
    InstallRuntime,
    PlannedStep,
    PlanResult,
    RegisterAlternative,
    RunExternalCommand,
    SetActiveAlternative,
)

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    results: list[ActionResult] = field(default_factory=list)
    halted: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def warnings(self) -> list[ActionResult]:
        return [r for r in self.results if r.warning]

    @property
    def fatal(self) -> ActionResult | None:
        for r in self.results:
            if r.fatal:
                return r
        return None

    @property
    def skipped_ids(self) -> set[int]:
        return {r.step_id for r in self.results if r.status == "skipped"}

    @property
    def all_ok(self) -> bool:
        return self.fatal is None

    @property
    def status(self) -> str:
        if self.fatal is not None:
            return "failed"
        if self.failed or self.skipped:
            return "partial"
        return "ok"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "halted": self.halted,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


def _tail(text: str) -> str:
    return text[-_OUTPUT_TAIL:] if text else ""


class Executor:
    """Runs planned steps through the command runner and registry.

    Owns the PrivilegeLease for the whole run: the driver asks the
    executor to acquire it, nobody else refreshes it.

    Args:
        runner: Command runner for every external command.
        registry: Alternatives registry.
        project_root: Base for relative file/directory paths.
        lease: Privilege lease (created over ``runner`` when omitted).
    """

    def __init__(
        self,
        runner: CommandRunner,
        registry: AlternativesRegistry,
        project_root: Path,
        lease: PrivilegeLease | None = None,
    ):
        self.runner = runner
        self.registry = registry
        self.project_root = Path(project_root)
        self._lease = lease or PrivilegeLease(runner)
        self._registry_reset = False

    # ── Privilege ───────────────────────────────────────────────

    def acquire_privilege(self) -> None:
        """Acquire the lease at run start.

        Raises:
            PrivilegeAcquisitionError: sudo refused.
        """
        self._lease.acquire()

    def _refresh_privilege(self, step: PlannedStep) -> None:
        if step.long_running:
            self._lease.refresh(force=True)
        elif step.requires_privilege:
            self._lease.refresh()

    # ── Main loop ───────────────────────────────────────────────

    def execute(
        self,
        plan: PlanResult,
        decisions: DecisionSource,
        approvals: dict[int, bool] | None = None,
    ) -> ExecutionReport:
        """Execute every step of ``plan`` in order.

        Args:
            plan: The plan to run.
            decisions: Answers confirmation gates not pre-answered in
                ``approvals`` and "continue anyway?" after a
                recoverable failure.
            approvals: step_id → answer collected by the driver's
                confirm stage.

        Returns:
            ExecutionReport. ``halted`` is set when a fatal failure
            stopped the run; the remaining steps have no result.
        """
        approvals = approvals or {}
        report = ExecutionReport()
        skipped: set[int] = set()
        self._registry_reset = False

        for step in plan.steps:
            blocked_by = [d for d in step.depends_on if d in skipped]
            if blocked_by:
                skipped.add(step.step_id)
                reason = f"depends on skipped step {blocked_by[0]}"
                logger.warning("⊘ %s (%s)", step.action.describe(), reason)
                report.results.append(ActionResult.skip(step, reason))
                continue

            if step.needs_confirmation:
                approved = approvals.get(step.step_id)
                if approved is None:
                    approved = decisions.confirm(step.prompt or f"{step.action.describe()}?")
                if not approved:
                    skipped.add(step.step_id)
                    logger.warning("⊘ %s (declined)", step.action.describe())
                    report.results.append(ActionResult.skip(step, "declined by operator"))
                    continue

            result = self._run_step(step)

            if result.failed:
                if step.allow_failure:
                    result.warning = True
                    logger.warning("✗ %s failed (allowed): %s", step.action.describe(), result.error)
                elif step.recoverable and decisions.confirm(
                    step.prompt or "Continue anyway?", default=False,
                ):
                    result.warning = True
                    logger.warning("✗ %s failed, continuing: %s", step.action.describe(), result.error)
                else:
                    logger.error("✗ %s: %s", step.action.describe(), result.error)
                    report.results.append(result)
                    report.halted = True
                    break
            else:
                logger.info("✓ %s", step.action.describe())

            report.results.append(result)

        return report

    def _run_step(self, step: PlannedStep) -> ActionResult:
        start = time.monotonic()
        try:
            self._refresh_privilege(step)
            output = self._dispatch(step)
        except (
            ExternalCommandFailure,
            RegistryError,
            PrivilegeAcquisitionError,
            OSError,
        ) as e:
            return ActionResult.failure(
                step,
                error=str(e),
                error_type=e.__class__.__name__,
                output=_tail(getattr(e, "stderr", "")),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        return ActionResult.success(
            step,
            output=_tail(output),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    # ── Handlers ────────────────────────────────────────────────

    def _dispatch(self, step: PlannedStep) -> str:
        action = step.action
        handler = {
            "install_runtime": self._install_runtime,
            "register_alternative": self._register_alternative,
            "set_active_alternative": self._set_active_alternative,
            "install_capability": self._install_capability,
            "create_file": self._create_file,
            "ensure_directory": self._ensure_directory,
            "install_dependency_manager": self._install_dependency_manager,
            "run_external_command": self._run_external_command,
        }[action.kind]
        return handler(action)

    def _check(self, result: CommandResult, what: str) -> str:
        if not result.ok:
            raise ExternalCommandFailure(
                f"{what} failed (exit {result.exit_code})",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result.stdout

    def _install_runtime(self, action: InstallRuntime) -> str:
        result = self.runner.run(
            "apt-get", ["install", "-y", *action.packages], requires_privilege=True,
        )
        return self._check(result, f"Installing runtime {action.version}")

    def _register_alternative(self, action: RegisterAlternative) -> str:
        if not self._registry_reset:
            self.registry.remove_all()
            self._registry_reset = True
        path = self.registry.executable_path(action.version)
        self.registry.register(action.version, path, action.priority)
        return f"{path} registered with priority {action.priority}"

    def _set_active_alternative(self, action: SetActiveAlternative) -> str:
        self.registry.set_active(action.version)
        return f"{self.registry.name} {action.version} is the default"

    def _install_capability(self, action: InstallCapability) -> str:
        result = self.runner.run(
            "apt-get", ["install", "-y", *action.packages], requires_privilege=True,
        )
        return self._check(result, f"Installing {', '.join(action.names)}")

    def _create_file(self, action: CreateFile) -> str:
        path = self.project_root / action.path
        if path.exists() and not action.overwrite:
            return f"{action.path} already exists"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(action.content, encoding="utf-8")
        return f"wrote {action.path}"

    def _ensure_directory(self, action: EnsureDirectory) -> str:
        path = self.project_root / action.path
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, action.mode)
        if not action.recursive:
            return f"{action.path} ({oct(action.mode)})"

        changed = 0
        for dirpath, dirnames, filenames in os.walk(path):
            for name in (*dirnames, *filenames):
                entry = Path(dirpath) / name
                if entry.is_symlink():
                    continue
                os.chmod(entry, action.mode)
                changed += 1
        return f"{action.path} and {changed} entries below ({oct(action.mode)})"

    def _install_dependency_manager(self, action: InstallDependencyManager) -> str:
        """Download, verify (SHA-384) and run the dependency manager installer."""
        with tempfile.TemporaryDirectory(prefix="devsetup-") as tmp:
            installer = Path(tmp) / "installer.php"
            self._check(
                self.runner.run("curl", ["-sS", action.installer_url, "-o", str(installer)]),
                "Downloading installer",
            )
            expected = self._check(
                self.runner.run("curl", ["-sS", action.signature_url]),
                "Downloading installer signature",
            ).strip()

            actual = hashlib.sha384(installer.read_bytes()).hexdigest()
            if actual != expected:
                raise ExternalCommandFailure(
                    f"Installer corrupt: SHA-384 {actual[:12]}… does not match signature"
                )
            logger.info("Installer verified")

            result = self.runner.run(
                action.runtime,
                [str(installer), f"--install-dir={action.install_dir}",
                 f"--filename={action.filename}"],
                requires_privilege=True,
            )
            return self._check(result, f"Installing {action.filename}")

    def _run_external_command(self, action: RunExternalCommand) -> str:
        command, *args = action.args
        result = self.runner.run(
            command,
            args,
            requires_privilege=action.requires_privilege,
            env=dict(action.env) or None,
            cwd=str(self.project_root),
        )
        return self._check(result, " ".join(action.args))
