"""
Convergence driver — the fixed probe → plan → execute → verify pipeline.

States:

    init → fact_probe → plan → [confirm] → execute → verify → done
      └──────────────┴──────────┴───────────┴─────────┴──→ failed

The verify stage re-probes the host and compares the fresh snapshot to
the target. The executor reporting success is not trusted on its own:
observable state is the source of truth. A mismatch after a clean
execution is a ConvergenceVerificationWarning, and the run ends as
"done-with-warnings" rather than "done".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from devsetup.core.engine.decisions import DecisionSource
from devsetup.core.engine.executor import ExecutionReport, Executor
from devsetup.core.engine.planner import DEPENDENCY_INSTALL, plan as build_plan
from devsetup.core.engine.privilege import REMEDIATION_HINT
from devsetup.core.engine.probe import FactProbe
from devsetup.core.errors import (
    ConvergenceVerificationWarning,
    DevSetupError,
    ExternalCommandFailure,
    PlanBlocked,
    PrivilegeAcquisitionError,
    PrivilegeMisuseError,
    RegistryError,
)
from devsetup.core.models.action import CreateFile, EnsureDirectory, PlanResult
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import TargetSpec

logger = logging.getLogger(__name__)


class DriverState(str, Enum):
    INIT = "init"
    FACT_PROBE = "fact_probe"
    PLAN = "plan"
    CONFIRM = "confirm"
    EXECUTE = "execute"
    VERIFY = "verify"
    DONE = "done"
    FAILED = "failed"


_ERROR_TYPES: dict[str, type[DevSetupError]] = {
    "RegistryError": RegistryError,
    "PrivilegeAcquisitionError": PrivilegeAcquisitionError,
    "ExternalCommandFailure": ExternalCommandFailure,
}


@dataclass
class ConvergenceResult:
    """Outcome of one driver run."""

    state: DriverState = DriverState.INIT
    history: list[DriverState] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    observed: ObservedState | None = None
    plan: PlanResult | None = None
    report: ExecutionReport | None = None
    verified: ObservedState | None = None

    error: DevSetupError | None = None
    warnings: list[ConvergenceVerificationWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == DriverState.DONE

    @property
    def status(self) -> str:
        if self.state == DriverState.FAILED:
            return "failed"
        if self.state != DriverState.DONE:
            return self.state.value
        if self.cancelled:
            return "cancelled"
        if self.dry_run:
            return "planned"
        step_warnings = self.report.warnings if self.report else []
        if self.warnings or step_warnings:
            return "done-with-warnings"
        return "done"

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        data: dict = {
            "status": self.status,
            "state": self.state.value,
            "history": [s.value for s in self.history],
        }
        if self.error is not None:
            data["error"] = str(self.error)
            data["error_type"] = self.error.__class__.__name__
            hint = getattr(self.error, "hint", "")
            if hint:
                data["hint"] = hint
        if self.plan is not None:
            data["plan"] = self.plan.to_dict()
        if self.report is not None:
            data["report"] = self.report.to_dict()
        if self.warnings:
            data["warnings"] = [str(w) for w in self.warnings]
        if self.verified is not None:
            data["verified"] = self.verified.summary()
        return data


def verify(
    target: TargetSpec,
    observed: ObservedState,
    declined: PlanResult | None = None,
) -> list[ConvergenceVerificationWarning]:
    """Compare a post-execution probe with the target.

    Paths whose steps the operator declined are not reported: keeping
    an existing file was an explicit choice.
    """
    excused: set[str] = set()
    if declined is not None:
        for step in declined.steps:
            if isinstance(step.action, (CreateFile, EnsureDirectory)):
                excused.add(step.action.path)

    warnings: list[ConvergenceVerificationWarning] = []

    def warn(message: str) -> None:
        warnings.append(ConvergenceVerificationWarning(message))

    version = target.runtime_version
    if observed.active_version != version:
        warn(
            f"active {target.runtime.name} is {observed.active_version or 'absent'}, "
            f"expected {version}"
        )

    missing_caps = sorted(target.capability_names - observed.capabilities)
    if missing_caps:
        warn(f"capabilities still missing: {', '.join(missing_caps)}")

    missing_base = sorted(set(target.base_packages) - observed.base_packages)
    if missing_base:
        warn(f"base packages still missing: {', '.join(missing_base)}")

    for req in target.files:
        if req.path in excused:
            continue
        if req.path not in observed.existing_files:
            warn(f"file {req.path} is missing")

    for req in target.directories:
        if req.path in excused:
            continue
        mode = observed.directory_modes.get(req.path)
        if mode is None:
            warn(f"directory {req.path} is missing")
        elif mode != req.mode:
            warn(f"directory {req.path} has mode {oct(mode)}, expected {oct(req.mode)}")
        elif req.path in observed.tree_drift:
            warn(f"{observed.tree_drift[req.path]} is not {oct(req.mode)}")

    if not target.skip_dependencies and not observed.dependencies_installed:
        warn("dependencies are not installed")

    return warnings


class ConvergenceDriver:
    """Runs the pipeline for one TargetSpec.

    Args:
        target: Desired configuration.
        probe: Fact probe bound to the same target.
        executor: Executor (owns the privilege lease).
        decisions: Answers every confirmation gate.
        euid_source: Effective uid lookup for the root check.
        memory_limit: Dependency-manager memory limit passed to the plan.
        dry_run: Stop after planning.
    """

    def __init__(
        self,
        target: TargetSpec,
        probe: FactProbe,
        executor: Executor,
        decisions: DecisionSource,
        euid_source: Callable[[], int] | None = None,
        memory_limit: str | None = None,
        dry_run: bool = False,
    ):
        self.target = target
        self.probe = probe
        self.executor = executor
        self.decisions = decisions
        self.euid_source = euid_source or probe.euid_source
        self.memory_limit = memory_limit
        self.dry_run = dry_run

    def _enter(self, result: ConvergenceResult, state: DriverState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug("Driver → %s", state.value)

    def _fail(self, result: ConvergenceResult, error: DevSetupError) -> ConvergenceResult:
        result.error = error
        self._enter(result, DriverState.FAILED)
        logger.error("%s: %s", error.__class__.__name__, error)
        return result

    def run(self) -> ConvergenceResult:
        """Drive the host to the target. Never raises DevSetupError."""
        result = ConvergenceResult(dry_run=self.dry_run)

        # ── init ─────────────────────────────────────────────────
        self._enter(result, DriverState.INIT)
        if self.euid_source() == 0:
            return self._fail(result, PrivilegeMisuseError(
                "Do not run as root. Run as your normal user; "
                "sudo is requested only for system operations."
            ))

        if self.target.require_wsl and not self.probe.is_wsl():
            if not self.decisions.confirm(
                "This setup is optimized for WSL Ubuntu. Continue anyway?", default=False,
            ):
                logger.warning("Setup cancelled.")
                result.cancelled = True
                self._enter(result, DriverState.DONE)
                return result

        if not self.dry_run:
            try:
                self.executor.acquire_privilege()
            except PrivilegeAcquisitionError as e:
                return self._fail(result, e)

        # ── fact probe → plan ────────────────────────────────────
        self._enter(result, DriverState.FACT_PROBE)
        result.observed = self.probe.probe()

        self._enter(result, DriverState.PLAN)
        plan = build_plan(self.target, result.observed, memory_limit=self.memory_limit)
        result.plan = plan
        if plan.blockers:
            return self._fail(result, PlanBlocked("; ".join(plan.blockers)))

        if self.dry_run:
            self._enter(result, DriverState.DONE)
            return result

        # ── confirm ──────────────────────────────────────────────
        approvals: dict[int, bool] = {}
        if plan.needs_confirmation:
            self._enter(result, DriverState.CONFIRM)
            for step in plan.steps:
                if step.needs_confirmation:
                    approvals[step.step_id] = self.decisions.confirm(
                        step.prompt or f"{step.action.describe()}?", default=False,
                    )

        # ── execute ──────────────────────────────────────────────
        self._enter(result, DriverState.EXECUTE)
        report = self.executor.execute(plan, self.decisions, approvals=approvals)
        result.report = report

        fatal = report.fatal
        if fatal is not None:
            error_cls = _ERROR_TYPES.get(fatal.error_type or "", ExternalCommandFailure)
            message = f"{fatal.description}: {fatal.error}"
            if error_cls is PrivilegeAcquisitionError:
                return self._fail(result, PrivilegeAcquisitionError(message, hint=REMEDIATION_HINT))
            return self._fail(result, error_cls(message))

        # ── verify ───────────────────────────────────────────────
        self._enter(result, DriverState.VERIFY)
        result.verified = self.probe.probe()
        declined = PlanResult(
            steps=[s for s in plan.steps if s.step_id in report.skipped_ids],
        )
        result.warnings = verify(self.target, result.verified, declined=declined)
        for warning in result.warnings:
            logger.warning("Verification: %s", warning)

        for step_result in report.results:
            if step_result.warning and DEPENDENCY_INSTALL in step_result.description:
                logger.warning(
                    "Dependency install failed. Check SSH keys / auth tokens for "
                    "private repositories, network access and memory limits."
                )

        self._enter(result, DriverState.DONE)
        return result
