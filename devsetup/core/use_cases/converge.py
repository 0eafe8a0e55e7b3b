"""
Converge use case — from CLI intent to an audited convergence run.

Loads devsetup.yml (or the built-in profile), wires the real adapters,
runs the ConvergenceDriver and appends the outcome to the run ledger.
The CLI only formats what comes back.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from devsetup.adapters.alternatives import AlternativesRegistry, UpdateAlternativesRegistry
from devsetup.adapters.base import CommandRunner
from devsetup.adapters.shell.command import SubprocessRunner
from devsetup.core.config.loader import ConfigError, find_config_file, load_target, project_root
from devsetup.core.engine.decisions import DecisionSource, PresetDecisions
from devsetup.core.engine.driver import ConvergenceDriver, ConvergenceResult
from devsetup.core.engine.executor import Executor
from devsetup.core.engine.probe import FactProbe
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import TargetSpec
from devsetup.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """What the CLI gets back from a converge / plan call."""

    result: ConvergenceResult | None = None
    target: TargetSpec | None = None
    project_root: Path | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error or self.result is None:
            return 1
        return self.result.exit_code

    def to_dict(self) -> dict:
        if self.error:
            return {"status": "failed", "error": self.error}
        data: dict = {"project_root": str(self.project_root)}
        if self.target is not None:
            data["target"] = f"{self.target.runtime.name} {self.target.runtime_version}"
        if self.result is not None:
            data.update(self.result.to_dict())
        return data


@dataclass
class ProbeSnapshot:
    """Observed host state for ``devsetup probe``."""

    observed: ObservedState | None = None
    target: TargetSpec | None = None
    project_root: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        data: dict = {"project_root": str(self.project_root)}
        if self.target is not None:
            data["target"] = f"{self.target.runtime.name} {self.target.runtime_version}"
        if self.observed is not None:
            data["observed"] = self.observed.summary()
        return data


def _load(
    config_path: Path | None,
    skip_dependencies: bool,
) -> tuple[TargetSpec, Path]:
    path = config_path or find_config_file()
    overrides = {"skip_dependencies": True} if skip_dependencies else None
    target = load_target(path, overrides=overrides)
    return target, project_root(path)


def _wire(
    target: TargetSpec,
    root: Path,
    runner: CommandRunner | None,
    registry: AlternativesRegistry | None,
) -> tuple[CommandRunner, AlternativesRegistry, FactProbe]:
    runner = runner or SubprocessRunner()
    registry = registry or UpdateAlternativesRegistry(
        runner, name=target.runtime.name, bin_dir=target.runtime.bin_dir,
    )
    probe = FactProbe(target, runner, registry, project_root=root)
    return runner, registry, probe


def _audit(root: Path, command: str, setup: SetupResult, duration_ms: int) -> None:
    result = setup.result
    entry = AuditEntry(command=command, duration_ms=duration_ms)
    if setup.target is not None:
        entry.target_version = setup.target.runtime_version
    if result is not None:
        entry.status = result.status
        entry.final_state = result.state.value
        entry.warnings = [str(w) for w in result.warnings]
        if result.error is not None:
            entry.error = str(result.error)
        if result.plan is not None:
            entry.actions = [a.describe() for a in result.plan.actions]
        if result.report is not None:
            entry.steps_total = result.report.total
            entry.steps_succeeded = result.report.succeeded
            entry.steps_failed = result.report.failed
            entry.steps_skipped = result.report.skipped
    AuditWriter(project_root=root).write(entry)


def converge(
    config_path: Path | None = None,
    skip_dependencies: bool = False,
    decisions: DecisionSource | None = None,
    dry_run: bool = False,
    runner: CommandRunner | None = None,
    registry: AlternativesRegistry | None = None,
    environ: dict[str, str] | None = None,
    euid_source=None,
    audit: bool = True,
) -> SetupResult:
    """Run the full pipeline against this machine.

    Args:
        config_path: Explicit devsetup.yml (default: auto-detect, then
            built-in defaults).
        skip_dependencies: Drop the dependency-manager steps.
        decisions: Answers confirmation gates (default: refuse all).
        dry_run: Probe and plan only.
        runner: Command runner override (tests).
        registry: Alternatives registry override (tests).
        environ: Environment used for COMPOSER_MEMORY_LIMIT.
        euid_source: Effective uid lookup override (tests).
        audit: Append the outcome to the run ledger (never for dry runs).

    Returns:
        SetupResult. ``error`` is set only for configuration problems;
        pipeline failures are inside ``result``.
    """
    start = time.monotonic()
    try:
        target, root = _load(config_path, skip_dependencies)
    except ConfigError as e:
        return SetupResult(error=str(e))

    runner, registry, probe = _wire(target, root, runner, registry)
    if euid_source is not None:
        probe.euid_source = euid_source

    env = os.environ if environ is None else environ
    memory_limit = env.get(target.dependencies.memory_limit_var)

    driver = ConvergenceDriver(
        target,
        probe,
        Executor(runner, registry, project_root=root),
        decisions or PresetDecisions(False),
        memory_limit=memory_limit,
        dry_run=dry_run,
    )
    setup = SetupResult(result=driver.run(), target=target, project_root=root)

    # A dry run leaves the project tree untouched, ledger included
    if audit and not dry_run:
        duration_ms = int((time.monotonic() - start) * 1000)
        _audit(root, "run", setup, duration_ms)

    logger.info("Convergence finished: %s", setup.result.status)
    return setup


def probe_host(
    config_path: Path | None = None,
    runner: CommandRunner | None = None,
    registry: AlternativesRegistry | None = None,
) -> ProbeSnapshot:
    """Read the host without planning or changing anything."""
    try:
        target, root = _load(config_path, skip_dependencies=False)
    except ConfigError as e:
        return ProbeSnapshot(error=str(e))

    _, _, probe = _wire(target, root, runner, registry)
    return ProbeSnapshot(observed=probe.probe(), target=target, project_root=root)
