"""
Action planner — pure decision logic.

    plan(target, observed) → PlanResult

Given a TargetSpec and a fresh ObservedState, decide the minimal ordered
set of actions that brings the host to the target. No I/O happens here:
the same inputs always produce the same plan, which is what makes a
re-run after a partial failure safe.

Ordering invariants:
    - Base tools (curl, software-properties-common) precede the
      repository and the dependency-manager installer.
    - InstallRuntime precedes every RegisterAlternative.
    - Every RegisterAlternative precedes the single SetActiveAlternative.
    - The target version always gets the strictly highest priority, so
      it is the OS default even if SetActiveAlternative never runs.
"""

from __future__ import annotations

import logging

from devsetup.adapters.alternatives import version_key
from devsetup.core.models.action import (
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
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import TargetSpec

logger = logging.getLogger(__name__)

BASE_PRIORITY = 100
PRIORITY_STEP = 10
TARGET_BONUS = 50

DEPENDENCY_INSTALL = "dependency-install"

_SYSTEM = {"requires_privilege": True, "long_running": True}


def _apt(command: str, *packages: str, purpose: str) -> RunExternalCommand:
    return RunExternalCommand(
        args=("apt-get", command, "-y", *packages), purpose=purpose, requires_privilege=True,
    )


def assign_priorities(versions: list[str] | set[str], target: str) -> list[tuple[str, int]]:
    """Registry priorities in ascending version order.

    Non-target versions get ``100, 110, 120...``; the target gets the
    highest of those (at least 100) plus 50.

        >>> assign_priorities(["7.4", "8.1"], "8.1")
        [('7.4', 100), ('8.1', 150)]
    """
    ordered = sorted(set(versions), key=version_key)
    others = [v for v in ordered if v != target]
    priorities = {v: BASE_PRIORITY + PRIORITY_STEP * i for i, v in enumerate(others)}
    if target in ordered:
        priorities[target] = max([BASE_PRIORITY, *priorities.values()]) + TARGET_BONUS
    return [(v, priorities[v]) for v in ordered]


def registry_converged(target: TargetSpec, observed: ObservedState) -> bool:
    """Target registered with the strictly highest priority, no stale entries."""
    version = target.runtime_version
    priority = observed.registry_priority(version)
    if priority is None:
        return False
    for entry_version, entry_priority in observed.registry_entries:
        if entry_version == version:
            continue
        if entry_priority >= priority:
            return False
        if entry_version not in observed.discovered:
            return False
    return True


class _PlanBuilder:
    """Accumulates steps with sequential ids."""

    def __init__(self) -> None:
        self.result = PlanResult()

    def add(self, action, depends_on: list[int | None] = (), **flags) -> int:
        step_id = len(self.result.steps) + 1
        self.result.steps.append(PlannedStep(
            step_id=step_id,
            action=action,
            depends_on=tuple(sorted({d for d in depends_on if d is not None})),
            **flags,
        ))
        return step_id

    def satisfied(self, note: str) -> None:
        self.result.satisfied.append(note)


def plan(
    target: TargetSpec,
    observed: ObservedState,
    memory_limit: str | None = None,
) -> PlanResult:
    """Compute the ordered actions that converge ``observed`` to ``target``.

    Args:
        target: Desired configuration.
        observed: Fresh probe output.
        memory_limit: Value for the dependency manager's memory-limit
            variable (defaults to the target's configured default).

    Returns:
        PlanResult. An empty ``steps`` list means the host already
        matches the target.
    """
    b = _PlanBuilder()
    version = target.runtime_version
    runtime = target.runtime
    deps = target.dependencies

    # ── Runtime decisions ────────────────────────────────────────
    on_disk = version in observed.discovered
    unmanaged = not on_disk and observed.active_version == version
    install_runtime = not on_disk and not unmanaged
    converged = on_disk and observed.active_version == version and registry_converged(target, observed)
    needs_registry = not converged and not unmanaged

    missing_caps = [c for c in target.capabilities if c.name not in observed.capabilities]
    install_caps = bool(missing_caps) and not install_runtime
    install_alt_tool = needs_registry and not observed.alternatives_tool
    runtime_installs = install_runtime or install_caps or install_alt_tool
    missing_base = [p for p in target.base_packages if p not in observed.base_packages]
    upgrade = target.upgrade_packages and (runtime_installs or bool(missing_base))

    # ── Package sources ──────────────────────────────────────────
    # Base tools come first: add-apt-repository and the installer
    # download need them.
    refresh_step = None
    if (missing_base or upgrade) and target.refresh_packages:
        refresh_step = b.add(_apt("update", purpose="refresh-packages"), **_SYSTEM)

    upgrade_step = None
    if upgrade:
        upgrade_step = b.add(
            _apt("upgrade", purpose="upgrade-packages"), depends_on=[refresh_step], **_SYSTEM,
        )

    base_step = None
    if missing_base:
        base_step = b.add(
            _apt("install", *missing_base, purpose="install-base-packages"),
            depends_on=[refresh_step, upgrade_step],
            **_SYSTEM,
        )
    elif target.base_packages:
        b.satisfied(f"all {len(target.base_packages)} base packages installed")

    repo_step = None
    if install_runtime and runtime.repository and not observed.repository_configured:
        repo_step = b.add(
            RunExternalCommand(
                args=("add-apt-repository", "-y", runtime.repository),
                purpose="add-repository",
                requires_privilege=True,
            ),
            depends_on=[base_step],
            **_SYSTEM,
        )

    # The package lists are read again once a repository was added
    if runtime_installs and target.refresh_packages and (repo_step is not None or refresh_step is None):
        refresh_step = b.add(
            _apt("update", purpose="refresh-packages"),
            depends_on=[repo_step, base_step],
            **_SYSTEM,
        )

    # ── Runtime + alternatives ───────────────────────────────────
    alt_tool_step = None
    if install_alt_tool:
        alt_tool_step = b.add(
            RunExternalCommand(
                args=("apt-get", "install", "-y", "dpkg"),
                purpose="install-alternatives-tool",
                requires_privilege=True,
            ),
            depends_on=[refresh_step],
            requires_privilege=True,
        )

    runtime_step = None
    if install_runtime:
        packages = runtime.package_names(version) + tuple(
            c.package_for(runtime.name, version) for c in target.capabilities
        )
        runtime_step = b.add(
            InstallRuntime(version=version, packages=packages),
            depends_on=[repo_step, refresh_step],
            requires_privilege=True,
            long_running=True,
        )

    activate_step = None
    if needs_registry:
        versions = set(observed.discovered) | {version}
        register_steps = [
            b.add(
                RegisterAlternative(version=v, priority=p),
                depends_on=[runtime_step, alt_tool_step],
                requires_privilege=True,
            )
            for v, p in assign_priorities(versions, version)
        ]
        activate_step = b.add(
            SetActiveAlternative(version=version),
            depends_on=register_steps,
            requires_privilege=True,
        )
    elif unmanaged:
        b.satisfied(f"{runtime.name} {version} active (not managed by alternatives)")
    else:
        b.satisfied(f"{runtime.name} {version} installed and active")

    runtime_ready = [runtime_step, activate_step]

    # ── Capabilities ─────────────────────────────────────────────
    if install_caps:
        b.add(
            InstallCapability(
                names=tuple(c.name for c in missing_caps),
                packages=tuple(c.package_for(runtime.name, version) for c in missing_caps),
            ),
            depends_on=[refresh_step, *runtime_ready],
            requires_privilege=True,
            long_running=True,
        )
    elif not missing_caps and target.capabilities:
        b.satisfied(f"all {len(target.capabilities)} capabilities loaded")

    # ── Files ────────────────────────────────────────────────────
    file_steps: dict[str, int] = {}
    rewritten: set[str] = set()
    for req in target.files:
        if req.path not in observed.existing_files:
            content = req.content if req.policy == "write" else ""
            file_steps[req.path] = b.add(CreateFile(path=req.path, content=content))
        elif req.policy == "write" and observed.file_contents.get(req.path) != req.content:
            rewritten.add(req.path)
            file_steps[req.path] = b.add(
                CreateFile(path=req.path, content=req.content, overwrite=True),
                classification="needs-confirmation" if req.confirm_overwrite else "safe-automatic",
                prompt=f"Overwrite existing {req.path}?",
            )
        else:
            b.satisfied(f"file {req.path} present")

    # ── Directories ──────────────────────────────────────────────
    for req in target.directories:
        mode = observed.directory_modes.get(req.path)
        if mode != req.mode or req.path in observed.tree_drift:
            b.add(EnsureDirectory(path=req.path, mode=req.mode, recursive=req.recursive))

    # ── Dependency manager ───────────────────────────────────────
    deps_step = None
    if target.skip_dependencies:
        b.satisfied("dependency step skipped")
    elif not observed.manifest_present:
        b.result.blockers.append(f"{deps.manifest} not found in the project root")
    else:
        manager_step = None
        if observed.dependency_manager is None:
            manager_step = b.add(
                InstallDependencyManager(
                    runtime=runtime.name,
                    filename=deps.command,
                    installer_url=deps.installer_url,
                    signature_url=deps.signature_url,
                    install_dir=deps.install_dir,
                ),
                depends_on=[base_step, *runtime_ready],
                requires_privilege=True,
                long_running=True,
            )
        if observed.dependencies_installed:
            b.satisfied("dependencies installed")
        else:
            args = deps.install_args if observed.lock_present else deps.update_args
            limit = memory_limit if memory_limit is not None else deps.memory_limit_default
            deps_step = b.add(
                RunExternalCommand(
                    args=(deps.command, *args),
                    purpose=DEPENDENCY_INSTALL,
                    env=((deps.memory_limit_var, limit),),
                ),
                depends_on=[manager_step, *runtime_ready],
                long_running=True,
                recoverable=True,
                prompt="Dependency install failed. Continue with setup anyway?",
            )

    # ── Application bootstrap ────────────────────────────────────
    # A guard read from a file this plan overwrites is stale: the command
    # runs again after the overwrite, and is skipped with it if declined.
    for cmd in target.bootstrap:
        guard_file = cmd.unless_file_contains[0] if cmd.unless_file_contains else None
        if observed.bootstrap_satisfied.get(cmd.name) and guard_file not in rewritten:
            b.satisfied(f"bootstrap {cmd.name} already done")
            continue
        b.add(
            RunExternalCommand(args=cmd.args, purpose=f"bootstrap:{cmd.name}"),
            depends_on=[
                deps_step,
                *runtime_ready,
                file_steps.get(guard_file),
                file_steps.get(cmd.creates),
            ],
            allow_failure=cmd.allow_failure,
        )

    logger.info(
        "Plan: %d step(s), %d satisfied, %d blocker(s)",
        len(b.result.steps),
        len(b.result.satisfied),
        len(b.result.blockers),
    )
    return b.result
