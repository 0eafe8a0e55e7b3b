"""
Domain models — Pydantic types for the convergence engine.

All models are re-exported here for convenient access:

    from devsetup.core.models import TargetSpec, ObservedState, PlanResult
"""

from devsetup.core.models.action import (
    Action,
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
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import (
    BootstrapCommand,
    Capability,
    DependencySpec,
    DirectoryRequirement,
    FileRequirement,
    RuntimeSpec,
    TargetSpec,
)

__all__ = [
    # action.py
    "Action",
    "ActionResult",
    "CreateFile",
    "EnsureDirectory",
    "InstallCapability",
    "InstallDependencyManager",
    "InstallRuntime",
    "PlannedStep",
    "PlanResult",
    "RegisterAlternative",
    "RunExternalCommand",
    "SetActiveAlternative",
    # state.py
    "ObservedState",
    # target.py
    "BootstrapCommand",
    "Capability",
    "DependencySpec",
    "DirectoryRequirement",
    "FileRequirement",
    "RuntimeSpec",
    "TargetSpec",
]
