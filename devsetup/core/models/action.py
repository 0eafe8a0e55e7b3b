"""
Action, PlannedStep and ActionResult models — the execution contract.

Actions are what the planner decides must happen. They are frozen value
objects: comparable, hashable and never mutated. The executor is their
only consumer, and it answers every action with an ActionResult instead
of raising.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

_FROZEN = ConfigDict(frozen=True)


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


# ── Action variants ─────────────────────────────────────────────────


class InstallRuntime(BaseModel):
    model_config = _FROZEN
    kind: Literal["install_runtime"] = "install_runtime"

    version: str
    packages: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"install runtime {self.version}"


class RegisterAlternative(BaseModel):
    model_config = _FROZEN
    kind: Literal["register_alternative"] = "register_alternative"

    version: str
    priority: int

    def describe(self) -> str:
        return f"register alternative {self.version} (priority {self.priority})"


class SetActiveAlternative(BaseModel):
    model_config = _FROZEN
    kind: Literal["set_active_alternative"] = "set_active_alternative"

    version: str

    def describe(self) -> str:
        return f"set active alternative {self.version}"


class InstallCapability(BaseModel):
    """Batched: one action covers every missing capability."""

    model_config = _FROZEN
    kind: Literal["install_capability"] = "install_capability"

    names: tuple[str, ...]
    packages: tuple[str, ...] = ()

    def describe(self) -> str:
        return f"install capabilities {', '.join(self.names)}"


class CreateFile(BaseModel):
    model_config = _FROZEN
    kind: Literal["create_file"] = "create_file"

    path: str
    content: str = ""
    overwrite: bool = False

    def describe(self) -> str:
        verb = "overwrite" if self.overwrite else "create"
        return f"{verb} file {self.path}"


class EnsureDirectory(BaseModel):
    model_config = _FROZEN
    kind: Literal["ensure_directory"] = "ensure_directory"

    path: str
    mode: int = 0o775
    recursive: bool = False

    def describe(self) -> str:
        scope = ", recursive" if self.recursive else ""
        return f"ensure directory {self.path} ({oct(self.mode)}{scope})"


class InstallDependencyManager(BaseModel):
    model_config = _FROZEN
    kind: Literal["install_dependency_manager"] = "install_dependency_manager"

    runtime: str = "php"
    filename: str = "composer"
    installer_url: str = ""
    signature_url: str = ""
    install_dir: str = "/usr/local/bin"

    def describe(self) -> str:
        return f"install {self.filename} into {self.install_dir}"


class RunExternalCommand(BaseModel):
    model_config = _FROZEN
    kind: Literal["run_external_command"] = "run_external_command"

    args: tuple[str, ...]
    purpose: str = ""
    env: tuple[tuple[str, str], ...] = ()
    requires_privilege: bool = False

    def describe(self) -> str:
        label = f"[{self.purpose}] " if self.purpose else ""
        return f"{label}{' '.join(self.args)}"


Action = Annotated[
    Union[
        InstallRuntime,
        RegisterAlternative,
        SetActiveAlternative,
        InstallCapability,
        CreateFile,
        EnsureDirectory,
        InstallDependencyManager,
        RunExternalCommand,
    ],
    Field(discriminator="kind"),
]


# ── Plan ────────────────────────────────────────────────────────────

Classification = Literal["no-op", "safe-automatic", "needs-confirmation"]


class PlannedStep(BaseModel):
    """One action in a plan, with everything the executor must know
    about how to run it."""

    model_config = _FROZEN

    step_id: int
    action: Action
    classification: Classification = "safe-automatic"
    prompt: str = ""                    # question asked for needs-confirmation
    requires_privilege: bool = False
    long_running: bool = False
    recoverable: bool = False           # failure may be downgraded after confirmation
    allow_failure: bool = False         # failure is always a warning
    depends_on: tuple[int, ...] = ()

    @property
    def needs_confirmation(self) -> bool:
        return self.classification == "needs-confirmation"


class PlanResult(BaseModel):
    """Ordered steps plus the no-op decisions that produced no step."""

    steps: list[PlannedStep] = Field(default_factory=list)
    satisfied: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)

    @property
    def actions(self) -> list[Any]:
        return [s.action for s in self.steps]

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @property
    def needs_confirmation(self) -> bool:
        return any(s.needs_confirmation for s in self.steps)

    @property
    def requires_privilege(self) -> bool:
        return any(s.requires_privilege for s in self.steps)

    def to_dict(self) -> dict:
        return {
            "steps": [
                {
                    "step_id": s.step_id,
                    "action": s.action.model_dump(mode="json"),
                    "description": s.action.describe(),
                    "classification": s.classification,
                    "requires_privilege": s.requires_privilege,
                    "long_running": s.long_running,
                    "depends_on": list(s.depends_on),
                }
                for s in self.steps
            ],
            "satisfied": list(self.satisfied),
            "blockers": list(self.blockers),
        }


# ── Results ─────────────────────────────────────────────────────────


class ActionResult(BaseModel):
    """Outcome of one planned step.

    Like an adapter receipt: failures live here, they are not raised.
    ``warning`` marks a failure that was downgraded and did not halt
    the run.
    """

    step_id: int
    description: str = ""
    status: Literal["ok", "skipped", "failed"] = "ok"
    warning: bool = False

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def fatal(self) -> bool:
        return self.failed and not self.warning

    @classmethod
    def success(cls, step: PlannedStep, output: str = "", **kwargs: Any) -> ActionResult:
        return cls(step_id=step.step_id, description=step.action.describe(),
                   status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, step: PlannedStep, error: str, **kwargs: Any) -> ActionResult:
        return cls(step_id=step.step_id, description=step.action.describe(),
                   status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, step: PlannedStep, reason: str = "", **kwargs: Any) -> ActionResult:
        return cls(step_id=step.step_id, description=step.action.describe(),
                   status="skipped", output=reason, **kwargs)
