"""
Error taxonomy for a convergence run.

Fatal errors halt the pipeline at the step that raised them; nothing
is rolled back. Re-running is the recovery path, which is why every
action has to be idempotent.

ProbeDegraded is never raised to callers: the probe logs it and folds
the failed query into an "absent" fact. ConvergenceVerificationWarning
is a warning, not an error: it is collected into the run summary.
"""

from __future__ import annotations


class DevSetupError(Exception):
    """Base class for fatal errors."""


class ProbeDegraded(DevSetupError):
    """A read-only query failed and was treated as absent."""


class RegistryError(DevSetupError):
    """The alternatives registry refused an operation."""


class PrivilegeAcquisitionError(DevSetupError):
    """Elevated privilege could not be obtained or refreshed."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class PrivilegeMisuseError(DevSetupError):
    """The whole run was started as an already-elevated identity."""


class ExternalCommandFailure(DevSetupError):
    """An external command exited non-zero."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class PlanBlocked(DevSetupError):
    """The plan cannot be executed (e.g. dependency manifest missing)."""


class ConvergenceVerificationWarning(UserWarning):
    """Post-execution probe disagrees with the target."""
