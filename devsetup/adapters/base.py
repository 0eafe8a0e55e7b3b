"""
Command runner base — the contract between the engine and the host.

Every external command the probe, the registry adapter and the executor
issue goes through a CommandRunner. Nothing else in the engine touches
subprocess, which is what lets the whole pipeline run against an
in-memory fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Outcome of one external command."""

    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner(ABC):
    """Abstract base class for command execution.

    Runners NEVER raise for command failures: a missing executable is
    reported as exit code 127, like a shell would.
    """

    @abstractmethod
    def run(
        self,
        command: str,
        args: list[str] | tuple[str, ...] = (),
        *,
        requires_privilege: bool = False,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        interactive: bool = False,
    ) -> CommandResult:
        """Run ``command`` with ``args`` and return its result.

        Args:
            command: Executable name or path.
            args: Arguments.
            requires_privilege: Run elevated (sudo) unless already root.
            env: Extra environment variables on top of the inherited ones.
            cwd: Working directory.
            interactive: Attach to the terminal instead of capturing
                output (password prompts).
        """

    @abstractmethod
    def which(self, command: str) -> str | None:
        """Resolve a command on PATH, or None."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
