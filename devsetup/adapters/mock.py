"""
Mock adapters — test doubles for the runner and the alternatives registry.

Used by the test suite and by ``--mock`` style experiments to drive the
whole probe/plan/execute pipeline without touching the host. Responses
can be static results or callables, so a test can simulate a host whose
state changes as commands run.
"""

from __future__ import annotations

from typing import Callable, Union

from devsetup.adapters.alternatives import AlternativesRegistry, version_key
from devsetup.adapters.base import CommandResult, CommandRunner
from devsetup.core.errors import RegistryError

Response = Union[CommandResult, Callable[[list[str]], CommandResult]]


class MockRunner(CommandRunner):
    """Scriptable command runner.

    By default, commands listed in ``installed`` succeed with
    ``default_output`` and everything else exits 127 (not found).
    Custom responses are matched on the longest command prefix.
    """

    def __init__(
        self,
        installed: set[str] | None = None,
        default_output: str = "",
    ):
        self.installed: set[str] = set(installed or ())
        self._default_output = default_output
        self._responses: dict[tuple[str, ...], Response] = {}
        self._call_log: list[dict] = []

    @property
    def call_log(self) -> list[dict]:
        """Every run() call as a dict (command, args, privilege, env, cwd)."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def command_lines(self) -> list[list[str]]:
        """Convenience view: each call as ``[command, *args]``."""
        return [[c["command"], *c["args"]] for c in self._call_log]

    def which(self, command: str) -> str | None:
        return f"/usr/bin/{command}" if command in self.installed else None

    def set_response(self, prefix: str | tuple[str, ...], response: Response) -> None:
        """Answer commands starting with ``prefix`` (a string is split on spaces)."""
        key = tuple(prefix.split()) if isinstance(prefix, str) else tuple(prefix)
        self.installed.add(key[0])
        self._responses[key] = response

    def set_output(self, prefix: str | tuple[str, ...], stdout: str = "", exit_code: int = 0,
                   stderr: str = "") -> None:
        """Static response shortcut."""
        key = tuple(prefix.split()) if isinstance(prefix, str) else tuple(prefix)
        self.set_response(key, CommandResult(
            command=list(key), exit_code=exit_code, stdout=stdout, stderr=stderr,
        ))

    def set_failure(self, prefix: str | tuple[str, ...], stderr: str = "Mock failure",
                    exit_code: int = 1) -> None:
        self.set_output(prefix, exit_code=exit_code, stderr=stderr)

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
        cmd = [command, *args]
        self._call_log.append({
            "command": command,
            "args": list(args),
            "requires_privilege": requires_privilege,
            "env": dict(env or {}),
            "cwd": cwd,
            "interactive": interactive,
        })

        match: Response | None = None
        best = -1
        for prefix, response in self._responses.items():
            if len(prefix) > best and tuple(cmd[: len(prefix)]) == prefix:
                match, best = response, len(prefix)

        if match is not None:
            result = match(cmd) if callable(match) else match
            return result.model_copy(update={"command": cmd})

        if command in self.installed:
            return CommandResult(command=cmd, exit_code=0, stdout=self._default_output)
        return CommandResult(command=cmd, exit_code=127, stderr=f"command not found: {command}")

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()


class InMemoryAlternativesRegistry(AlternativesRegistry):
    """Alternatives registry kept in a dict.

    ``installed`` is the set of versioned executables "on disk". The
    selected version follows update-alternatives semantics: an explicit
    ``set_active`` wins, otherwise the highest priority entry is used.
    """

    def __init__(
        self,
        installed: list[str] | None = None,
        name: str = "php",
        bin_dir: str = "/usr/bin",
    ):
        super().__init__(name=name, bin_dir=bin_dir)
        self.installed: dict[str, str] = {
            v: self.executable_path(v) for v in (installed or [])
        }
        self._entries: dict[str, int] = {}
        self._manual: str | None = None
        self.operations: list[tuple] = []

    def install(self, version: str) -> None:
        """Simulate a package install dropping a versioned executable."""
        self.installed[version] = self.executable_path(version)

    def list_installed(self) -> list[tuple[str, str]]:
        return sorted(self.installed.items(), key=lambda item: version_key(item[0]))

    def entries(self) -> list[tuple[str, int]]:
        return sorted(self._entries.items(), key=lambda item: version_key(item[0]))

    def remove_all(self) -> None:
        self.operations.append(("remove_all",))
        self._entries.clear()
        self._manual = None

    def register(self, version: str, path: str, priority: int) -> None:
        self.operations.append(("register", version, priority))
        self._entries[version] = priority

    def set_active(self, version: str) -> None:
        if version not in self._entries:
            raise RegistryError(f"{self.name} {version} is not registered")
        self.operations.append(("set_active", version))
        self._manual = version

    @property
    def selected(self) -> str | None:
        """The version the generic link currently resolves to."""
        if self._manual is not None:
            return self._manual
        if not self._entries:
            return None
        return max(self._entries.items(), key=lambda item: item[1])[0]
