"""
Subprocess runner — execute host commands and capture their output.

The SINGLE PLACE where ``subprocess.run`` is called. Privileged commands
get a ``sudo`` prefix unless the process already runs as root; the
password, if any, is asked by sudo itself on the terminal (see
PrivilegeLease), never handled here.

No timeouts: a hung command is a hung command. This is an interactive
single-operator tool, not a server.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

from devsetup.adapters.base import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class SubprocessRunner(CommandRunner):
    """Run commands on the local host."""

    def __init__(self, sudo: str = "sudo"):
        self._sudo = sudo

    def which(self, command: str) -> str | None:
        return shutil.which(command)

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
        if requires_privilege and os.geteuid() != 0:
            cmd = [self._sudo, *cmd]

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        logger.debug("Executing: %s (cwd=%s)", " ".join(cmd), cwd or ".")
        start = time.monotonic()

        try:
            if interactive:
                result = subprocess.run(cmd, env=full_env, cwd=cwd)
                stdout, stderr = "", ""
            else:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    env=full_env,
                    cwd=cwd,
                )
                stdout, stderr = result.stdout or "", result.stderr or ""
        except FileNotFoundError:
            return CommandResult(
                command=cmd,
                exit_code=127,
                stderr=f"command not found: {cmd[0]}",
            )
        except OSError as e:
            return CommandResult(
                command=cmd,
                exit_code=126,
                stderr=f"cannot execute {cmd[0]}: {e}",
            )
        except Exception as e:
            logger.exception("Subprocess error: %s", " ".join(cmd))
            return CommandResult(
                command=cmd,
                exit_code=1,
                stderr=f"Command execution error: {e}",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode != 0:
            logger.debug("Exit %d from %s: %s", result.returncode, cmd[0], stderr.strip()[-500:])

        return CommandResult(
            command=cmd,
            exit_code=result.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_ms=elapsed_ms,
        )
