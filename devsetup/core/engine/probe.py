"""
Fact probe — read-only queries against the host.

Builds a fresh ObservedState for one TargetSpec: runtime versions, the
alternatives table, loaded extensions, files and directories in the
project tree, dependency-manager state and bootstrap guards.

The probe never fails. Every query that errors (command not found,
non-zero exit, unparseable output, unreadable file) degrades to
"absent" and is logged at DEBUG; callers never see an exception.
"""

from __future__ import annotations

import logging
import os
import re
import stat
from pathlib import Path
from typing import Callable, TypeVar

from devsetup.adapters.alternatives import AlternativesRegistry
from devsetup.adapters.base import CommandRunner
from devsetup.core.errors import ProbeDegraded
from devsetup.core.models.state import ObservedState
from devsetup.core.models.target import TargetSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAJOR_MINOR_RE = re.compile(r"(\d+)\.(\d+)")
_TOOL_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?)")

DEFAULT_APT_SOURCES = ("/etc/apt/sources.list", "/etc/apt/sources.list.d")


def parse_major_minor(output: str) -> str | None:
    """First ``major.minor`` in the output, or None.

    Tolerant on purpose: ``PHP 8.1.2-1ubuntu2 (cli)`` → ``8.1``.
    """
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    match = _MAJOR_MINOR_RE.search(first_line)
    if not match:
        return None
    return f"{match.group(1)}.{match.group(2)}"


def parse_module_list(output: str) -> set[str]:
    """Module names from ``php -m`` output (section headers dropped)."""
    modules: set[str] = set()
    for line in output.splitlines():
        name = line.strip()
        if not name or name.startswith("["):
            continue
        modules.add(name.lower())
    return modules


def parse_dpkg_status(output: str) -> set[str]:
    """Installed package names from ``dpkg-query -W -f='${Package} ${Status}\\n'``."""
    installed: set[str] = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[-1] == "installed":
            installed.add(parts[0])
    return installed


def _degrade(query: str, fn: Callable[[], T], default: T) -> T:
    """Run one probe query; any error becomes ``default``."""
    try:
        return fn()
    except Exception as e:
        logger.debug("%s", ProbeDegraded(f"{query}: {e}"))
        return default


class FactProbe:
    """Side-effect-free view of the host for a given target.

    Args:
        target: What we are converging towards (decides which files,
            capabilities and guards are worth looking at).
        runner: Command runner used for every query.
        registry: Alternatives registry (discovery + current entries).
        project_root: Base for every relative path in the target.
        apt_sources: Files/directories searched for the runtime repository.
        proc_version: Kernel banner file used for WSL detection.
        euid_source: Returns the effective uid (injectable for tests).
    """

    def __init__(
        self,
        target: TargetSpec,
        runner: CommandRunner,
        registry: AlternativesRegistry,
        project_root: Path,
        apt_sources: tuple[str, ...] = DEFAULT_APT_SOURCES,
        proc_version: str = "/proc/version",
        euid_source: Callable[[], int] = os.geteuid,
    ):
        self.target = target
        self.runner = runner
        self.registry = registry
        self.project_root = Path(project_root)
        self.apt_sources = apt_sources
        self.proc_version = proc_version
        self.euid_source = euid_source

    def _path(self, rel: str) -> Path:
        return self.project_root / rel

    # ── Runtime ─────────────────────────────────────────────────

    def active_version(self) -> str | None:
        result = self.runner.run(self.target.runtime.name, ["-v"])
        if not result.ok:
            return None
        return parse_major_minor(result.stdout)

    def discovered_versions(self) -> dict[str, str]:
        return dict(self.registry.list_installed())

    def registry_entries(self) -> list[tuple[str, int]]:
        return self.registry.entries()

    def repository_configured(self) -> bool:
        repo = self.target.runtime.repository
        if not repo:
            return True
        needle = repo.removeprefix("ppa:")
        for source in self.apt_sources:
            path = Path(source)
            files = sorted(path.iterdir()) if path.is_dir() else [path]
            for f in files:
                if f.is_file() and needle in f.read_text(encoding="utf-8", errors="replace"):
                    return True
        return False

    def capabilities(self, active: str | None, discovered: dict[str, str]) -> set[str]:
        """Capability names loaded by the target runtime.

        Reads the target version's own executable when it is on disk,
        falls back to the generic command only when it already is the
        target. Otherwise nothing is known to be loaded.
        """
        version = self.target.runtime_version
        if version in discovered:
            exe = discovered[version]
        elif active == version:
            exe = self.target.runtime.name
        else:
            return set()

        result = self.runner.run(exe, ["-m"])
        if not result.ok:
            return set()
        modules = parse_module_list(result.stdout)
        return {
            c.name for c in self.target.capabilities
            if c.module_name.lower() in modules
        }

    def base_packages(self) -> set[str]:
        packages = self.target.base_packages
        if not packages:
            return set()
        # Exit 1 when any name is unknown; the known ones are still listed
        result = self.runner.run("dpkg-query", ["-W", "-f=${Package} ${Status}\n", *packages])
        return parse_dpkg_status(result.stdout) & set(packages)

    # ── Project tree ────────────────────────────────────────────

    def files(self) -> tuple[set[str], dict[str, str]]:
        existing: set[str] = set()
        contents: dict[str, str] = {}
        for req in self.target.files:
            path = self._path(req.path)
            if not path.is_file():
                continue
            existing.add(req.path)
            if req.policy == "write":
                text = _degrade(
                    f"read {req.path}",
                    lambda p=path: p.read_text(encoding="utf-8"),
                    None,
                )
                if text is not None:
                    contents[req.path] = text
        return existing, contents

    def directory_modes(self) -> dict[str, int]:
        modes: dict[str, int] = {}
        for req in self.target.directories:
            path = self._path(req.path)
            if path.is_dir():
                modes[req.path] = stat.S_IMODE(path.stat().st_mode)
        return modes

    def tree_drift(self) -> dict[str, str]:
        """First entry below each recursive directory whose mode is off."""
        drift: dict[str, str] = {}
        for req in self.target.directories:
            path = self._path(req.path)
            if not req.recursive or not path.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(path):
                dirnames.sort()
                entries = [Path(dirpath) / n for n in (*dirnames, *sorted(filenames))]
                off = next(
                    (e for e in entries
                     if not e.is_symlink() and stat.S_IMODE(e.stat().st_mode) != req.mode),
                    None,
                )
                if off is not None:
                    drift[req.path] = off.relative_to(self.project_root).as_posix()
                    break
        return drift

    # ── Dependency manager ──────────────────────────────────────

    def dependency_manager(self) -> str | None:
        result = self.runner.run(self.target.dependencies.command, ["--version"])
        if not result.ok:
            return None
        match = _TOOL_VERSION_RE.search(result.stdout)
        return match.group(1) if match else None

    def dependencies_installed(self) -> bool:
        deps = self.target.dependencies
        marker = self._path(deps.installed_marker)
        if not marker.is_file():
            return False
        lock = self._path(deps.lock_file)
        if lock.is_file() and lock.stat().st_mtime > marker.stat().st_mtime:
            return False
        return True

    # ── Bootstrap guards ────────────────────────────────────────

    def bootstrap_satisfied(self) -> dict[str, bool]:
        satisfied: dict[str, bool] = {}
        for cmd in self.target.bootstrap:
            ok = False
            if cmd.creates is not None:
                ok = os.path.lexists(self._path(cmd.creates))
            if not ok and cmd.unless_file_contains is not None:
                rel, marker = cmd.unless_file_contains
                path = self._path(rel)
                ok = _degrade(
                    f"read {rel}",
                    lambda p=path: p.is_file() and marker in p.read_text(encoding="utf-8"),
                    False,
                )
            satisfied[cmd.name] = ok
        return satisfied

    # ── Host ────────────────────────────────────────────────────

    def wsl(self) -> bool:
        banner = Path(self.proc_version).read_text(encoding="utf-8", errors="replace")
        return "microsoft" in banner.lower()

    def is_wsl(self) -> bool:
        """WSL detection that never raises."""
        return _degrade("wsl", self.wsl, False)

    # ── Full snapshot ───────────────────────────────────────────

    def probe(self) -> ObservedState:
        """Re-read everything. Never raises."""
        active = _degrade("active runtime version", self.active_version, None)
        discovered = _degrade("discovered runtimes", self.discovered_versions, {})
        existing, contents = _degrade("required files", self.files, (set(), {}))

        deps = self.target.dependencies
        state = ObservedState(
            active_version=active,
            discovered=discovered,
            registry_entries=_degrade("alternatives entries", self.registry_entries, []),
            alternatives_tool=_degrade(
                "alternatives tool", lambda: self.runner.which("update-alternatives") is not None, False,
            ),
            repository_configured=_degrade("runtime repository", self.repository_configured, False),
            capabilities=_degrade(
                "capabilities", lambda: self.capabilities(active, discovered), set(),
            ),
            base_packages=_degrade("base packages", self.base_packages, set()),
            existing_files=existing,
            file_contents=contents,
            directory_modes=_degrade("directories", self.directory_modes, {}),
            tree_drift=_degrade("directory trees", self.tree_drift, {}),
            dependency_manager=_degrade("dependency manager", self.dependency_manager, None),
            manifest_present=_degrade(
                "manifest", lambda: self._path(deps.manifest).is_file(), False,
            ),
            lock_present=_degrade(
                "lock file", lambda: self._path(deps.lock_file).is_file(), False,
            ),
            dependencies_installed=_degrade("installed dependencies", self.dependencies_installed, False),
            bootstrap_satisfied=_degrade("bootstrap guards", self.bootstrap_satisfied, {}),
            wsl=_degrade("wsl", self.wsl, False),
            euid=_degrade("euid", self.euid_source, None),
        )
        logger.debug(
            "Probed: active=%s discovered=%s capabilities=%d files=%d",
            state.active_version,
            sorted(state.discovered),
            len(state.capabilities),
            len(state.existing_files),
        )
        return state
