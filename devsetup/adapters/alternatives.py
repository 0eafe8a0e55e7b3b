"""
Alternatives registry adapter — pick one active runtime among several.

Wraps the OS facility that maps a logical command (``php``) to one of
several versioned executables (``php7.4``, ``php8.1``...), selected by
priority or by explicit choice.

Two implementations share the contract:
    UpdateAlternativesRegistry     Debian/Ubuntu ``update-alternatives``
    InMemoryAlternativesRegistry   test double (devsetup.adapters.mock)

The executor always calls ``remove_all()`` before re-registering the
full discovered set, so entries left behind by an earlier target
version never survive a run.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

from devsetup.adapters.base import CommandRunner
from devsetup.core.errors import RegistryError

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+)\.(\d+)")


def version_key(version: str) -> tuple[int, ...]:
    """Sort key for ``major.minor`` strings (``8.10`` sorts after ``8.9``)."""
    match = _VERSION_RE.search(version)
    if not match:
        return (0, 0)
    return (int(match.group(1)), int(match.group(2)))


class AlternativesRegistry(ABC):
    """Abstract registry of versioned runtime executables."""

    def __init__(self, name: str = "php", bin_dir: str = "/usr/bin"):
        self.name = name
        self.bin_dir = bin_dir
        self._exe_re = re.compile(rf"^{re.escape(name)}(\d+\.\d+)$")

    @property
    def link(self) -> str:
        """The generic path the registry manages (``/usr/bin/php``)."""
        return f"{self.bin_dir}/{self.name}"

    def executable_path(self, version: str) -> str:
        return f"{self.bin_dir}/{self.name}{version}"

    def version_of(self, path: str) -> str | None:
        """Version encoded in a versioned executable's file name."""
        match = self._exe_re.match(Path(path).name)
        return match.group(1) if match else None

    @abstractmethod
    def list_installed(self) -> list[tuple[str, str]]:
        """Versioned executables on disk as (version, path), ascending.

        Empty when none are installed; that is not an error.
        """

    @abstractmethod
    def entries(self) -> list[tuple[str, int]]:
        """Currently registered (version, priority) entries."""

    @abstractmethod
    def remove_all(self) -> None:
        """Drop every entry. Succeeds when there is nothing to drop."""

    @abstractmethod
    def register(self, version: str, path: str, priority: int) -> None:
        """Add or overwrite an entry."""

    @abstractmethod
    def set_active(self, version: str) -> None:
        """Select a registered version.

        Raises:
            RegistryError: if the version was never registered.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class UpdateAlternativesRegistry(AlternativesRegistry):
    """``update-alternatives`` driven through a CommandRunner."""

    def __init__(
        self,
        runner: CommandRunner,
        name: str = "php",
        bin_dir: str = "/usr/bin",
        tool: str = "update-alternatives",
    ):
        super().__init__(name=name, bin_dir=bin_dir)
        self._runner = runner
        self._tool = tool

    def list_installed(self) -> list[tuple[str, str]]:
        found: list[tuple[str, str]] = []
        try:
            candidates = list(Path(self.bin_dir).iterdir())
        except OSError as e:
            logger.debug("Cannot scan %s: %s", self.bin_dir, e)
            return found

        for path in candidates:
            version = self.version_of(str(path))
            if version and path.is_file() and os.access(path, os.X_OK):
                found.append((version, str(path)))

        found.sort(key=lambda item: version_key(item[0]))
        return found

    def entries(self) -> list[tuple[str, int]]:
        result = self._runner.run(self._tool, ["--query", self.name])
        if not result.ok:
            return []
        return self._parse_query(result.stdout)

    def _parse_query(self, output: str) -> list[tuple[str, int]]:
        """Parse ``--query`` output into (version, priority) pairs.

        The output is a header block followed by one block per
        alternative::

            Alternative: /usr/bin/php8.1
            Priority: 150
        """
        parsed: list[tuple[str, int]] = []
        current: str | None = None
        for line in output.splitlines():
            key, _, value = line.partition(":")
            value = value.strip()
            if key == "Alternative":
                current = self.version_of(value)
            elif key == "Priority" and current is not None:
                try:
                    parsed.append((current, int(value)))
                except ValueError:
                    logger.debug("Unparseable priority %r for %s", value, current)
                current = None
        return parsed

    def remove_all(self) -> None:
        if not self.entries():
            logger.debug("No %s alternatives registered, nothing to remove", self.name)
            return
        result = self._runner.run(
            self._tool, ["--remove-all", self.name], requires_privilege=True,
        )
        if not result.ok:
            raise RegistryError(
                f"Cannot remove {self.name} alternatives: "
                f"{result.stderr.strip() or f'exit {result.exit_code}'}"
            )
        logger.info("Removed existing %s alternatives", self.name)

    def register(self, version: str, path: str, priority: int) -> None:
        result = self._runner.run(
            self._tool,
            ["--install", self.link, self.name, path, str(priority)],
            requires_privilege=True,
        )
        if not result.ok:
            raise RegistryError(
                f"Cannot register {self.name} {version} ({path}): "
                f"{result.stderr.strip() or f'exit {result.exit_code}'}"
            )
        logger.info("Registered %s %s (priority %d)", self.name, version, priority)

    def set_active(self, version: str) -> None:
        registered = {v for v, _ in self.entries()}
        if version not in registered:
            raise RegistryError(f"{self.name} {version} is not registered")

        result = self._runner.run(
            self._tool,
            ["--set", self.name, self.executable_path(version)],
            requires_privilege=True,
        )
        if not result.ok:
            raise RegistryError(
                f"Cannot select {self.name} {version}: "
                f"{result.stderr.strip() or f'exit {result.exit_code}'}"
            )
        logger.info("%s %s set as default", self.name, version)
