"""
ObservedState — what the Fact Probe saw on the machine.

A snapshot, rebuilt from scratch on every probe. Nothing here is
carried over between probes and nothing is diffed incrementally: the
planner and the verifier always look at a full re-read of the host.

Unknown or failed queries are represented as "absent" (None, False,
empty collections), never as errors.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ObservedState(BaseModel):
    """A full read of the host relevant to one TargetSpec."""

    probed_at: str = Field(default_factory=_now_iso)

    # ── Runtime ──────────────────────────────────────────────────
    active_version: str | None = None
    discovered: dict[str, str] = Field(default_factory=dict)   # version → executable path
    registry_entries: list[tuple[str, int]] = Field(default_factory=list)  # (version, priority)
    alternatives_tool: bool = False
    repository_configured: bool = False
    capabilities: set[str] = Field(default_factory=set)
    base_packages: set[str] = Field(default_factory=set)   # installed, among the target's

    # ── Project tree ─────────────────────────────────────────────
    existing_files: set[str] = Field(default_factory=set)
    file_contents: dict[str, str] = Field(default_factory=dict)  # write-policy files only
    directory_modes: dict[str, int] = Field(default_factory=dict)
    tree_drift: dict[str, str] = Field(default_factory=dict)  # recursive dir → first entry off-mode

    # ── Dependency manager ───────────────────────────────────────
    dependency_manager: str | None = None   # reported version, None if absent
    manifest_present: bool = False
    lock_present: bool = False
    dependencies_installed: bool = False

    # ── Bootstrap guards ─────────────────────────────────────────
    bootstrap_satisfied: dict[str, bool] = Field(default_factory=dict)

    # ── Host ─────────────────────────────────────────────────────
    wsl: bool = False
    euid: int | None = None

    def registry_priority(self, version: str) -> int | None:
        """Priority registered for a version, or None if not registered."""
        for entry_version, priority in self.registry_entries:
            if entry_version == version:
                return priority
        return None

    def summary(self) -> dict:
        """Compact, JSON-friendly view for CLI output."""
        return {
            "probed_at": self.probed_at,
            "active_version": self.active_version,
            "discovered": dict(sorted(self.discovered.items())),
            "registry": [list(e) for e in self.registry_entries],
            "alternatives_tool": self.alternatives_tool,
            "repository_configured": self.repository_configured,
            "capabilities": sorted(self.capabilities),
            "base_packages": sorted(self.base_packages),
            "existing_files": sorted(self.existing_files),
            "directories": {p: oct(m) for p, m in sorted(self.directory_modes.items())},
            "tree_drift": dict(sorted(self.tree_drift.items())),
            "dependency_manager": self.dependency_manager,
            "manifest_present": self.manifest_present,
            "lock_present": self.lock_present,
            "dependencies_installed": self.dependencies_installed,
            "bootstrap_satisfied": dict(sorted(self.bootstrap_satisfied.items())),
            "wsl": self.wsl,
        }
