"""Adapters — host bindings for command execution and the alternatives registry.

Public re-exports for convenient access.
"""

from devsetup.adapters.alternatives import AlternativesRegistry, UpdateAlternativesRegistry
from devsetup.adapters.base import CommandResult, CommandRunner
from devsetup.adapters.mock import InMemoryAlternativesRegistry, MockRunner

__all__ = [
    "AlternativesRegistry",
    "CommandResult",
    "CommandRunner",
    "InMemoryAlternativesRegistry",
    "MockRunner",
    "UpdateAlternativesRegistry",
]
