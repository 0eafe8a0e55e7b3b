"""
Shared test fixtures and configuration.
"""

import logging
import textwrap
from pathlib import Path

import pytest

import devsetup.core.use_cases.converge as converge_module
from devsetup.core.config.loader import CONFIG_FILE

from simulated_host import SimulatedHost, minimal_target


@pytest.fixture(autouse=True)
def _isolate_root_logger():
    """CLI invocations reconfigure the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project with a runtime-only devsetup.yml and one placeholder file."""
    (tmp_path / CONFIG_FILE).write_text(textwrap.dedent("""\
        runtime_version: "8.1"
        runtime:
          repository: null
        capabilities: []
        files:
          - path: database/primary.sqlite
        directories: []
        bootstrap: []
        base_packages: []
        skip_dependencies: true
        refresh_packages: false
        upgrade_packages: false
        require_wsl: false
    """))
    return tmp_path


@pytest.fixture
def host(project_dir: Path, monkeypatch) -> SimulatedHost:
    """Route the converge use case's real adapters to a simulated host."""
    simulated = SimulatedHost(project_dir, target=minimal_target())
    simulated.euid = 1000
    monkeypatch.setattr(converge_module, "SubprocessRunner", lambda: simulated.runner)
    monkeypatch.setattr(
        converge_module, "UpdateAlternativesRegistry", lambda runner, **kw: simulated.registry,
    )
    monkeypatch.setattr(
        converge_module,
        "FactProbe",
        lambda target, runner, registry, project_root: simulated.probe(target, euid=simulated.euid),
    )
    return simulated
