"""
TargetSpec — the declared end state of a development machine.

Loaded once from devsetup.yml (or the built-in defaults) at run start
and never mutated afterwards. Every other component receives it as an
argument; nothing reads configuration from ambient process state.

The defaults reproduce the PHP 8.1 / Composer / Laravel profile the
provisioning script has always targeted.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_FROZEN = ConfigDict(frozen=True)


class Capability(BaseModel):
    """An optional runtime feature module (a PHP extension).

    ``module`` is the name the runtime prints in its module listing,
    which does not always match the capability name (``mysql`` shows
    up as ``mysqli``). ``package`` overrides the package naming
    template.
    """

    model_config = _FROZEN

    name: str
    module: str = ""
    package: str = ""

    @property
    def module_name(self) -> str:
        return self.module or self.name

    def package_for(self, runtime: str, version: str) -> str:
        if self.package:
            return self.package.format(runtime=runtime, version=version)
        return f"{runtime}{version}-{self.name}"


class FileRequirement(BaseModel):
    """A file that must exist relative to the project root.

    Policies:
        touch: create an empty file if missing, never touch content.
        write: file must hold ``content``; differing content is
            overwritten (after confirmation when ``confirm_overwrite``).
    """

    model_config = _FROZEN

    path: str
    policy: Literal["touch", "write"] = "touch"
    content: str = ""
    confirm_overwrite: bool = False


class DirectoryRequirement(BaseModel):
    """A directory that must exist with the given permission bits.

    ``recursive`` applies the mode to everything below the directory as
    well (files included, symlinks left alone), like ``chmod -R``.
    """

    model_config = _FROZEN

    path: str
    mode: int = 0o775
    recursive: bool = False


class BootstrapCommand(BaseModel):
    """An application bootstrap command (artisan, etc.).

    Guards make a command convergent: ``creates`` skips it when the
    path exists, ``unless_file_contains`` skips it when the given file
    contains the marker text. A command without guards runs every time.
    """

    model_config = _FROZEN

    name: str
    args: tuple[str, ...]
    creates: str | None = None
    unless_file_contains: tuple[str, str] | None = None
    allow_failure: bool = False

    @property
    def guarded(self) -> bool:
        return self.creates is not None or self.unless_file_contains is not None


class RuntimeSpec(BaseModel):
    """Runtime executable naming and the packages of a runtime install."""

    model_config = _FROZEN

    name: str = "php"
    bin_dir: str = "/usr/bin"
    packages: tuple[str, ...] = ("{runtime}{version}", "{runtime}{version}-cli",
                                 "{runtime}{version}-common", "{runtime}{version}-fpm",
                                 "{runtime}{version}-dev")
    repository: str | None = "ppa:ondrej/php"

    def package_names(self, version: str) -> tuple[str, ...]:
        return tuple(p.format(runtime=self.name, version=version) for p in self.packages)


class DependencySpec(BaseModel):
    """Dependency manager (Composer) settings."""

    model_config = _FROZEN

    command: str = "composer"
    manifest: str = "composer.json"
    lock_file: str = "composer.lock"
    installed_marker: str = "vendor/composer/installed.json"
    install_args: tuple[str, ...] = ("install", "--no-interaction", "--optimize-autoloader")
    update_args: tuple[str, ...] = ("update", "--no-interaction", "--optimize-autoloader")
    memory_limit_var: str = "COMPOSER_MEMORY_LIMIT"
    memory_limit_default: str = "-1"
    installer_url: str = "https://getcomposer.org/installer"
    signature_url: str = "https://composer.github.io/installer.sig"
    install_dir: str = "/usr/local/bin"


def _default_capabilities() -> tuple[Capability, ...]:
    return (
        Capability(name="soap"),
        Capability(name="sqlite3"),
        Capability(name="curl"),
        Capability(name="mbstring"),
        Capability(name="mysql", module="mysqli"),
        Capability(name="xml"),
        Capability(name="zip"),
        Capability(name="gd"),
        Capability(name="intl"),
        Capability(name="bcmath"),
    )


def _default_files() -> tuple[FileRequirement, ...]:
    return (
        FileRequirement(path=".env.environment", policy="write", content="local\n"),
        FileRequirement(path=".env", policy="write", content="local\n", confirm_overwrite=True),
        FileRequirement(path="database/primary_database.sqlite"),
        FileRequirement(path="database/myaccount_database.sqlite"),
        FileRequirement(path="database/mycircle_database.sqlite"),
    )


def _default_directories() -> tuple[DirectoryRequirement, ...]:
    leaves = tuple(
        DirectoryRequirement(path=p)
        for p in (
            "storage/app/public",
            "storage/framework/cache",
            "storage/framework/sessions",
            "storage/framework/views",
            "storage/logs",
        )
    )
    return leaves + (
        DirectoryRequirement(path="storage", recursive=True),
        DirectoryRequirement(path="bootstrap/cache", recursive=True),
    )


def _default_bootstrap() -> tuple[BootstrapCommand, ...]:
    return (
        BootstrapCommand(
            name="key-generate",
            args=("php", "artisan", "key:generate", "--force"),
            unless_file_contains=(".env", "APP_KEY=base64:"),
        ),
        BootstrapCommand(
            name="storage-link",
            args=("php", "artisan", "storage:link"),
            creates="public/storage",
        ),
        BootstrapCommand(
            name="migrate",
            args=("php", "artisan", "migrate", "--force"),
            allow_failure=True,
        ),
    )


class TargetSpec(BaseModel):
    """The desired configuration of the machine and project tree."""

    model_config = _FROZEN

    runtime_version: str = "8.1"
    runtime: RuntimeSpec = Field(default_factory=RuntimeSpec)
    capabilities: tuple[Capability, ...] = Field(default_factory=_default_capabilities)
    files: tuple[FileRequirement, ...] = Field(default_factory=_default_files)
    directories: tuple[DirectoryRequirement, ...] = Field(default_factory=_default_directories)
    dependencies: DependencySpec = Field(default_factory=DependencySpec)
    bootstrap: tuple[BootstrapCommand, ...] = Field(default_factory=_default_bootstrap)
    base_packages: tuple[str, ...] = (
        "software-properties-common", "curl", "wget", "unzip", "git",
    )

    skip_dependencies: bool = False
    refresh_packages: bool = True
    upgrade_packages: bool = True
    require_wsl: bool = True

    @field_validator("runtime_version", mode="before")
    @classmethod
    def _version_as_string(cls, value: object) -> object:
        # YAML reads 8.1 as a float
        if isinstance(value, float):
            return f"{value:.1f}"
        return value

    @field_validator("runtime_version")
    @classmethod
    def _version_is_major_minor(cls, value: str) -> str:
        if not re.fullmatch(r"\d+\.\d+", value):
            raise ValueError(f"runtime_version must look like 'major.minor', got {value!r}")
        return value

    @property
    def capability_names(self) -> frozenset[str]:
        return frozenset(c.name for c in self.capabilities)

    @property
    def file_paths(self) -> frozenset[str]:
        return frozenset(f.path for f in self.files)
