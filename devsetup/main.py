"""
devsetup — CLI entrypoint.

Usage:
    devsetup --help
    devsetup probe
    devsetup plan
    devsetup run --yes
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from devsetup import __version__
from devsetup.core.observability.logging_config import configure_from_env

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

_STATUS_STYLE = {
    "done": ("✅", "green"),
    "done-with-warnings": ("⚠️ ", "yellow"),
    "planned": ("📋", "cyan"),
    "cancelled": ("⊘", "yellow"),
    "failed": ("❌", "red"),
}


def _usage_exit_code(fn):
    """Usage errors (unknown option or command) exit 1, not click's 2."""
    def wrapper(self, ctx, *args, **kwargs):
        try:
            return fn(self, ctx, *args, **kwargs)
        except click.UsageError as e:
            e.exit_code = 1
            raise
    return wrapper


class _Command(click.Command):
    parse_args = _usage_exit_code(click.Command.parse_args)


class _Group(click.Group):
    command_class = _Command
    parse_args = _usage_exit_code(click.Group.parse_args)
    resolve_command = _usage_exit_code(click.Group.resolve_command)


@click.group(cls=_Group, context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__, prog_name="devsetup")
@click.option("--verbose", "-v", is_flag=True, help="Show every step as it runs.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to devsetup.yml (default: auto-detect, else built-in profile).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Set up a PHP / Laravel development machine, idempotently."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    configure_from_env(verbose=verbose, quiet=quiet, debug=debug)


# ── Output helpers ──────────────────────────────────────────────


def _print_plan(plan, verbose: bool) -> None:
    if plan.is_empty:
        click.secho("   Nothing to do: machine already matches the target.", fg="green")
    for step in plan.steps:
        marker = "?" if step.needs_confirmation else "•"
        sudo = " (sudo)" if step.requires_privilege else ""
        click.echo(f"   {marker} {step.step_id}. {step.action.describe()}{sudo}")
    if verbose:
        for note in plan.satisfied:
            click.secho(f"   ✓ {note}", fg="green")
    for blocker in plan.blockers:
        click.secho(f"   ✗ {blocker}", fg="red")


def _print_report(report, verbose: bool) -> None:
    for r in report.results:
        timing = f" ({r.duration_ms}ms)" if r.duration_ms else ""
        if r.ok:
            click.secho(f"   ✓ {r.description}", fg="green", nl=False)
            click.echo(timing)
            if verbose and r.output:
                for line in r.output.split("\n")[:10]:
                    click.echo(f"     │ {line}")
        elif r.failed:
            color = "yellow" if r.warning else "red"
            click.secho(f"   ✗ {r.description}", fg=color, nl=False)
            click.echo(timing)
            if r.error:
                for line in r.error.split("\n")[:5]:
                    click.echo(f"     │ {line}")
        else:
            click.secho(f"   ⊘ {r.description} ", fg="yellow", nl=False)
            click.echo(f"({r.output})")


def _print_outcome(setup, verbose: bool) -> None:
    result = setup.result
    target = setup.target
    click.secho(
        f"\n⚡ {target.runtime.name} {target.runtime_version} — {setup.project_root}",
        fg="cyan",
        bold=True,
    )

    if result.plan is not None and (result.report is None or verbose):
        click.echo()
        click.secho("   Plan:", fg="white", bold=True)
        _print_plan(result.plan, verbose)

    if result.report is not None:
        click.echo()
        click.secho("   Steps:", fg="white", bold=True)
        _print_report(result.report, verbose)

    if result.warnings:
        click.echo()
        for warning in result.warnings:
            click.secho(f"   ⚠ {warning}", fg="yellow")

    click.echo()
    icon, color = _STATUS_STYLE.get(result.status, ("•", "white"))
    click.secho(f"{icon} {result.status}", fg=color, bold=True)
    if result.error is not None:
        click.secho(f"   {result.error}", fg="red")
        hint = getattr(result.error, "hint", "")
        if hint:
            click.echo(f"   Hint: {hint}")


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("--skip-composer", is_flag=True, help="Skip the dependency-manager steps.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to every question.")
@click.option("--no-input", is_flag=True, help="Answer no to every question.")
@click.option("--dry-run", is_flag=True, help="Probe and plan only; change nothing.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    skip_composer: bool,
    assume_yes: bool,
    no_input: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Converge this machine to the target profile.

    Examples:

        devsetup run

        devsetup run --yes --skip-composer

        devsetup run --dry-run --json
    """
    from devsetup.core.engine.decisions import ClickDecisions, PresetDecisions
    from devsetup.core.use_cases.converge import converge

    if assume_yes and no_input:
        err = click.UsageError("--yes and --no-input are mutually exclusive.", ctx=ctx)
        err.exit_code = 1
        raise err

    if assume_yes:
        decisions = PresetDecisions(True)
    elif no_input:
        decisions = PresetDecisions(False)
    else:
        decisions = ClickDecisions()

    setup = converge(
        config_path=ctx.obj.get("config_path"),
        skip_dependencies=skip_composer,
        decisions=decisions,
        dry_run=dry_run,
    )
    _finish(ctx, setup, as_json)


@cli.command()
@click.option("--skip-composer", is_flag=True, help="Skip the dependency-manager steps.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, skip_composer: bool, as_json: bool) -> None:
    """Show what `run` would do, without doing it."""
    from devsetup.core.engine.decisions import PresetDecisions
    from devsetup.core.use_cases.converge import converge

    setup = converge(
        config_path=ctx.obj.get("config_path"),
        skip_dependencies=skip_composer,
        decisions=PresetDecisions(True),
        dry_run=True,
    )
    _finish(ctx, setup, as_json, force_plan=True)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def probe(ctx: click.Context, as_json: bool) -> None:
    """Show the observed state of this machine."""
    from devsetup.core.use_cases.converge import probe_host

    snapshot = probe_host(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        if snapshot.error:
            sys.exit(1)
        return

    observed = snapshot.observed
    if snapshot.error or observed is None:
        click.secho(f"❌ {snapshot.error or 'Host state unavailable'}", fg="red")
        sys.exit(1)

    target = snapshot.target
    click.secho(f"\n🔍 Target {target.runtime.name} {target.runtime_version}", fg="cyan", bold=True)

    active = observed.active_version or "absent"
    color = "green" if observed.active_version == target.runtime_version else "yellow"
    click.echo("   Active:       ", nl=False)
    click.secho(active, fg=color)
    click.echo(f"   Installed:    {', '.join(sorted(observed.discovered)) or 'none'}")
    registry = ", ".join(f"{v}={p}" for v, p in observed.registry_entries) or "empty"
    click.echo(f"   Alternatives: {registry}")

    missing = sorted(target.capability_names - observed.capabilities)
    click.echo(f"   Capabilities: {len(target.capabilities) - len(missing)}/{len(target.capabilities)}")
    for name in missing:
        click.secho(f"     ✗ {name}", fg="red")

    if target.base_packages:
        absent = [p for p in target.base_packages if p not in observed.base_packages]
        installed = len(target.base_packages) - len(absent)
        click.echo(f"   Base tools:   {installed}/{len(target.base_packages)}")
        for name in absent:
            click.secho(f"     ✗ {name}", fg="red")

    for req in target.files:
        if req.path in observed.existing_files:
            click.secho(f"   ✓ {req.path}", fg="green")
        else:
            click.secho(f"   ✗ {req.path}", fg="red")

    deps = target.dependencies
    click.echo(f"   {deps.command}: {observed.dependency_manager or 'absent'}", nl=False)
    click.echo(" (installed)" if observed.dependencies_installed else "")
    if observed.wsl:
        click.echo("   Host: WSL")


def _finish(ctx: click.Context, setup, as_json: bool, force_plan: bool = False) -> None:
    if as_json:
        click.echo(json.dumps(setup.to_dict(), indent=2))
        if setup.exit_code:
            sys.exit(setup.exit_code)
        return

    if setup.error:
        click.secho(f"❌ {setup.error}", fg="red")
        sys.exit(1)

    if not ctx.obj.get("quiet") or setup.exit_code:
        _print_outcome(setup, verbose=ctx.obj.get("verbose", False) or force_plan)

    if setup.exit_code:
        sys.exit(setup.exit_code)


if __name__ == "__main__":
    cli()
