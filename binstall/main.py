"""
binstall: CLI entrypoint.

Usage:
    binstall --help
    binstall install manifests/unitrack.yml
    binstall verify unitrack
    python -m binstall.main dry-run manifests/unitrack.yml
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from binstall import __version__
from binstall.core.errors import InstallerError
from binstall.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="binstall")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to the settings file (default: $BINSTALL_CONFIG or ~/.config/binstall/config.yml).",
)
@click.option("--bin-dir", type=click.Path(), default=None, help="Directory binaries are installed into.")
@click.option("--state-dir", type=click.Path(), default=None, help="Directory for records and the audit ledger.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    envvar="BINSTALL_LOG_FILE",
    default=None,
    help="Also append detailed logs to this file (env: BINSTALL_LOG_FILE).",
)
@click.option(
    "--log-file-level",
    envvar="BINSTALL_LOG_FILE_LEVEL",
    default=None,
    help="Level for --log-file (default: DEBUG).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    bin_dir: str | None,
    state_dir: str | None,
    log_file: str | None,
    log_file_level: str | None,
) -> None:
    """binstall: install single-binary tools from manifests."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["overrides"] = {
        "bin_dir": bin_dir,
        "state_dir": state_dir,
    }

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("BINSTALL_LOG_LEVEL", "WARNING")

    setup_logging(level=level, log_file=log_file, log_file_level=log_file_level or "DEBUG")


# ── Shared helpers ──────────────────────────────────────────────


def get_installer(ctx: click.Context, **overrides):
    """Build an Installer from the settings layers plus CLI overrides."""
    from binstall.core.config.settings import load_settings
    from binstall.core.services.installer import Installer

    merged = {**ctx.obj.get("overrides", {}), **overrides}
    settings = load_settings(config_path=ctx.obj.get("config_path"), overrides=merged)
    return Installer(settings)


@contextmanager
def exit_on_error(as_json: bool) -> Iterator[None]:
    """Turn an InstallerError into its exit code (and JSON when asked)."""
    try:
        yield
    except InstallerError as e:
        if as_json:
            click.echo(json.dumps(e.to_dict(), indent=2))
        else:
            click.secho(f"❌ {e.message}", fg="red", err=True)
            for path in e.details.get("paths") or e.details.get("remaining") or []:
                click.echo(f"   • {path}", err=True)
        sys.exit(e.exit_code)


# ── Install ─────────────────────────────────────────────────────


@cli.command()
@click.argument("manifest", type=click.Path(path_type=Path))
@click.option("--version", "version", default=None, help="Install this version instead of the manifest's.")
@click.option("--force", is_flag=True, help="Overwrite binaries not installed by binstall.")
@click.option("--timeout", type=float, default=None, help="Download timeout in seconds.")
@click.option("--allow-http", is_flag=True, help="Allow plain http downloads.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    manifest: Path,
    version: str | None,
    force: bool,
    timeout: float | None,
    allow_http: bool,
    as_json: bool,
) -> None:
    """Install (or upgrade) the package described by MANIFEST."""
    from binstall.core.use_cases.install import run_install

    with exit_on_error(as_json):
        installer = get_installer(ctx, download_timeout=timeout, allow_http=allow_http or None)
        result = run_install(installer, manifest, version=version, force=force)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    for warning in result.warnings:
        click.secho(f"⚠️  {warning}", fg="yellow", err=True)

    record = result.record
    if not result.changed:
        click.secho(f"✅ {record.package_name} {record.installed_version} is already installed", fg="green")
        return

    if result.plan.kind == "upgrade":
        click.secho(
            f"✅ Upgraded {record.package_name} {result.plan.current_version} → {record.installed_version}",
            fg="green",
            bold=True,
        )
    else:
        click.secho(f"✅ Installed {record.package_name} {record.installed_version}", fg="green", bold=True)

    if not ctx.obj.get("quiet"):
        for path in record.installed_paths:
            click.echo(f"   → {path}")
        for path in record.stale_paths:
            click.secho(f"   ⚠️  left behind: {path}", fg="yellow")


@cli.command("dry-run")
@click.argument("manifest", type=click.Path(path_type=Path))
@click.option("--version", "version", default=None, help="Plan this version instead of the manifest's.")
@click.option("--timeout", type=float, default=None, help="Download timeout in seconds (accepted for parity with install).")
@click.option("--allow-http", is_flag=True, help="Allow plain http downloads.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def dry_run(
    ctx: click.Context,
    manifest: Path,
    version: str | None,
    timeout: float | None,
    allow_http: bool,
    as_json: bool,
) -> None:
    """Show what installing MANIFEST would do, without doing it.

    Takes the same overrides as install, so the plan matches what install
    would do with them.
    """
    from binstall.core.config.loader import load_manifest

    with exit_on_error(as_json):
        installer = get_installer(ctx, download_timeout=timeout, allow_http=allow_http or None)
        plan = installer.dry_run(load_manifest(manifest), version)

    if as_json:
        click.echo(json.dumps(plan.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n📋 [dry-run] {plan.package_name}: {plan.kind}", fg="cyan", bold=True)
    click.echo(f"   Reason:  {plan.reason}")
    click.echo(f"   Version: {plan.current_version or '-'} → {plan.resolved.version}")
    click.echo(f"   URL:     {plan.resolved.concrete_url}")
    click.echo(f"   Check:   {plan.resolved.expected_hash or 'unchecked'}")
    for path in plan.target_paths:
        click.echo(f"   → {path}")
    for path in plan.obsolete_paths:
        click.secho(f"   ✗ {path} (removed)", fg="yellow")
    if plan.conflicts:
        click.echo()
        click.secho("   ⚠️  Not owned by this package (needs --force):", fg="yellow")
        for path in plan.conflicts:
            click.echo(f"     • {path}")
    for warning in plan.resolved.warnings:
        click.secho(f"   ⚠️  {warning}", fg="yellow")
    click.echo()


# ── Uninstall / verify ──────────────────────────────────────────


@cli.command()
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(ctx: click.Context, name: str, as_json: bool) -> None:
    """Remove every file installed for package NAME."""
    with exit_on_error(as_json):
        get_installer(ctx).uninstall(name)

    if as_json:
        click.echo(json.dumps({"package_name": name, "uninstalled": True}, indent=2))
        return
    click.secho(f"✅ Uninstalled {name}", fg="green", bold=True)


@cli.command()
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(ctx: click.Context, name: str, as_json: bool) -> None:
    """Check that the files of package NAME are present and unaltered.

    Exits 0 when installed, 40 when not installed, 41 when corrupted.
    """
    from binstall.core.errors import Corrupted, NotInstalled

    with exit_on_error(as_json):
        status = get_installer(ctx).verify_installed(name)

    if as_json:
        click.echo(json.dumps(status.model_dump(mode="json"), indent=2))
    elif status.state == "installed":
        click.secho(f"✅ {name} {status.version} is installed and intact", fg="green")
    elif status.state == "not_installed":
        click.secho(f"⊘ {name} is not installed", fg="yellow")
    else:
        click.secho(f"❌ {name} is corrupted", fg="red", bold=True)
        if status.detail:
            click.echo(f"   {status.detail}")
        for path in status.missing:
            click.echo(f"   ✗ missing: {path}")
        for path in status.altered:
            click.echo(f"   ✗ altered: {path}")

    if status.state == "not_installed":
        sys.exit(NotInstalled.exit_code)
    if status.state == "corrupted":
        sys.exit(Corrupted.exit_code)


# ── Lint ────────────────────────────────────────────────────────


@cli.command()
@click.argument("manifest", type=click.Path(path_type=Path))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def lint(manifest: Path, as_json: bool) -> None:
    """Validate MANIFEST without downloading anything."""
    from binstall.core.errors import MalformedManifest
    from binstall.core.use_cases.lint import check_manifest

    result = check_manifest(manifest)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else MalformedManifest.exit_code)

    loaded = result.manifest
    if result.valid and loaded is not None:
        click.secho("✅ Manifest is valid", fg="green", bold=True)
        click.echo(f"   Package:  {loaded.title} {loaded.version}")
        click.echo(f"   Binaries: {', '.join(loaded.installed_names)}")
    else:
        click.secho("❌ Manifest errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(MalformedManifest.exit_code)

    click.echo()


# ── Register record commands from binstall/ui/cli/ ────────────────

from binstall.ui.cli.records import list_records, show  # noqa: E402

cli.add_command(list_records)
cli.add_command(show)


if __name__ == "__main__":
    cli()
