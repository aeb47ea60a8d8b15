"""
CLI commands for installed-package records.

Thin wrappers over ``binstall.core.services.installer`` and the audit ledger.
"""

from __future__ import annotations

import json

import click


def _installer(ctx: click.Context):
    from binstall.main import get_installer

    return get_installer(ctx)


# ── Observe ─────────────────────────────────────────────────────


@click.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_records(ctx: click.Context, as_json: bool) -> None:
    """List installed packages."""
    from binstall.main import exit_on_error

    with exit_on_error(as_json):
        records = _installer(ctx).list_installed()

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.secho("⚠️  Nothing installed", fg="yellow")
        return

    click.secho(f"📦 Installed ({len(records)}):", fg="cyan", bold=True)
    for r in records:
        names = ", ".join(p.rsplit("/", 1)[-1] for p in r.installed_paths)
        stale = f"  ({len(r.stale_paths)} stale)" if r.stale_paths else ""
        click.echo(f"   {r.package_name:<25} {r.installed_version:<12} {names}{stale}")
    click.echo()


@click.command()
@click.argument("name")
@click.option("--history", "-n", default=5, type=int, help="Number of ledger entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, name: str, history: int, as_json: bool) -> None:
    """Show the installation record and recent history of package NAME."""
    from binstall.core.errors import NotInstalled
    from binstall.core.persistence.audit import AuditWriter
    from binstall.main import exit_on_error

    with exit_on_error(as_json):
        installer = _installer(ctx)
        record = installer.store.load(name)
        if record is None:
            raise NotInstalled(name)

    entries = AuditWriter(installer.settings.audit_path).read_for(name, history)

    if as_json:
        click.echo(json.dumps(
            {
                "record": record.model_dump(mode="json"),
                "history": [e.model_dump(mode="json") for e in entries],
            },
            indent=2,
        ))
        return

    click.secho(f"\n📦 {record.package_name} {record.installed_version}", fg="cyan", bold=True)
    click.echo(f"   Source:    {record.source_url}")
    click.echo(f"   Integrity: {record.integrity}")
    click.echo(f"   Installed: {record.install_timestamp}")
    for path in record.installed_paths:
        digest = record.file_digests.get(path, "")
        click.echo(f"   → {path}  {digest[:12]}")
    for path in record.stale_paths:
        click.secho(f"   ⚠️  stale: {path}", fg="yellow")

    if entries:
        click.echo()
        click.secho("   History:", fg="white", bold=True)
        status_color = {"ok": "green", "noop": "white", "failed": "red"}
        for e in entries:
            click.echo(f"     {e.timestamp}  {e.operation_type:<9} {e.version:<10} ", nl=False)
            click.secho(e.status, fg=status_color.get(e.status, "white"))

    click.echo()
