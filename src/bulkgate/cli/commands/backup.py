"""Backup snapshot commands."""

import click
from bulkgate.cli.error_handling import handle_domain_error
from bulkgate.domain import errors
from bulkgate.domain.backup import BackupService
from bulkgate.domain.errors import DomainError, NotFoundError
from bulkgate.domain.settings import ImportSettings


@click.group()
def backup_group():
    """Inspect and restore backup snapshots."""
    pass


@backup_group.command("show")
@click.argument("snapshot_id")
@click.pass_context
def show_snapshot(ctx, snapshot_id: str):
    """Show a snapshot and the records it holds.

    SNAPSHOT_ID may also be the ID of the batch the snapshot was taken for.
    """
    db = ctx.obj["db"]
    service = BackupService(db)

    snapshot = service.get_snapshot(snapshot_id) or service.get_snapshot_for_batch(snapshot_id)
    if snapshot is None:
        handle_domain_error(ctx, NotFoundError(errors.snapshot_not_found(snapshot_id)))
        return

    click.echo(f"Snapshot {snapshot.id} ({snapshot.snapshot_type})")
    click.echo(f"  Batch: {snapshot.batch_id}")
    click.echo(f"  Created by: {snapshot.created_by} at {snapshot.created_at:%Y-%m-%d %H:%M:%S}")
    click.echo(f"  Organizations: {snapshot.organizations_backed_up}")
    click.echo(f"  Items: {snapshot.items_backed_up}")
    for record in service.list_snapshot_records(snapshot.id):
        click.echo(f"    {record.entity_type} {record.entity_key}")


@backup_group.command("restore")
@click.argument("snapshot_id")
@click.option("--actor", help="Name recorded on the restore audit entries")
@click.pass_context
def restore_snapshot(ctx, snapshot_id: str, actor: str | None):
    """Write the records of a snapshot back over the current records."""
    db = ctx.obj["db"]

    try:
        settings = ImportSettings.from_env()
        service = BackupService(db, settings)
        result = service.restore_snapshot(snapshot_id, actor=actor or settings.actor)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Restore of snapshot {snapshot_id} {result.status}:")
    click.echo(f"  Organizations restored: {result.organizations_restored}")
    click.echo(f"  Items restored: {result.items_restored}")
    for error in result.errors:
        click.echo(f"  {error}", err=True)
    if not result.success:
        ctx.exit(1)


def register_commands(cli):
    """Register backup commands with main CLI."""
    cli.add_command(backup_group, name="backup")
