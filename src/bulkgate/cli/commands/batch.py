"""Batch inspection commands."""

import click
from bulkgate.cli.error_handling import handle_domain_error
from bulkgate.domain.backup import BackupService
from bulkgate.domain.errors import DomainError
from bulkgate.domain.import_pipeline import ImportPipeline


@click.group()
def batch_group():
    """Inspect import batches."""
    pass


@batch_group.command("show")
@click.argument("batch_id")
@click.pass_context
def show_batch(ctx, batch_id: str):
    """Show the status and counters of a batch."""
    db = ctx.obj["db"]
    pipeline = ImportPipeline(db)

    try:
        batch = pipeline.get_batch(batch_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    snapshot = BackupService(db).get_snapshot_for_batch(batch_id)
    click.echo(f"Batch {batch.id}")
    click.echo(f"  File: {batch.filename} ({batch.file_size} bytes, {batch.total_records} rows)")
    click.echo(f"  Status: {batch.status}")
    click.echo(f"  Uploaded by: {batch.uploaded_by} at {batch.created_at:%Y-%m-%d %H:%M:%S}")
    click.echo(f"  Processed: {batch.processed_records}")
    click.echo(f"  New: {batch.new_records}")
    click.echo(f"  Updated: {batch.updated_records}")
    click.echo(f"  Errors: {batch.error_records}")
    if batch.processing_time_ms is not None:
        click.echo(f"  Processing time: {batch.processing_time_ms} ms")
    if snapshot is not None:
        click.echo(f"  Backup snapshot: {snapshot.id}")
    for error in batch.error_summary:
        click.echo(f"  [{error.get('code')}] {error.get('message')}")


@batch_group.command("audit")
@click.argument("batch_id")
@click.pass_context
def show_audit(ctx, batch_id: str):
    """List the audit entries written by a batch."""
    db = ctx.obj["db"]
    pipeline = ImportPipeline(db)

    try:
        pipeline.get_batch(batch_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    entries = pipeline.list_audit_entries(batch_id)
    if not entries:
        click.echo(f"No audit entries for batch {batch_id}.")
        return

    click.echo(f"\nAudit entries for batch {batch_id}:")
    for entry in entries:
        fields = f" [{', '.join(entry.changed_fields)}]" if entry.changed_fields else ""
        click.echo(
            f"  {entry.performed_at:%Y-%m-%d %H:%M:%S} {entry.operation:<7} "
            f"{entry.entity_type} {entry.entity_key}{fields} by {entry.actor}"
        )


def register_commands(cli):
    """Register batch commands with main CLI."""
    cli.add_command(batch_group, name="batch")
