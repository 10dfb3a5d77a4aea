"""Main CLI entry point."""

import logging

import click
from bulkgate.database.factories import create_database
from bulkgate.utils.logging import configure_logging

# Import and register all commands at module level
from bulkgate.cli.commands import (
    backup,
    batch,
    import_cmd,
)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Database file path or SQLAlchemy URL (overrides BULKGATE_DB_PATH environment variable)",
    envvar="BULKGATE_DB_PATH",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, db_path: str | None, verbose: bool):
    """Bulkgate - Approval-gated bulk import.

    Import organizations and items from a spreadsheet export, review what
    would change, and commit only the approved part with a backup snapshot
    and an audit trail.
    """
    ctx.ensure_object(dict)
    configure_logging(level=logging.DEBUG if verbose else logging.WARNING)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        try:
            db = create_database(db_path)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--db-path")
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.call_on_close(db.disconnect)


# Register all commands
import_cmd.register_commands(cli)
batch.register_commands(cli)
backup.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
