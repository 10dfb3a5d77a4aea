"""CLI error handling helpers."""

import click

from bulkgate.domain.errors import DomainError


def handle_domain_error(ctx: click.Context, error: DomainError | ValueError) -> None:
    """Render a domain error with its code and exit with failure."""
    if isinstance(error, DomainError):
        click.echo(f"Error: [{error.code}] {error.message}", err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    ctx.exit(1)
