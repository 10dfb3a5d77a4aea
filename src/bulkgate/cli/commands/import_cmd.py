"""Import command."""

import click
from bulkgate.cli.error_handling import handle_domain_error
from bulkgate.domain.entities import (
    ApprovalCategory,
    ApprovalState,
    CommitResult,
    ImportPreview,
    IssueSeverity,
    UpdateMode,
)
from bulkgate.domain.errors import DomainError
from bulkgate.domain.import_pipeline import ImportPipeline
from bulkgate.domain.settings import ImportSettings, load_synonyms
from bulkgate.utils.number_parser import strip_key_separators

NEW_CATEGORIES = (ApprovalCategory.NEW_ORGANIZATIONS, ApprovalCategory.NEW_ITEMS)
CHANGED_CATEGORIES = (ApprovalCategory.CHANGED_ORGANIZATIONS, ApprovalCategory.CHANGED_ITEMS)

CATEGORY_LABELS = {
    ApprovalCategory.NEW_ORGANIZATIONS: "New organizations",
    ApprovalCategory.CHANGED_ORGANIZATIONS: "Changed organizations",
    ApprovalCategory.NEW_ITEMS: "New items",
    ApprovalCategory.CHANGED_ITEMS: "Changed items",
}


def print_preview(preview: ImportPreview) -> None:
    """Print the classified sets and issues of a preview."""
    reconciliation = preview.reconciliation
    click.echo(f"\nPreview of {preview.filename} ({preview.total_rows} rows, batch {preview.batch_id}):")
    for category in ApprovalCategory:
        click.echo(f"  {CATEGORY_LABELS[category]}: {len(reconciliation.keys(category))}")
    click.echo(f"  Unchanged organizations: {len(reconciliation.unchanged_organizations)}")
    click.echo(f"  Unchanged items: {len(reconciliation.unchanged_items)}")
    if preview.mode == UpdateMode.FILL_ONLY:
        click.echo("  Mode: fill-only (only empty fields are filled)")

    for detail in reconciliation.changed_organizations + reconciliation.changed_items:
        click.echo(f"\n  {detail.incoming.entity_type} {detail.key}:")
        for change in detail.field_changes:
            click.echo(f"    {change.field}: {change.old!r} -> {change.new!r}")

    for severity in (IssueSeverity.ERROR, IssueSeverity.WARNING):
        issues = preview.issues_by_severity(severity)
        if not issues:
            continue
        click.echo(f"\n{severity.capitalize()}s: {len(issues)}")
        for issue in issues:
            click.echo(f"  [{issue.code}] {issue.message}")


def print_result(result: CommitResult) -> None:
    """Print the outcome of a commit."""
    click.echo(f"\nBatch {result.batch_id} {result.status}:")
    click.echo(f"  Inserted: {result.report.inserted}")
    click.echo(f"  Updated: {result.report.updated}")
    if result.snapshot_id:
        click.echo(f"  Backup snapshot: {result.snapshot_id}")
    for issue in result.issues:
        click.echo(f"  [{issue.code}] {issue.message}", err=True)
    if result.errors:
        click.echo(f"  Errors: {len(result.errors)}")
        for error in result.errors:
            click.echo(f"    {error}", err=True)


def find_categories(preview: ImportPreview, text: str) -> list[tuple[ApprovalCategory, object]]:
    """Return every (category, key) of the preview matching a key typed by the user."""
    candidates = {text.strip(), strip_key_separators(text)}
    matches = []
    for category in ApprovalCategory:
        for key in preview.reconciliation.keys(category):
            if str(key) in candidates:
                matches.append((category, key))
    return matches


def build_approval(
    pipeline: ImportPipeline,
    preview: ImportPreview,
    approve_all: bool,
    approve_new: bool,
    approve_changed: bool,
    approve: tuple[str, ...],
    reject: tuple[str, ...],
) -> ApprovalState:
    """Turn approval flags into an approval state.

    Category flags are applied first, then single keys, then rejections.
    """
    gate = pipeline.gate
    reconciliation = preview.reconciliation
    state = pipeline.initial_approval(preview, approved=approve_all)
    if approve_new:
        for category in NEW_CATEGORIES:
            state = gate.approve_all(state, reconciliation, category)
    if approve_changed:
        for category in CHANGED_CATEGORIES:
            state = gate.approve_all(state, reconciliation, category)

    for text, decision in [(key, True) for key in approve] + [(key, False) for key in reject]:
        matches = find_categories(preview, text)
        if not matches:
            click.echo(f"Warning: key '{text}' is not part of this import", err=True)
        for category, key in matches:
            state = gate.set_decision(state, category, key, decision)
    return state


@click.command("import")
@click.argument("file", type=click.Path(exists=True))
@click.option("--approve-all", is_flag=True, help="Approve every classified change")
@click.option("--approve-new", is_flag=True, help="Approve every new organization and item")
@click.option("--approve-changed", is_flag=True, help="Approve every changed organization and item")
@click.option("--approve", "approve", multiple=True, help="Approve one key (repeatable)")
@click.option("--reject", "reject", multiple=True, help="Reject one key (repeatable)")
@click.option("--fill-only", is_flag=True, help="Only fill fields that are empty in the store")
@click.option("--dry-run", is_flag=True, help="Show the preview without writing anything")
@click.option("--actor", help="Name recorded on the batch and audit entries")
@click.option("--synonyms", type=click.Path(exists=True), help="JSON file with header synonyms")
@click.pass_context
def import_file(
    ctx,
    file: str,
    approve_all: bool,
    approve_new: bool,
    approve_changed: bool,
    approve: tuple[str, ...],
    reject: tuple[str, ...],
    fill_only: bool,
    dry_run: bool,
    actor: str | None,
    synonyms: str | None,
):
    """Preview and import organizations and items from a CSV file."""
    db = ctx.obj["db"]

    try:
        settings = ImportSettings.from_env()
        if synonyms:
            settings = settings.with_synonyms(load_synonyms(synonyms))
        pipeline = ImportPipeline(db, settings)

        mode = UpdateMode.FILL_ONLY if fill_only else UpdateMode.MERGE
        preview = pipeline.begin_file(file, mode=mode)
        print_preview(preview)

        if dry_run:
            click.echo("\nDry run: nothing was written.")
            return

        state = build_approval(pipeline, preview, approve_all, approve_new, approve_changed, approve, reject)
        result = pipeline.commit(preview, state, actor=actor)
    except DomainError as e:
        handle_domain_error(ctx, e)
        return

    print_result(result)
    if not result.success:
        ctx.exit(1)


def register_commands(cli):
    """Register import command with main CLI."""
    cli.add_command(import_file)
