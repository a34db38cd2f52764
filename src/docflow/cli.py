"""
docflow CLI - operator commands for the documentation pipeline.

Runs the batch processor, maintains the LLM cache and manages proposal
review and changeset batches.
"""

import logging
import time
from typing import NoReturn, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from docflow.exceptions import DocflowError
from docflow.logging_config import setup_logging

app = typer.Typer(
    name="docflow",
    help="docflow - turn community conversations into documentation updates",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    try:
        setup_logging(context="cli")
    except PermissionError:
        logging.basicConfig(level=logging.INFO)


def _session():
    from docflow.db.connection import db_session

    return db_session()


def _cache():
    from docflow.llm.cache import create_cache_from_settings

    return create_cache_from_settings()


def _processor():
    from docflow.processing.processor import BatchMessageProcessor

    return BatchMessageProcessor.from_settings()


def _fail(error: Exception) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


@app.command()
def process(
    stream: Optional[str] = typer.Option(None, help="Only process this stream"),
) -> None:
    """
    Process pending messages once.

    Runs every pending batch through the pipeline and stores the results.
    """
    _init_logging()
    try:
        result = _processor().process_batch(stream_id=stream)
    except DocflowError as e:
        _fail(e)

    console.print("[bold]Summary:[/bold]")
    console.print(f"  Batches: {len(result.batches)}")
    console.print(f"  Messages processed: {result.messages_processed}")
    console.print(f"  Proposals created: {result.proposals_created}")
    if result.errors:
        console.print(f"  [red]Errors: {len(result.errors)}[/red]")
        for error in result.errors:
            console.print(f"    [red]✗[/red] {error}")
        raise typer.Exit(1)


@app.command()
def scheduler(
    interval: Optional[float] = typer.Option(
        None, help="Seconds between runs (default from settings)"
    ),
) -> None:
    """Run the batch processor on a fixed interval until interrupted."""
    from docflow.processing.scheduler import Scheduler

    _init_logging()
    runner = Scheduler(_processor(), interval_seconds=interval)
    console.print(
        f"[bold green]Starting scheduler[/bold green] (every {runner.interval_seconds}s)"
    )
    runner.start()
    try:
        while runner.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
    finally:
        runner.stop()
    stats = runner.stats()
    console.print(
        f"  Runs: {stats['runs']}  Skipped: {stats['skipped']}  Failures: {stats['failures']}"
    )


@app.command("cache-stats")
def cache_stats() -> None:
    """Show LLM cache entry counts and sizes per purpose."""
    stats = _cache().stats()

    table = Table(title="LLM cache")
    table.add_column("Purpose")
    table.add_column("Entries", justify="right")
    table.add_column("Size (KB)", justify="right")
    total_count = 0
    total_bytes = 0
    for purpose, purpose_stats in stats.items():
        table.add_row(purpose, str(purpose_stats.count), f"{purpose_stats.size_bytes / 1024:.1f}")
        total_count += purpose_stats.count
        total_bytes += purpose_stats.size_bytes
    table.add_row("[bold]total[/bold]", str(total_count), f"{total_bytes / 1024:.1f}")
    console.print(table)


@app.command("cache-purge")
def cache_purge(
    purpose: Optional[str] = typer.Option(
        None, help="Purpose to purge (classification, generation, ...) or 'all'"
    ),
    older_than_days: Optional[int] = typer.Option(
        None, help="Only purge entries older than this many days"
    ),
) -> None:
    """Remove LLM cache entries."""
    from docflow.processing.admin import purge_cache
    from docflow.schemas import CachePurgeRequest

    try:
        request = CachePurgeRequest(purpose=purpose, older_than_days=older_than_days)
    except ValidationError as e:
        _fail(e)

    removed = purge_cache(
        _cache(), purpose=request.purpose_filter, older_than_days=request.older_than_days
    )
    console.print(f"[green]✓ Removed {removed} cache entries[/green]")


@app.command()
def reprocess() -> None:
    """Re-run post-processing over stored proposals."""
    from docflow.processing.admin import reprocess_proposals

    _init_logging()
    with _session() as session:
        result = reprocess_proposals(session)

    console.print(f"  Processed: {result.processed}")
    console.print(f"  Modified: {result.modified}")
    if result.errors:
        for proposal_id, error in result.errors:
            console.print(f"  [red]✗[/red] proposal {proposal_id}: {error}")
        raise typer.Exit(1)


@app.command("clear-processed")
def clear_processed_command(
    stream: Optional[str] = typer.Option(None, help="Only clear this stream"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Revert processed messages to pending.

    Deletes classifications, RAG contexts and unsubmitted proposals, resets
    the watermark and purges the LLM cache.
    """
    from docflow.processing.admin import clear_processed

    if not yes:
        typer.confirm("This deletes all processing results. Continue?", abort=True)

    _init_logging()
    with _session() as session:
        result = clear_processed(session, cache=_cache(), stream_id=stream)

    console.print("[green]✓ Cleared processed data[/green]")
    console.print(f"  Messages reset: {result.messages_reset}")
    console.print(f"  Classifications deleted: {result.classifications_deleted}")
    console.print(f"  RAG contexts deleted: {result.rag_contexts_deleted}")
    console.print(f"  Proposals deleted: {result.proposals_deleted}")
    console.print(f"  Watermarks reset: {result.watermarks_reset}")
    console.print(f"  Cache entries purged: {result.cache_entries_purged}")


@app.command("batch-create")
def batch_create(
    proposal_ids: list[int] = typer.Argument(..., help="Approved proposal ids"),
) -> None:
    """Create a draft changeset batch from approved proposals."""
    from docflow.schemas import BatchCreateRequest
    from docflow.services.changesets import ChangesetService

    try:
        request = BatchCreateRequest(proposal_ids=proposal_ids)
        with _session() as session:
            batch = ChangesetService(session).create_draft_batch(request.proposal_ids)
            batch_id = batch.batch_id
            files = list(batch.affected_files)
    except (DocflowError, ValidationError) as e:
        _fail(e)

    console.print(f"[green]✓ Created draft batch {batch_id}[/green]")
    for path in files:
        console.print(f"  {path}")


@app.command("batch-delete")
def batch_delete(batch_id: str = typer.Argument(..., help="Batch id")) -> None:
    """Delete a draft changeset batch."""
    from docflow.services.changesets import ChangesetService

    try:
        with _session() as session:
            ChangesetService(session).delete_draft_batch(batch_id)
    except DocflowError as e:
        _fail(e)
    console.print(f"[green]✓ Deleted batch {batch_id}[/green]")


@app.command("batch-list")
def batch_list(
    status: Optional[str] = typer.Option(None, help="draft, submitted, merged or closed"),
) -> None:
    """List changeset batches, newest first."""
    from docflow.models.db import BatchStatus
    from docflow.services.changesets import ChangesetService

    try:
        status_filter = BatchStatus(status) if status else None
    except ValueError as e:
        _fail(e)

    table = Table(title="Changeset batches")
    table.add_column("Batch")
    table.add_column("Status")
    table.add_column("Proposals", justify="right")
    table.add_column("PR")
    with _session() as session:
        for batch in ChangesetService(session).list_batches(status_filter):
            table.add_row(
                batch.batch_id,
                BatchStatus(batch.status).value,
                str(batch.total_proposals),
                batch.pr_url or "",
            )
    console.print(table)


@app.command("pr-submit")
def pr_submit(
    proposal_ids: list[int] = typer.Argument(..., help="Approved proposal ids"),
    target_repo: str = typer.Option(..., help="Repository to open the PR on (owner/name)"),
    source_repo: str = typer.Option(..., help="Repository the documentation comes from"),
    title: str = typer.Option(..., help="Pull request title"),
    submitted_by: str = typer.Option(..., "--by", help="Submitting operator"),
    body: str = typer.Option("", help="Pull request description"),
    base_branch: str = typer.Option("main", help="Branch to open the PR against"),
) -> None:
    """Batch approved proposals and open a draft pull request."""
    from docflow.schemas import PRGenerateRequest
    from docflow.services.changesets import ChangesetService

    _init_logging()
    try:
        request = PRGenerateRequest(
            proposal_ids=proposal_ids,
            target_repo=target_repo,
            source_repo=source_repo,
            base_branch=base_branch,
            pr_title=title,
            pr_body=body,
            submitted_by=submitted_by,
        )
        with _session() as session:
            result = ChangesetService(session).submit(request)
            pr_url = result.pr.url
            applied = list(result.applied)
            failed = list(result.failed)
    except (DocflowError, ValidationError) as e:
        _fail(e)

    console.print(f"[green]✓ Opened draft PR {pr_url}[/green]")
    console.print(f"  Applied: {len(applied)}")
    for failure in failed:
        console.print(
            f"  [red]✗[/red] proposal {failure.proposal_id} ({failure.failure_type}): {failure.error}"
        )


@app.command()
def review(
    proposal_id: int = typer.Argument(..., help="Proposal id"),
    status: str = typer.Argument(..., help="pending, approved or ignored"),
    reviewed_by: str = typer.Option(..., "--by", help="Reviewer identity"),
) -> None:
    """Change a proposal's review status."""
    from docflow.schemas import ProposalStatusUpdate
    from docflow.services.proposals import ProposalService

    try:
        update = ProposalStatusUpdate(status=status, reviewed_by=reviewed_by)
        with _session() as session:
            result = ProposalService(session).transition(proposal_id, update)
            new_status = result.proposal.status.value
            conversation_status = result.conversation_status.value
    except (DocflowError, ValidationError) as e:
        _fail(e)

    console.print(f"[green]✓ Proposal {proposal_id} is now {new_status}[/green]")
    console.print(f"  Conversation status: {conversation_status}")


if __name__ == "__main__":
    app()
