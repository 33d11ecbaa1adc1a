"""
Command Line Interface for the Cooperation Toolkit.
"""

import asyncio
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..errors import CooperationError
from ..logging_config import configure_logging

app = typer.Typer(help="Cooperation Toolkit - COOK issuance and governance")
console = Console()


@contextmanager
def session_scope() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


@app.callback()
def setup() -> None:
    configure_logging(get_settings())


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    dev: bool = typer.Option(False, help="Run in development mode with reload"),
):
    """Start the API server."""
    settings = get_settings()
    rprint(Panel.fit("Starting Cooperation Toolkit API", style="bold blue"))
    uvicorn.run(
        "cooperation_toolkit.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create all database tables."""
    asyncio.run(init_database())
    console.print("✅ Database initialized")


@app.command("process-events")
def process_events(
    limit: Optional[int] = typer.Option(None, help="Maximum events to dispatch"),
    requeue_failed: bool = typer.Option(False, help="Requeue failed events first"),
):
    """Dispatch pending outbox events."""
    from ..events.dispatcher import OutboxDispatcher
    from ..events.outbox import OutboxService

    async def run(db: Session):
        async with OutboxDispatcher(db) as dispatcher:
            return await dispatcher.process_pending(limit)

    with session_scope() as db:
        if requeue_failed:
            count = OutboxService(db).requeue_failed()
            console.print(f"Requeued {count} failed event(s)")
        stats = asyncio.run(run(db))

    table = Table(title="Outbox", show_header=True, header_style="bold magenta")
    table.add_column("Claimed", style="cyan")
    table.add_column("Completed", style="green")
    table.add_column("Failed", style="red")
    table.add_row(str(stats["claimed"]), str(stats["completed"]), str(stats["failed"]))
    console.print(table)


@app.command("process-sync-queue")
def process_sync_queue(
    limit: Optional[int] = typer.Option(None, help="Maximum queue items to retry"),
):
    """Retry queued board operations."""
    from ..sync.board import get_board
    from ..sync.reconciler import SyncReconciler

    settings = get_settings()

    async def run(db: Session):
        board = get_board()
        try:
            return await SyncReconciler(db, board).process_queue(limit or settings.sync_batch_size)
        finally:
            await board.close()

    with session_scope() as db:
        stats = asyncio.run(run(db))
    console.print(
        f"Processed {stats['processed']}: {stats['succeeded']} succeeded, "
        f"{stats['retried']} rescheduled, {stats['dropped']} dropped"
    )


@app.command("close-expired")
def close_expired(
    team_id: str = typer.Argument(..., help="Team to close expired windows and votings for"),
):
    """Close expired objection windows and votings."""
    from ..governance.proposals import ProposalService
    from ..governance.voting import VotingService

    with session_scope() as db:
        proposals = ProposalService(db).close_expired_windows(team_id)
        votings = VotingService(db).close_expired_votings(team_id)

        for proposal in proposals:
            console.print(f"✅ Proposal {proposal.id} adopted: {proposal.title}")
        for voting in votings:
            console.print(
                f"🗳️  Voting {voting.id} completed, winner: {voting.winning_option or '-'}"
            )
    if not proposals and not votings:
        console.print("Nothing to close")


@app.command()
def ledger(
    team_id: str = typer.Argument(..., help="Team id"),
    contributor_id: Optional[str] = typer.Option(None, help="Only this contributor"),
    limit: Optional[int] = typer.Option(None, help="Maximum entries to show"),
):
    """Show ledger entries."""
    from ..ledger.services import LedgerService

    with session_scope() as db:
        entries = LedgerService(db).list_entries(team_id, contributor_id=contributor_id, limit=limit)
        if not entries:
            console.print("No ledger entries")
            return

        table = Table(title=f"COOK Ledger ({team_id})", show_header=True, header_style="bold cyan")
        table.add_column("Issued", style="yellow")
        table.add_column("Contributor", style="green")
        table.add_column("Task")
        table.add_column("COOK", justify="right", style="magenta")
        table.add_column("Attribution")
        for entry in entries:
            data = entry.to_dict()
            table.add_row(
                data["issued_at"],
                entry.contributor_id,
                entry.task_id,
                f"{entry.cook_value:.2f}",
                entry.attribution,
            )
        console.print(table)


@app.command()
def weights(
    team_id: str = typer.Argument(..., help="Team id"),
    recompute: bool = typer.Option(False, help="Recompute from the ledger first"),
):
    """Show governance weights."""
    from ..governance.weight import GovernanceWeightService

    with session_scope() as db:
        service = GovernanceWeightService(db)
        if recompute:
            service.recompute_team(team_id)
        rows = service.list_weights(team_id)
        if not rows:
            console.print("No governance weights")
            return

        table = Table(title=f"Governance Weight ({team_id})", show_header=True, header_style="bold cyan")
        table.add_column("Contributor", style="green")
        table.add_column("Raw COOK", justify="right")
        table.add_column("Weight", justify="right", style="magenta")
        for row in rows:
            table.add_row(row.contributor_id, f"{row.raw_cook:.2f}", f"{row.weight:.2f}")
        console.print(table)


@app.command("select-committee")
def select_committee(
    team_id: str = typer.Argument(..., help="Team id"),
    name: str = typer.Argument(..., help="Committee name"),
    seats: int = typer.Option(..., help="Number of seats to fill"),
    actor: str = typer.Option(..., help="Steward running the lottery"),
    seed: Optional[str] = typer.Option(None, help="Lottery seed (defaults to now)"),
):
    """Seat a committee by COOK-weighted lottery."""
    from ..governance.committees import CommitteeService

    with session_scope() as db:
        committee = CommitteeService(db).select(team_id, name, seats, actor, seed=seed)
        data = committee.to_dict()

    table = Table(
        title=f"{data['committee_name']} ({data['id']})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Contributor", style="green")
    table.add_column("Active COOK", justify="right")
    table.add_column("Draw", justify="right")
    table.add_column("Selected")
    for detail in data["selection_details"]:
        table.add_row(
            detail["contributor_id"],
            f"{detail['active_cook']:.2f}",
            f"{detail['random_value']:.4f}" if detail["selected"] else "-",
            "✅" if detail["selected"] else "",
        )
    console.print(table)
    console.print(f"Seed: {data['lottery_seed']}  Total weight: {data['total_weight']:.2f}")


@app.command("verify-chain")
def verify_chain(
    contributor_id: str = typer.Argument(..., help="Contributor whose attestation chain to verify"),
    compute: bool = typer.Option(False, help="Fill pending hashes before verifying"),
):
    """Verify a contributor's attestation hash chain."""
    from ..ledger.attestations import AttestationService

    with session_scope() as db:
        service = AttestationService(db)
        if compute:
            service.compute_pending_hashes(contributor_id)
        result = service.verify_chain(contributor_id)

    if result["valid"]:
        console.print(f"✅ Chain of {result['length']} attestation(s) is valid")
        return

    table = Table(title="Chain Problems", show_header=True, header_style="bold red")
    table.add_column("Position", justify="right")
    table.add_column("Attestation")
    table.add_column("Problem", style="red")
    for problem in result["problems"]:
        table.add_row(str(problem["position"]), problem["attestation_id"], problem["problem"])
    console.print(table)
    raise typer.Exit(code=1)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Cooperation Toolkit v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    try:
        app()
    except CooperationError as e:
        console.print(f"❌ {e.code}: {e.message}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
