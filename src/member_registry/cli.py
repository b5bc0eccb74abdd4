"""
Member Registry CLI - administrative command-line interface.

Inspect, audit and maintain the member registry from the terminal.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from member_registry import __version__
from member_registry.config import RegistryConfig
from member_registry.core.exceptions import MemberRegistryError, format_exception
from member_registry.core.models import LoadReport
from member_registry.registry.codec import CredentialCodec
from member_registry.registry.coordinator import MemberRegistry

app = typer.Typer(
    name="member-registry",
    help="Member Registry - linked identity store with encrypted persistence",
    no_args_is_help=True,
)
console = Console()


def _configure() -> MemberRegistry:
    """Read configuration and build an unloaded registry, exiting on failure."""
    try:
        config = RegistryConfig.from_env()
    except MemberRegistryError as e:
        console.print(f"[red]{escape(format_exception(e))}[/red]")
        raise typer.Exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return config.create_registry()


def _report_load(report: LoadReport) -> None:
    if report.anomalies:
        status = "repaired" if report.repaired else "NOT repaired"
        console.print(
            f"[yellow]{len(report.anomalies)} duplicate record(s) dropped during load "
            f"({status})[/yellow]"
        )


def _open_registry() -> MemberRegistry:
    """Load the configured registry for read-only commands."""
    registry = _configure()
    try:
        report = asyncio.run(registry.load())
    except MemberRegistryError as e:
        console.print(f"[red]{escape(format_exception(e))}[/red]")
        raise typer.Exit(1)
    _report_load(report)
    return registry


def _run_mutation(operation: Callable[[MemberRegistry], Awaitable[None]]) -> None:
    """Load the registry and apply one mutation in a single event loop."""
    registry = _configure()

    async def run() -> None:
        _report_load(await registry.load())
        await operation(registry)

    try:
        asyncio.run(run())
    except MemberRegistryError as e:
        console.print(f"[red]{escape(format_exception(e))}[/red]")
        raise typer.Exit(1)


@app.command("generate-key")
def generate_key():
    """Print a new random encryption key for MR_ENCRYPTION_KEY."""
    console.print(CredentialCodec.generate_key())


@app.command("list")
def list_members(
    include_inactive: bool = typer.Option(
        False, "--all", "-a", help="Include deactivated members"
    ),
):
    """List registered members."""
    registry = _open_registry()
    members = registry.list_all() if include_inactive else registry.list_active()

    table = Table(title=f"Registered Members ({len(members)})")
    table.add_column("Subject", style="cyan")
    table.add_column("External Account", style="magenta")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Registered")

    for member in members:
        status_style = "green" if member.is_active else "red"
        status = "active" if member.is_active else "inactive"
        table.add_row(
            member.subject_id,
            member.external_account_id,
            member.display_name,
            f"[{status_style}]{status}[/{status_style}]",
            member.registered_at[:16].replace("T", " "),
        )

    console.print(table)


@app.command()
def show(subject_id: str = typer.Argument(..., help="Subject id of the member")):
    """Show one member. Credentials are never printed."""
    registry = _open_registry()
    member = registry.get_by_subject(subject_id)
    if member is None:
        console.print(f"[red]Member with subject {subject_id} not found[/red]")
        raise typer.Exit(1)

    lines = [f"[bold]{key}:[/bold] {value}" for key, value in member.to_summary().items()]
    lines.append(f"[bold]last_credential_refresh:[/bold] {member.last_credential_refresh}")
    lines.append(f"[bold]token_expires_at:[/bold] {member.credentials.expires_at}")
    console.print(Panel.fit("\n".join(lines), title=f"Member {member.subject_id}"))


@app.command()
def audit():
    """Check registry consistency. Exits with 1 if inconsistent."""
    registry = _open_registry()
    report = registry.audit()

    console.print(
        Panel.fit(
            f"Members: {report.member_count}\n"
            f"Mappings: {report.mapping_count}\n"
            f"Errors: {len(report.errors)}",
            title="Consistency Audit",
        )
    )

    if report.is_consistent:
        console.print("[green]Registry is consistent[/green]")
        return

    table = Table(title="Consistency Errors")
    table.add_column("Kind", style="red")
    table.add_column("Subject", style="cyan")
    table.add_column("External Account", style="magenta")
    table.add_column("Reason")
    for issue in report.errors:
        table.add_row(issue.kind.value, issue.subject_id, issue.external_account_id, issue.reason)
    console.print(table)
    raise typer.Exit(1)


@app.command()
def stats():
    """Show member statistics."""
    registry = _open_registry()
    member_stats = registry.stats()

    table = Table(title="Member Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total", str(member_stats.total))
    table.add_row("Active", str(member_stats.active))
    table.add_row("Inactive", str(member_stats.inactive))
    table.add_row("Registered in last 7 days", str(member_stats.recent_registrations))
    console.print(table)


@app.command()
def deactivate(subject_id: str = typer.Argument(..., help="Subject id of the member")):
    """Deactivate a member and unlink its external account."""
    _run_mutation(lambda registry: registry.deactivate(subject_id))
    console.print(f"[green]Deactivated member {subject_id}[/green]")


@app.command()
def reactivate(subject_id: str = typer.Argument(..., help="Subject id of the member")):
    """Reactivate a previously deactivated member."""
    _run_mutation(lambda registry: registry.reactivate(subject_id))
    console.print(f"[green]Reactivated member {subject_id}[/green]")


@app.command()
def remove(
    subject_id: str = typer.Argument(..., help="Subject id of the member"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Permanently remove a member."""
    if not yes and not typer.confirm(f"Remove member {subject_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(1)
    _run_mutation(lambda registry: registry.remove(subject_id))
    console.print(f"[green]Removed member {subject_id}[/green]")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold blue]Member Registry[/bold blue] version {__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
