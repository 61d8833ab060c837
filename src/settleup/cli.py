"""CLI for SettleUp using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .db import Database, new_id
from .exceptions import ConfigurationError
from .models import (
    EntryStatus,
    Member,
    NetTransfer,
    Payment,
    RecurringRule,
    SettlementEntry,
    SplitType,
)
from .service import SettlementService
from .split import calculate_equal_split, calculate_proxy_split
from .ui import confirm_action, prompt_entry_amount, select_payer_interactive

app = typer.Typer(
    name="settleup",
    help="Split shared household costs and settle balances with minimal transfers",
)

console = Console()

DATE_FORMATS = ["%Y-%m-%d"]

UserOption = typer.Option(None, "--user", "-u", help="Acting user id")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@contextmanager
def open_service(verbose: bool) -> Iterator[tuple[Settings, SettlementService]]:
    """Load settings, open the database, and report errors uniformly."""
    db = None
    try:
        settings = load_settings()
        setup_logging(verbose, settings.log_level.upper())
        db = Database(settings.database_path)
        yield settings, SettlementService(db)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def resolve_user(user: str | None, settings: Settings) -> str:
    """Pick the acting user from --user or the configured default."""
    resolved = user or settings.default_user_id
    if not resolved:
        raise ConfigurationError(
            "No acting user. Pass --user or set SETTLEUP_DEFAULT_USER_ID."
        )
    return resolved


def format_money(amount: int, use_color: bool = True) -> str:
    """
    Format an integer amount with thousands separators.

    Negative amounts use parentheses: (1,200)
    """
    if amount < 0:
        formatted = f"({abs(amount):,})"
        return f"[red]{formatted}[/red]" if use_color else formatted
    formatted = f" {amount:,} "
    return f"[green]{formatted}[/green]" if use_color else formatted


def display_transfers(transfers: list[NetTransfer], title: str, currency: str):
    """Display transfer instructions as a table."""
    if not transfers:
        console.print("[green]✓ Nothing to settle[/green]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column(f"Amount ({currency})", justify="right")
    for t in transfers:
        table.add_row(t.from_name, t.to_name, format_money(t.amount))
    console.print(table)


def display_entries(entries: list[SettlementEntry], members: list[Member], currency: str):
    """Display the entries of a session as a table."""
    names = {m.id: m.display_name for m in members}
    status_style = {
        EntryStatus.PENDING: "yellow",
        EntryStatus.FILLED: "green",
        EntryStatus.SKIPPED: "dim",
    }

    table = Table(title="Settlement Entries", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=8)
    table.add_column("Date")
    table.add_column("Description", style="cyan", width=30)
    table.add_column("Source")
    table.add_column("Payer")
    table.add_column(f"Expected ({currency})", justify="right")
    table.add_column(f"Actual ({currency})", justify="right")
    table.add_column("Status")

    for e in entries:
        desc = e.description
        table.add_row(
            (e.id or "")[:8],
            str(e.payment_date),
            desc[:30] + "..." if len(desc) > 30 else desc,
            e.source_type.value,
            names.get(e.payer_id, e.payer_id),
            format_money(e.expected_amount) if e.expected_amount is not None else "-",
            format_money(e.actual_amount) if e.actual_amount is not None else "-",
            f"[{status_style[e.status]}]{e.status.value}[/{status_style[e.status]}]",
        )
    console.print(table)


# ============================================================================
# Group data
# ============================================================================


@app.command("add-member")
def add_member(
    group_id: str = typer.Argument(..., help="Group id"),
    user_id: str = typer.Argument(..., help="Member user id"),
    name: str = typer.Argument(..., help="Display name"),
    verbose: bool = VerboseOption,
):
    """Add a member to a group."""
    with open_service(verbose) as (_, service):
        service.db.add_member(group_id, Member(id=user_id, display_name=name))
        console.print(f"[green]✓ Added {name} to {group_id}[/green]")


@app.command("add-payment")
def add_payment(
    group_id: str = typer.Argument(..., help="Group id"),
    amount: int = typer.Argument(..., min=0, help="Amount in smallest currency unit"),
    description: str = typer.Option("", "--description", "-d"),
    payer: str | None = typer.Option(None, "--payer", help="Payer id (default: acting user)"),
    on: datetime | None = typer.Option(None, "--date", formats=DATE_FORMATS),
    beneficiary: str | None = typer.Option(
        None, "--for", help="Proxy purchase: the member who owes everything"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Log a payment, split equally or on behalf of one member."""
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        payer_id = payer or acting_user
        member_ids = [m.id for m in service.db.list_members(group_id)]
        if acting_user not in member_ids or payer_id not in member_ids:
            raise ConfigurationError(f"Both user and payer must be members of {group_id}")

        payment_id = new_id()
        if beneficiary:
            split_type = SplitType.PROXY
            splits = calculate_proxy_split(
                payment_id, amount, payer_id, beneficiary, member_ids
            )
        else:
            split_type = SplitType.EQUAL
            splits = calculate_equal_split(payment_id, amount, member_ids, payer_id)

        service.db.save_payment(
            Payment(
                id=payment_id,
                group_id=group_id,
                payer_id=payer_id,
                amount=amount,
                payment_date=on.date() if on else datetime.now().date(),
                description=description,
                split_type=split_type,
                splits=splits,
            )
        )
        console.print(f"[green]✓ Logged payment {payment_id[:8]}[/green]")


@app.command("add-rule")
def add_rule(
    group_id: str = typer.Argument(..., help="Group id"),
    description: str = typer.Argument(..., help="What the charge is"),
    day: int = typer.Option(..., "--day", min=1, max=31, help="Day of month"),
    amount: int | None = typer.Option(None, "--amount", min=0, help="Default amount"),
    interval: int = typer.Option(1, "--every", min=1, max=12, help="Interval in months"),
    payer: str | None = typer.Option(None, "--payer", help="Default payer id"),
    start: datetime | None = typer.Option(None, "--start", formats=DATE_FORMATS),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Register a recurring charge."""
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        payer_id = payer or acting_user
        member_ids = [m.id for m in service.db.list_members(group_id)]
        if acting_user not in member_ids or payer_id not in member_ids:
            raise ConfigurationError(f"Both user and payer must be members of {group_id}")

        rule = RecurringRule(
            id=new_id(),
            group_id=group_id,
            description=description,
            day_of_month=day,
            default_payer_id=payer_id,
            is_variable=amount is None,
            default_amount=amount,
            interval_months=interval,
            start_date=start.date() if start else datetime.now().date(),
        )
        service.db.save_recurring_rule(rule)
        console.print(f"[green]✓ Added rule {rule.id[:8]}: {description}[/green]")


# ============================================================================
# Settlement workflow
# ============================================================================


@app.command()
def suggest(
    group_id: str = typer.Argument(..., help="Group id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Suggest the period of the next settlement."""
    with open_service(verbose) as (settings, service):
        suggestion = service.suggest_period(group_id, resolve_user(user, settings))
        console.print("\n[bold]Suggested period:[/bold]")
        console.print(f"  {suggestion.suggested_start} → {suggestion.suggested_end}")
        console.print(f"  Unsettled payments: {suggestion.unsettled_count}")
        if suggestion.last_confirmed_end:
            console.print(f"  Last settlement ended: {suggestion.last_confirmed_end}")


@app.command()
def draft(
    group_id: str = typer.Argument(..., help="Group id"),
    start: datetime | None = typer.Option(None, "--start", formats=DATE_FORMATS),
    end: datetime | None = typer.Option(None, "--end", formats=DATE_FORMATS),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """
    Open a draft settlement.

    Without --start/--end the suggested period is used.
    """
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        suggestion = service.suggest_period(group_id, acting_user)
        period_start = start.date() if start else suggestion.suggested_start
        period_end = end.date() if end else suggestion.suggested_end

        session, added = service.create_draft(
            group_id, period_start, period_end, acting_user
        )
        console.print(
            f"\n[bold green]✓ Draft {session.id} created[/bold green] "
            f"({period_start} → {period_end}, {added} entries)"
        )
        console.print(
            f"\n[bold]Fill pending entries with:[/bold]\n"
            f"  [cyan]settleup fill {session.id}[/cyan]\n"
        )


@app.command()
def refresh(
    session_id: str = typer.Argument(..., help="Draft session id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Re-sync a draft with the latest payments and recurring rules."""
    with open_service(verbose) as (settings, service):
        added = service.refresh(session_id, resolve_user(user, settings))
        console.print(f"[green]✓ Refreshed, {added} new entries[/green]")


@app.command()
def entries(
    session_id: str = typer.Argument(..., help="Session id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show the entries of a session."""
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        session = service.get_session(session_id, acting_user)
        console.print(
            f"\n[bold]Session {session.id}[/bold] "
            f"({session.period_start} → {session.period_end}, {session.status.value})\n"
        )
        display_entries(
            service.list_entries(session_id, acting_user),
            service.db.list_members(session.group_id),
            settings.currency_code,
        )
        if session.net_transfers:
            display_transfers(session.net_transfers, "Transfers", settings.currency_code)


@app.command()
def fill(
    session_id: str = typer.Argument(..., help="Draft session id"),
    change_payer: bool = typer.Option(
        False, "--change-payer", "-p", help="Also ask who paid each entry"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Interactively fill or skip the pending entries of a draft."""
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        session = service.get_session(session_id, acting_user)
        members = service.db.list_members(session.group_id)
        names = {m.id: m.display_name for m in members}
        pending = [
            e
            for e in service.list_entries(session_id, acting_user)
            if e.status == EntryStatus.PENDING and e.id is not None
        ]
        if not pending:
            console.print("[green]✓ No pending entries[/green]")
            return

        filled = 0
        for entry in pending:
            answer = prompt_entry_amount(entry, names.get(entry.payer_id, entry.payer_id))
            if answer is None:
                continue
            status, amount = answer
            payer_id = None
            if change_payer and status == EntryStatus.FILLED:
                payer_id = select_payer_interactive(members, entry.payer_id)
            service.update_entry(
                entry.id,
                acting_user,
                status=status,
                actual_amount=amount,
                payer_id=payer_id,
            )
            filled += 1

        console.print(f"\n[green]✓ Updated {filled} of {len(pending)} entries[/green]")


@app.command()
def confirm(
    session_id: str = typer.Argument(..., help="Draft session id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Confirm a draft and compute who pays whom."""
    with open_service(verbose) as (settings, service):
        acting_user = resolve_user(user, settings)
        if not yes and not confirm_action("Confirm this settlement? It cannot be edited afterwards."):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        session = service.confirm(session_id, acting_user)
        console.print(f"\n[bold green]✓ Session {session.status.value}[/bold green]\n")
        display_transfers(session.net_transfers, "Transfers", settings.currency_code)


@app.command("report-payment")
def report_payment(
    session_id: str = typer.Argument(..., help="Session id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Report that the transfers of a session were sent."""
    with open_service(verbose) as (settings, service):
        service.report_payment(session_id, resolve_user(user, settings))
        console.print("[green]✓ Payment reported[/green]")


@app.command("confirm-receipt")
def confirm_receipt(
    session_id: str = typer.Argument(..., help="Session id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Confirm the transfers were received, completing the session."""
    with open_service(verbose) as (settings, service):
        service.confirm_receipt(session_id, resolve_user(user, settings))
        console.print("[bold green]✓ Settled[/bold green]")


@app.command()
def balances(
    group_id: str = typer.Argument(..., help="Group id"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show outstanding transfers, netted across all unpaid sessions."""
    with open_service(verbose) as (settings, service):
        result = service.consolidated_transfers(group_id, resolve_user(user, settings))
        display_transfers(result.transfers, "Outstanding Transfers", settings.currency_code)


if __name__ == "__main__":
    app()
