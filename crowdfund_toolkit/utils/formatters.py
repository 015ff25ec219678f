"""Shared formatting utilities for commands."""

from datetime import datetime
from typing import Iterable

from rich.console import Console
from rich.table import Table

from crowdfund_toolkit.campaigns.models import (
    Campaign,
    CampaignState,
    LedgerEvent,
    LedgerEventKind,
    OperationOutcome,
    OperationStatus,
    ReconciledView,
    WithdrawalStatus,
)
from crowdfund_toolkit.utils.campaign_utils import (
    campaign_progress,
    format_countdown,
    get_campaign_status,
    mist_to_sui,
)

# Shared console instance
console = Console()


def format_address(address: str, length: int = 10) -> str:
    """
    Format an address to show first and last characters.

    Args:
        address: Account or object id
        length: Total visible characters (default: 10)

    Returns:
        Formatted address like "0x1234...5678"
    """
    if not address:
        return "N/A"
    if len(address) <= length:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_timestamp(
    timestamp_ms: int, format_str: str = "%Y-%m-%d %H:%M"
) -> str:
    """
    Format a millisecond timestamp to a readable date string.

    Args:
        timestamp_ms: Unix timestamp in milliseconds
        format_str: strftime format string

    Returns:
        Formatted date string
    """
    dt = datetime.fromtimestamp(timestamp_ms / 1000)
    return dt.strftime(format_str)


def format_sui_amount(mist: int, decimals: int = 2) -> str:
    """MIST amount rendered in SUI, e.g. ``1.50``."""
    return f"{mist_to_sui(mist):.{decimals}f}"


_EVENT_STYLES = {
    LedgerEventKind.CREATED: "cyan",
    LedgerEventKind.DONATED: "green",
    LedgerEventKind.WITHDRAWN: "magenta",
    LedgerEventKind.REFUNDED: "yellow",
    LedgerEventKind.FINALIZED: "blue",
}

_WITHDRAWAL_LABELS = {
    WithdrawalStatus.WITHDRAWN: "[magenta]Withdrawn[/magenta]",
    WithdrawalStatus.NOT_WITHDRAWN: "[green]Not withdrawn[/green]",
    WithdrawalStatus.UNCONFIRMED: "[yellow]Unconfirmed[/yellow]",
}


def describe_event(event: LedgerEvent) -> str:
    amount = format_sui_amount(event.amount or 0, 4)
    if event.kind is LedgerEventKind.CREATED:
        return "Campaign created"
    if event.kind is LedgerEventKind.DONATED:
        return f"{amount} SUI donated"
    if event.kind is LedgerEventKind.WITHDRAWN:
        return f"{amount} SUI withdrawn to owner"
    if event.kind is LedgerEventKind.REFUNDED:
        return f"{amount} SUI refunded"
    return "Campaign finalized"


def create_campaigns_table() -> Table:
    """
    Create a Rich table with standard campaign columns.

    Returns:
        Configured Rich Table for campaign display
    """
    table = Table(
        show_header=True,
        header_style="bold cyan",
        show_lines=False,
        pad_edge=False,
        box=None,
    )
    table.add_column("ID", width=14)
    table.add_column("Title", width=28)
    table.add_column("Status", width=18, justify="center")
    table.add_column("Raised / Goal (SUI)", width=20, justify="right")
    table.add_column("Progress", width=9, justify="right")
    table.add_column("Time left", width=22)
    return table


def add_campaign_to_table(table: Table, campaign: Campaign, now_ms: int) -> None:
    """Add a campaign row to the campaigns table."""
    table.add_row(
        format_address(campaign.id),
        campaign.title,
        get_campaign_status(campaign, now_ms),
        f"{format_sui_amount(campaign.raised)} / {format_sui_amount(campaign.goal)}",
        f"{campaign_progress(campaign):.1f}%",
        format_countdown(campaign.deadline_ms, now_ms)
        if campaign.state is CampaignState.ACTIVE
        else "-",
    )


def create_ledger_table(events: Iterable[LedgerEvent]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Time", width=17)
    table.add_column("Event", width=16)
    table.add_column("Details")
    table.add_column("Tx", width=14)
    for event in events:
        style = _EVENT_STYLES.get(event.kind, "white")
        table.add_row(
            format_timestamp(event.timestamp_ms),
            f"[{style}]{event.kind.value}[/{style}]",
            describe_event(event),
            format_address(event.tx_digest),
        )
    return table


def print_reconciled_view(view: ReconciledView, now_ms: int) -> None:
    """Verification panel: live object next to the replayed ledger."""
    campaign = view.campaign
    balance = view.balance

    console.print(f"\n[bold]{campaign.title}[/bold] ({campaign.id})")
    console.print(f"[dim]{campaign.metadata.description}[/dim]")
    console.print(
        f"Status: {get_campaign_status(campaign, now_ms)}  "
        f"Owner: {format_address(campaign.owner)}  "
        f"Deadline: {format_timestamp(campaign.deadline_ms)}"
    )
    if campaign.state is CampaignState.ACTIVE:
        console.print(f"Time left: {format_countdown(campaign.deadline_ms, now_ms)}")

    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Metric", width=22)
    table.add_column("SUI", justify="right", width=16)
    table.add_row("Goal", format_sui_amount(campaign.goal, 4))
    table.add_row("Raised (live object)", format_sui_amount(campaign.raised, 4))
    table.add_row("Donated (ledger)", format_sui_amount(balance.total_donated, 4))
    table.add_row("Withdrawn (ledger)", format_sui_amount(balance.total_withdrawn, 4))
    table.add_row("Refunded (ledger)", format_sui_amount(balance.total_refunded, 4))
    table.add_row(
        "[bold]Current balance[/bold]",
        f"[bold]{format_sui_amount(balance.current_balance, 4)}[/bold]",
    )
    console.print(table)

    console.print(f"Treasury: {_WITHDRAWAL_LABELS[view.withdrawal_status]}")
    if not view.ledger_complete:
        console.print("[yellow]Ledger incomplete: some event kinds could not be loaded[/yellow]")
    elif view.audit.consistent:
        console.print("[green]Live raised matches ledger donations[/green]")
    else:
        console.print(
            f"[red]Mismatch: live raised differs from ledger donations by "
            f"{format_sui_amount(view.audit.discrepancy, 4)} SUI[/red]"
        )


def print_outcome(outcome: OperationOutcome) -> None:
    styles = {
        OperationStatus.SUCCESS: "green",
        OperationStatus.FAILED: "red",
        OperationStatus.UNCONFIRMED: "yellow",
        OperationStatus.PENDING: "cyan",
    }
    style = styles[outcome.status]
    line = f"[{style}]{outcome.operation}: {outcome.status.value}[/{style}]"
    if outcome.fallback_from:
        line += f" (fallback from {outcome.fallback_from})"
    if outcome.override:
        line += " [bold yellow]override[/bold yellow]"
    console.print(line)
    if outcome.digest:
        console.print(f"  Digest: {outcome.digest}")
    if outcome.message:
        console.print(f"  {outcome.message}")
