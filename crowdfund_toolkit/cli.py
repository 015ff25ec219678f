#!/usr/bin/env python3
"""
Unified CLI for the Crowdfund Toolkit.

Examples:
  - Lookup
    crowdfund resolve "My Great Cause"
    crowdfund show my-great-cause
    crowdfund ledger 0x...
    crowdfund list --status active --sort progress --search water

  - Operations (signed with the local sui keystore)
    crowdfund --sender 0x... create --title "My Great Cause" --goal 100 --duration-minutes 1440
    crowdfund --sender 0x... donate my-great-cause --amount 1.5
    crowdfund --sender 0x... finalize my-great-cause
    crowdfund --sender 0x... withdraw my-great-cause
    crowdfund --sender 0x... refund my-great-cause --receipt 0x...
    crowdfund --sender 0x... receipts
"""

import argparse
import asyncio
import json
import os
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from crowdfund_toolkit.campaigns.models import OperationOutcome
from crowdfund_toolkit.campaigns.service import CampaignService
from crowdfund_toolkit.shared.constants import NetworkConstants
from crowdfund_toolkit.shared.results import Result
from crowdfund_toolkit.shared.services.http_client import aclose_async_client
from crowdfund_toolkit.utils.campaign_utils import (
    SORT_KEYS,
    STATUS_FILTERS,
    sui_to_mist,
)
from crowdfund_toolkit.utils.formatters import (
    add_campaign_to_table,
    console,
    create_campaigns_table,
    create_ledger_table,
    format_address,
    format_sui_amount,
    format_timestamp,
    print_outcome,
    print_reconciled_view,
)

ServiceCommand = Callable[[CampaignService, argparse.Namespace], Awaitable[None]]


def _run(args: argparse.Namespace, command: ServiceCommand) -> None:
    async def run():
        service = CampaignService.from_network(args.network, sender=args.sender)
        try:
            await command(service, args)
        finally:
            await service.close()
            await aclose_async_client()

    asyncio.run(run())


def _print_warnings(result: Result) -> None:
    for message in result.get_error_messages():
        console.print(f"[yellow]Warning:[/yellow] {message}")


async def _resolve(service: CampaignService, identifier: str) -> Optional[str]:
    result = await service.resolve_and_open(identifier)
    if not result.success:
        console.print(f"[red]{'; '.join(result.get_error_messages())}[/red]")
        return None
    return result.data


def _finish(outcome: OperationOutcome, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(outcome.to_dict()))
    else:
        print_outcome(outcome)


# =============================================================================
# READ COMMANDS
# =============================================================================


async def _cmd_resolve(service: CampaignService, args: argparse.Namespace) -> None:
    campaign_id = await _resolve(service, args.identifier)
    if campaign_id:
        console.print(campaign_id)


async def _cmd_show(service: CampaignService, args: argparse.Namespace) -> None:
    campaign_id = await _resolve(service, args.identifier)
    if not campaign_id:
        return
    result = await service.get_reconciled_view(campaign_id)
    if not result.success:
        console.print(f"[red]{'; '.join(result.get_error_messages())}[/red]")
        return
    view = result.data
    if args.json:
        console.print_json(
            json.dumps(
                {
                    "campaign": view.campaign.to_dict(),
                    "balance": view.balance.to_dict(),
                    "withdrawal_status": view.withdrawal_status.value,
                    "is_withdrawn": view.is_withdrawn,
                    "ledger_complete": view.ledger_complete,
                    "raised_matches_ledger": view.audit.consistent,
                }
            )
        )
        return
    print_reconciled_view(view, service.clock())
    _print_warnings(result)


async def _cmd_ledger(service: CampaignService, args: argparse.Namespace) -> None:
    campaign_id = await _resolve(service, args.identifier)
    if not campaign_id:
        return
    result = await service.get_ledger(campaign_id)
    funds = result.data
    if args.json:
        console.print_json(
            json.dumps(
                {
                    "campaign_id": funds.campaign_id,
                    "events": [e.to_dict() for e in funds.events],
                    "totals": funds.totals.to_dict(),
                    "complete": funds.is_complete,
                }
            )
        )
        return
    console.print(create_ledger_table(funds.events))
    console.print(
        f"Current balance: [bold]{format_sui_amount(funds.totals.current_balance, 4)} SUI[/bold]"
    )
    _print_warnings(result)


async def _cmd_list(service: CampaignService, args: argparse.Namespace) -> None:
    result = await service.list_campaigns(
        search=args.search or "",
        status=args.status,
        sort_by=args.sort,
        include_archived=args.archived,
    )
    if not result.success:
        console.print(f"[red]{'; '.join(result.get_error_messages())}[/red]")
        return
    campaigns = result.data
    if args.json:
        console.print_json(json.dumps([c.to_dict() for c in campaigns]))
        return
    console.print(f"Campaigns: {len(campaigns)}")
    table = create_campaigns_table()
    now = service.clock()
    for campaign in campaigns:
        add_campaign_to_table(table, campaign, now)
    console.print(table)
    _print_warnings(result)


async def _cmd_receipts(service: CampaignService, args: argparse.Namespace) -> None:
    result = await service.fetch_receipts(args.owner)
    if not result.success:
        console.print(f"[red]{'; '.join(result.get_error_messages())}[/red]")
        return
    console.print(f"Donation receipts: {len(result.data)}")
    for receipt in result.data:
        console.print(
            f"- {receipt.id} | campaign {format_address(receipt.campaign_id)} | "
            f"{format_sui_amount(receipt.amount, 4)} SUI | "
            f"{format_timestamp(receipt.timestamp_ms)}"
        )


async def _cmd_archive(service: CampaignService, args: argparse.Namespace) -> None:
    campaign_id = await _resolve(service, args.identifier)
    if not campaign_id:
        return
    if args.undo:
        await service.unarchive(campaign_id)
        console.print(f"Unarchived {campaign_id}")
    else:
        await service.archive(campaign_id)
        console.print(f"Archived {campaign_id}")


# =============================================================================
# MUTATING COMMANDS
# =============================================================================


def _deadline_ms(args: argparse.Namespace) -> int:
    if args.deadline:
        return int(datetime.fromisoformat(args.deadline).timestamp() * 1000)
    if args.duration_minutes:
        return int(datetime.now().timestamp() * 1000) + args.duration_minutes * 60_000
    raise ValueError("Provide --deadline or --duration-minutes")


async def _cmd_create(service: CampaignService, args: argparse.Namespace) -> None:
    outcome = await service.create_campaign(
        title=args.title,
        description=args.description or "",
        goal_mist=sui_to_mist(args.goal),
        deadline_ms=_deadline_ms(args),
        image_url=args.image_url,
    )
    _finish(outcome, args.json)


def _campaign_operation(
    operate: Callable[[CampaignService, str, argparse.Namespace], Awaitable[OperationOutcome]]
) -> ServiceCommand:
    async def command(service: CampaignService, args: argparse.Namespace) -> None:
        campaign_id = await _resolve(service, args.identifier)
        if not campaign_id:
            return
        _finish(await operate(service, campaign_id, args), args.json)

    return command


_cmd_donate = _campaign_operation(
    lambda s, cid, a: s.donate(cid, sui_to_mist(a.amount))
)
_cmd_finalize = _campaign_operation(lambda s, cid, a: s.finalize(cid))
_cmd_withdraw = _campaign_operation(lambda s, cid, a: s.withdraw(cid))
_cmd_force_succeed = _campaign_operation(lambda s, cid, a: s.force_succeed(cid))
_cmd_refund = _campaign_operation(lambda s, cid, a: s.refund(a.receipt, cid))
_cmd_cancel = _campaign_operation(lambda s, cid, a: s.cancel(cid))


def _command(handler: ServiceCommand) -> Callable[[argparse.Namespace], None]:
    return lambda args: _run(args, handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crowdfund",
        description="Unified CLI for the Crowdfund Toolkit",
    )
    parser.add_argument(
        "--network",
        type=str,
        default=NetworkConstants.DEFAULT_NETWORK,
        choices=sorted(NetworkConstants.NETWORK_TO_RPC),
    )
    parser.add_argument(
        "--sender",
        type=str,
        default=os.getenv("CF_SENDER"),
        help="Signing address (default: CF_SENDER)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def identifier_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("identifier", type=str, help="Campaign id, slug or title")
        p.add_argument("--json", action="store_true", help="Output JSON")
        return p

    # resolve
    p_res = sub.add_parser("resolve", help="Resolve a slug or title to an id")
    p_res.add_argument("identifier", type=str)
    p_res.set_defaults(func=_command(_cmd_resolve))

    # show
    identifier_parser("show", "Campaign verification panel").set_defaults(
        func=_command(_cmd_show)
    )

    # ledger
    identifier_parser("ledger", "Funds-flow event ledger").set_defaults(
        func=_command(_cmd_ledger)
    )

    # list
    p_list = sub.add_parser("list", help="List recent campaigns")
    p_list.add_argument("--search", type=str, help="Title/description filter")
    p_list.add_argument("--status", choices=list(STATUS_FILTERS), default="all")
    p_list.add_argument("--sort", choices=list(SORT_KEYS), default="newest")
    p_list.add_argument(
        "--archived", action="store_true", help="Include archived campaigns"
    )
    p_list.add_argument("--json", action="store_true", help="Output JSON")
    p_list.set_defaults(func=_command(_cmd_list))

    # receipts
    p_rec = sub.add_parser("receipts", help="List donation receipts")
    p_rec.add_argument("--owner", type=str, help="Owner address (default: sender)")
    p_rec.set_defaults(func=_command(_cmd_receipts))

    # archive
    p_arc = sub.add_parser("archive", help="Hide a campaign from listings")
    p_arc.add_argument("identifier", type=str)
    p_arc.add_argument("--undo", action="store_true", help="Unarchive instead")
    p_arc.set_defaults(func=_command(_cmd_archive))

    # create
    p_new = sub.add_parser("create", help="Create a campaign")
    p_new.add_argument("--title", type=str, required=True)
    p_new.add_argument("--description", type=str)
    p_new.add_argument("--goal", type=str, required=True, help="Goal in SUI")
    p_new.add_argument("--deadline", type=str, help="ISO date/time")
    p_new.add_argument("--duration-minutes", type=int)
    p_new.add_argument("--image-url", type=str)
    p_new.add_argument("--json", action="store_true", help="Output JSON")
    p_new.set_defaults(func=_command(_cmd_create))

    # donate
    p_don = identifier_parser("donate", "Donate to a campaign")
    p_don.add_argument("--amount", type=str, required=True, help="Amount in SUI")
    p_don.set_defaults(func=_command(_cmd_donate))

    identifier_parser("finalize", "Finalize after the deadline").set_defaults(
        func=_command(_cmd_finalize)
    )
    identifier_parser("withdraw", "Withdraw a succeeded campaign").set_defaults(
        func=_command(_cmd_withdraw)
    )
    identifier_parser(
        "force-succeed", "Owner override: mark the campaign succeeded"
    ).set_defaults(func=_command(_cmd_force_succeed))

    # refund
    p_ref = identifier_parser("refund", "Refund a donation of a failed campaign")
    p_ref.add_argument("--receipt", type=str, required=True, help="Receipt id")
    p_ref.set_defaults(func=_command(_cmd_refund))

    identifier_parser("cancel", "Delete a campaign without donations").set_defaults(
        func=_command(_cmd_cancel)
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except Exception as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise


if __name__ == "__main__":
    main()
