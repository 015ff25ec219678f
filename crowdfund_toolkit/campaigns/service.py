"""
CampaignService - entry point for crowdfunding campaign interactions

This service handles:
1. Resolving ids, slugs and titles to canonical campaign ids
2. Opening one CampaignSession per campaign and running mutating operations
   through it (donate, finalize, withdraw, force succeed, refund, cancel)
3. Creating campaigns
4. Listing, searching, filtering and sorting campaigns
5. Listing donation receipts
6. Building the reconciled verification view (live object vs event ledger)

Mutating operations always return an OperationOutcome. Client-side refusals
(lifecycle guards, an operation already pending) become FAILED outcomes
without anything being submitted.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from crowdfund_toolkit.campaigns.executor import OperationExecutor
from crowdfund_toolkit.campaigns.ledger import FundsLedgerBuilder
from crowdfund_toolkit.campaigns.models import (
    Campaign,
    DonationReceipt,
    EventOrder,
    FundsLedger,
    LedgerEventKind,
    OperationOutcome,
    OperationStatus,
    ReconciledView,
)
from crowdfund_toolkit.campaigns.reconciler import BalanceReconciler
from crowdfund_toolkit.campaigns.resolver import IdentifierResolver
from crowdfund_toolkit.campaigns.session import CampaignSession, now_ms
from crowdfund_toolkit.campaigns.state_machine import Action
from crowdfund_toolkit.campaigns.transactions import (
    CREATE_CAMPAIGN,
    CrowdfundTransactions,
)
from crowdfund_toolkit.shared.constants import NetworkConstants
from crowdfund_toolkit.shared.exceptions import (
    NonRetryableException,
    RetryableException,
)
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.results import ErrorSeverity, Result
from crowdfund_toolkit.shared.services.ledger_service import (
    LedgerService,
    SuiCliSigner,
    SuiLedgerService,
)
from crowdfund_toolkit.utils.cache import FileIdentifierStore, IdentifierStore
from crowdfund_toolkit.utils.campaign_utils import (
    filter_campaigns_by_status,
    search_campaigns,
    sort_campaigns,
)

logger = get_logger(__name__)

# Semaphore limit for parallel campaign object fetches during listings
MAX_CONCURRENT_CAMPAIGN_FETCHES = 10

SessionCall = Callable[[CampaignSession], Awaitable[OperationOutcome]]


class CampaignService:
    """
    Service for reading and operating crowdfunding campaigns.

    Attributes:
        ledger: Remote primitives
        transactions: Payload builders for the deployed package
        store: Local identifier cache and archival tags (advisory)
        resolver: Identifier resolution
        ledger_builder: Event-log replay
        reconciler: Withdrawal status, shared by all sessions of this service
        sender: Address operations are signed with, if any
    """

    def __init__(
        self,
        ledger: LedgerService,
        package_id: str,
        store: Optional[IdentifierStore] = None,
        sender: Optional[str] = None,
        ledger_builder: Optional[FundsLedgerBuilder] = None,
        reconciler: Optional[BalanceReconciler] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.ledger = ledger
        self.transactions = CrowdfundTransactions(package_id)
        self.store = store if store is not None else FileIdentifierStore()
        self.sender = sender
        self.clock = clock
        self.resolver = IdentifierResolver(ledger, self.store)
        self.ledger_builder = ledger_builder or FundsLedgerBuilder(ledger)
        self.reconciler = reconciler or BalanceReconciler(
            ledger, self.ledger_builder
        )
        self.executor = OperationExecutor(ledger)
        self._sessions: Dict[str, CampaignSession] = {}

    @classmethod
    def from_network(
        cls,
        network: Optional[str] = None,
        sender: Optional[str] = None,
        store: Optional[IdentifierStore] = None,
        sui_binary: str = "sui",
    ) -> "CampaignService":
        """
        Build a service against a configured network.

        Raises:
            ConfigurationException: unknown network or no package id
        """
        network = network or NetworkConstants.DEFAULT_NETWORK
        package_id = NetworkConstants.get_package_id(network)
        signer = SuiCliSigner(sender, sui_binary) if sender else None
        ledger = SuiLedgerService(
            NetworkConstants.get_rpc_url(network),
            package_id,
            signer=signer,
        )
        return cls(ledger, package_id, store=store, sender=sender)

    # -------------------------------------------------------------------------
    # Resolution and sessions
    # -------------------------------------------------------------------------

    async def resolve_and_open(self, identifier: str) -> Result[str]:
        """
        Resolve ``identifier`` and open a session for it.

        Returns:
            Result with the canonical id; a failed result when nothing matches
            or when the scan could not run (``retryable`` set)
        """
        try:
            campaign_id = await self.resolver.resolve(identifier)
        except RetryableException as e:
            logger.warning(f"Could not resolve '{identifier}': {e}")
            return Result.fail_with_message(
                source="resolver",
                message=f"Could not resolve '{identifier}': {e}",
                context={"identifier": identifier},
                exception=e,
                retryable=True,
            )

        if campaign_id is None:
            return Result.fail_with_message(
                source="resolver",
                message=f"Campaign '{identifier}' not found",
                severity=ErrorSeverity.WARNING,
                context={"identifier": identifier},
            )

        self.open_session(campaign_id)
        return Result.ok(campaign_id)

    def open_session(self, campaign_id: str) -> CampaignSession:
        """Current session for ``campaign_id``, created on first use."""
        session = self._sessions.get(campaign_id)
        if session is None or session.closed:
            session = CampaignSession(
                campaign_id,
                self.ledger,
                self.transactions,
                reconciler=self.reconciler,
                sender=self.sender,
                clock=self.clock,
            )
            self._sessions[campaign_id] = session
        return session

    async def close_session(self, campaign_id: str) -> None:
        session = self._sessions.pop(campaign_id, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        """Close every open session."""
        for campaign_id in list(self._sessions):
            await self.close_session(campaign_id)

    # -------------------------------------------------------------------------
    # Mutating operations
    # -------------------------------------------------------------------------

    async def _run(
        self, campaign_id: str, operation: str, call: SessionCall
    ) -> OperationOutcome:
        session = self.open_session(campaign_id)
        try:
            return await call(session)
        except NonRetryableException as e:
            logger.warning(f"Refused {operation} on {campaign_id}: {e}")
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                message=str(e),
            )
        except RetryableException as e:
            logger.error(f"{operation} on {campaign_id} failed: {e}")
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                message=str(e),
                retryable=True,
            )

    async def donate(self, campaign_id: str, amount_mist: int) -> OperationOutcome:
        return await self._run(
            campaign_id, Action.DONATE.value, lambda s: s.donate(amount_mist)
        )

    async def finalize(self, campaign_id: str) -> OperationOutcome:
        return await self._run(
            campaign_id, Action.FINALIZE.value, lambda s: s.finalize()
        )

    async def withdraw(self, campaign_id: str) -> OperationOutcome:
        return await self._run(
            campaign_id, Action.WITHDRAW.value, lambda s: s.withdraw()
        )

    async def force_succeed(self, campaign_id: str) -> OperationOutcome:
        return await self._run(
            campaign_id, Action.FORCE_SUCCEED.value, lambda s: s.force_succeed()
        )

    async def refund(self, receipt_id: str, campaign_id: str) -> OperationOutcome:
        async def call(session: CampaignSession) -> OperationOutcome:
            receipt = None
            if self.sender:
                receipts = await self.ledger.get_owned_receipts(self.sender)
                receipt = next((r for r in receipts if r.id == receipt_id), None)
            return await session.refund(receipt_id, receipt)

        return await self._run(campaign_id, Action.REFUND.value, call)

    async def cancel(self, campaign_id: str) -> OperationOutcome:
        return await self._run(
            campaign_id, Action.CANCEL.value, lambda s: s.cancel()
        )

    async def create_campaign(
        self,
        title: str,
        description: str,
        goal_mist: int,
        deadline_ms: int,
        image_url: Optional[str] = None,
    ) -> OperationOutcome:
        """
        Create a campaign after basic input checks.

        On success the new campaign is looked up by its slug so the identifier
        cache points at it.
        """
        problems = []
        if not title or not title.strip():
            problems.append("title is required")
        if goal_mist <= 0:
            problems.append("goal must be greater than zero")
        if deadline_ms <= self.clock():
            problems.append("deadline must be in the future")
        if problems:
            return OperationOutcome(
                operation=CREATE_CAMPAIGN,
                status=OperationStatus.FAILED,
                message="; ".join(problems),
            )

        title = title.strip()

        async def remember(outcome: OperationOutcome) -> None:
            try:
                await self.resolver.resolve(title)
            except RetryableException as e:
                logger.warning(f"Created '{title}' but could not cache its id: {e}")

        return await self.executor.execute(
            CREATE_CAMPAIGN,
            lambda: self.transactions.create_campaign(
                goal_mist, deadline_ms, title, description, image_url
            ),
            on_success=remember,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _fetch_campaigns(self, campaign_ids: List[str]) -> List[Campaign]:
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_CAMPAIGN_FETCHES)

        async def fetch_one(campaign_id: str) -> Optional[Campaign]:
            async with semaphore:
                try:
                    return await self.ledger.get_object(campaign_id)
                except RetryableException as e:
                    logger.warning(f"Skipping campaign {campaign_id}: {e}")
                    return None

        fetched = await asyncio.gather(*(fetch_one(cid) for cid in campaign_ids))
        return [c for c in fetched if c is not None]

    async def list_campaigns(
        self,
        search: str = "",
        status: str = "all",
        sort_by: str = "newest",
        include_archived: bool = False,
    ) -> Result[List[Campaign]]:
        """
        Recent campaigns from the Created event log, newest first.

        Each listed campaign's slug is written to the identifier cache.
        """
        try:
            page = await self.ledger.query_events(
                LedgerEventKind.CREATED,
                limit=self.resolver.scan_limit,
                order=EventOrder.DESCENDING,
            )
        except RetryableException as e:
            logger.error(f"Could not list campaigns: {e}")
            return Result.fail_with_message(
                source="listing",
                message=f"Could not list campaigns: {e}",
                exception=e,
                retryable=True,
            )

        ids = list(dict.fromkeys(e.campaign_id for e in page.events))
        campaigns = await self._fetch_campaigns(ids)
        skipped = len(ids) - len(campaigns)

        for campaign in campaigns:
            if campaign.slug:
                await self.store.set(campaign.slug, campaign.id)

        if not include_archived:
            archived = await self.store.archived_ids()
            campaigns = [c for c in campaigns if c.id not in archived]

        try:
            campaigns = search_campaigns(campaigns, search)
            campaigns = filter_campaigns_by_status(campaigns, status)
            campaigns = sort_campaigns(campaigns, sort_by)
        except ValueError as e:
            return Result.fail_with_message(source="listing", message=str(e))

        result = Result.ok(campaigns)
        if skipped:
            result.add_warning(
                source="listing",
                message=f"{skipped} campaign(s) could not be loaded",
            )
        return result

    async def fetch_receipts(
        self, owner: Optional[str] = None
    ) -> Result[List[DonationReceipt]]:
        """Donation receipts held by ``owner`` (default: the sender)."""
        owner = owner or self.sender
        if not owner:
            return Result.fail_with_message(
                source="receipts", message="No owner address given"
            )
        try:
            return Result.ok(await self.ledger.get_owned_receipts(owner))
        except RetryableException as e:
            logger.error(f"Could not load receipts of {owner}: {e}")
            return Result.fail_with_message(
                source="receipts",
                message=str(e),
                context={"owner": owner},
                exception=e,
                retryable=True,
            )

    async def get_ledger(self, campaign_id: str) -> Result[FundsLedger]:
        funds = await self.ledger_builder.build_ledger(campaign_id)
        result = Result.ok(funds)
        for error in funds.errors:
            result.add_error(error)
        return result

    async def get_reconciled_view(self, campaign_id: str) -> Result[ReconciledView]:
        """Live snapshot, replayed balance and withdrawal status."""
        try:
            return await self.open_session(campaign_id).reconciled_view()
        except RetryableException as e:
            logger.error(f"Could not load campaign {campaign_id}: {e}")
            return Result.fail_with_message(
                source="reconciler",
                message=f"Could not load campaign {campaign_id}: {e}",
                context={"campaign_id": campaign_id},
                exception=e,
                retryable=True,
            )

    async def archive(self, campaign_id: str) -> None:
        await self.store.archive(campaign_id)

    async def unarchive(self, campaign_id: str) -> None:
        await self.store.unarchive(campaign_id)
