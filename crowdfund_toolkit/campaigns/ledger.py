"""
FundsLedgerBuilder - rebuild a campaign's funds flow from the event log.

The remote event query is scoped by event type, not by campaign, so every
kind is queried on its own, filtered client-side to the requested campaign,
and merged. A failure on one kind degrades the ledger (zero events of that
kind, a warning attached) instead of aborting the build.

Pages are read newest first, so a page budget that runs out drops the oldest
history, never the latest. A kind cut short that way is degraded as well.

Ordering is ascending by timestamp, ties broken by the event sequence
number. Totals are integer sums in MIST.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from crowdfund_toolkit.campaigns.models import (
    EventOrder,
    FundsLedger,
    LedgerEvent,
    LedgerEventKind,
    ReconciledBalance,
)
from crowdfund_toolkit.shared.constants import CrowdfundConstants
from crowdfund_toolkit.shared.exceptions import RetryableException
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.results import ErrorSeverity, ProcessingError
from crowdfund_toolkit.shared.services.ledger_service import LedgerService

logger = get_logger(__name__)

LEDGER_KINDS: Sequence[LedgerEventKind] = (
    LedgerEventKind.CREATED,
    LedgerEventKind.DONATED,
    LedgerEventKind.WITHDRAWN,
    LedgerEventKind.REFUNDED,
    LedgerEventKind.FINALIZED,
)


@dataclass
class EventScan:
    """Events of one kind matched for one campaign."""

    events: List[LedgerEvent] = field(default_factory=list)
    # False when the page budget ran out before the end of the history
    complete: bool = True
    pages: int = 0


def order_events(events: Iterable[LedgerEvent]) -> List[LedgerEvent]:
    return sorted(events, key=lambda e: e.sort_key)


def replay(events: Iterable[LedgerEvent]) -> ReconciledBalance:
    """Sum amounts per kind. Duplicate withdrawals are summed, not collapsed."""
    donated = withdrawn = refunded = 0
    for event in events:
        amount = event.amount or 0
        if event.kind is LedgerEventKind.DONATED:
            donated += amount
        elif event.kind is LedgerEventKind.WITHDRAWN:
            withdrawn += amount
        elif event.kind is LedgerEventKind.REFUNDED:
            refunded += amount
    return ReconciledBalance(
        total_donated=donated,
        total_withdrawn=withdrawn,
        total_refunded=refunded,
    )


class FundsLedgerBuilder:
    """Builds FundsLedger instances from a Ledger Service."""

    def __init__(
        self,
        ledger: LedgerService,
        page_limit: int = CrowdfundConstants.EVENT_PAGE_LIMIT,
        max_pages: int = CrowdfundConstants.MAX_EVENT_PAGES,
    ):
        self.ledger = ledger
        self.page_limit = page_limit
        self.max_pages = max_pages

    async def fetch_kind(
        self,
        campaign_id: str,
        kind: LedgerEventKind,
        first_match: bool = False,
    ) -> EventScan:
        """
        Events of one kind for one campaign, newest pages first.

        Args:
            campaign_id: Canonical campaign id
            kind: Event kind to query
            first_match: Stop at the first page holding a matching event

        Raises:
            RetryableException: the query failed; callers decide how to degrade
        """
        scan = EventScan()
        cursor = None
        while scan.pages < self.max_pages:
            page = await self.ledger.query_events(
                kind,
                limit=self.page_limit,
                order=EventOrder.DESCENDING,
                cursor=cursor,
            )
            scan.pages += 1
            scan.events.extend(e for e in page.events if e.campaign_id == campaign_id)
            if first_match and scan.events:
                return scan
            if not page.has_next_page or page.next_cursor is None:
                return scan
            cursor = page.next_cursor

        scan.complete = False
        logger.warning(
            f"{kind.value}: stopped after {self.max_pages} pages, "
            f"older history for {campaign_id} is missing"
        )
        return scan

    async def build_ledger(self, campaign_id: str) -> FundsLedger:
        """Replay every event kind for ``campaign_id`` into an ordered ledger."""
        collected: List[LedgerEvent] = []
        errors: List[ProcessingError] = []
        degraded: List[LedgerEventKind] = []

        for kind in LEDGER_KINDS:
            context = {"campaign_id": campaign_id, "event_kind": kind.value}
            try:
                scan = await self.fetch_kind(campaign_id, kind)
            except RetryableException as e:
                logger.warning(
                    f"No {kind.value} events loaded for {campaign_id}: {e}"
                )
                degraded.append(kind)
                errors.append(
                    ProcessingError(
                        source="ledger",
                        message=f"{kind.value} events unavailable: {e}",
                        severity=ErrorSeverity.WARNING,
                        context=context,
                        exception=e,
                    )
                )
                continue

            collected.extend(scan.events)
            if not scan.complete:
                degraded.append(kind)
                errors.append(
                    ProcessingError(
                        source="ledger",
                        message=(
                            f"{kind.value} history truncated after "
                            f"{scan.pages} pages; older events are missing"
                        ),
                        severity=ErrorSeverity.WARNING,
                        context={**context, "pages": scan.pages},
                    )
                )

        events = order_events(collected)
        totals = replay(events)
        logger.debug(
            f"Ledger for {campaign_id}: {len(events)} events, "
            f"balance {totals.current_balance}"
        )
        return FundsLedger(
            campaign_id=campaign_id,
            events=events,
            totals=totals,
            errors=errors,
            degraded_kinds=degraded,
        )
