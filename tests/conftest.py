"""
Pytest configuration and shared fixtures.

This module provides common fixtures and configuration for all tests.
"""

import dataclasses
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Set

import pytest

from crowdfund_toolkit.campaigns.metadata import encode_metadata
from crowdfund_toolkit.campaigns.models import (
    Campaign,
    CampaignState,
    DonationReceipt,
    EventOrder,
    EventPage,
    FinalityStatus,
    LedgerEvent,
    LedgerEventKind,
    SubmissionResult,
)
from crowdfund_toolkit.campaigns.transactions import (
    CANCEL_CAMPAIGN,
    DONATE,
    FINALIZE,
    FORCE_SUCCEEDED,
    WITHDRAW,
    CrowdfundTransactions,
    TransactionPayload,
)
from crowdfund_toolkit.shared.exceptions import LedgerTransportException
from crowdfund_toolkit.shared.retry import PollPolicy
from crowdfund_toolkit.shared.services.ledger_service import LedgerService

PACKAGE_ID = "0x" + "5a" * 32
CAMPAIGN_ID = "0x" + "a1" * 32
OTHER_CAMPAIGN_ID = "0x" + "b2" * 32
OWNER = "0x" + "0e" * 32
DONOR = "0x" + "d0" * 32

NOW_MS = 1_760_000_000_000
HOUR_MS = 3_600_000

NO_WAIT = PollPolicy(max_attempts=3, delay=0, initial_delay=0)


def make_campaign(
    campaign_id: str = CAMPAIGN_ID,
    title: str = "My Great Cause",
    description: str = "Clean water for everyone",
    goal: int = 100,
    raised: int = 0,
    deadline_ms: int = NOW_MS + HOUR_MS,
    state: CampaignState = CampaignState.ACTIVE,
    withdrawn: bool = False,
    owner: str = OWNER,
) -> Campaign:
    return Campaign(
        id=campaign_id,
        owner=owner,
        goal=goal,
        raised=raised,
        deadline_ms=deadline_ms,
        state=state,
        withdrawn=withdrawn,
        metadata_blob=encode_metadata(title, description),
    )


def make_event(
    kind: LedgerEventKind,
    campaign_id: str = CAMPAIGN_ID,
    amount: Optional[int] = None,
    timestamp_ms: int = NOW_MS,
    sequence_no: int = 0,
    tx_digest: str = "",
) -> LedgerEvent:
    return LedgerEvent(
        kind=kind,
        campaign_id=campaign_id,
        amount=amount,
        timestamp_ms=timestamp_ms,
        sequence_no=sequence_no,
        tx_digest=tx_digest,
    )


class FakeLedgerService(LedgerService):
    """
    In-memory ledger.

    With ``simulate=True`` accepted transactions apply the contract's effects
    to the stored objects and event log.
    """

    def __init__(self, simulate: bool = False, now_ms: int = NOW_MS):
        self.simulate = simulate
        self.now_ms = now_ms
        self.objects: Dict[str, Campaign] = {}
        self.events: Dict[LedgerEventKind, List[LedgerEvent]] = defaultdict(list)
        self.receipts: List[DonationReceipt] = []
        self.failing_kinds: Set[LedgerEventKind] = set()
        self.failing_objects: Set[str] = set()
        self.submissions: List[TransactionPayload] = []
        self.queued_results: List[SubmissionResult] = []
        self.finality = FinalityStatus.FINALIZED
        self.calls: Counter = Counter()

    def add_campaign(self, campaign: Campaign, created_at: int = NOW_MS) -> Campaign:
        self.objects[campaign.id] = campaign
        self.add_event(
            make_event(LedgerEventKind.CREATED, campaign.id, timestamp_ms=created_at)
        )
        return campaign

    def add_event(self, event: LedgerEvent) -> None:
        self.events[event.kind].append(event)

    async def get_object(self, object_id: str) -> Optional[Campaign]:
        self.calls["get_object"] += 1
        if object_id in self.failing_objects:
            raise LedgerTransportException("node unavailable", method="sui_getObject")
        return self.objects.get(object_id)

    async def query_events(
        self,
        kind: LedgerEventKind,
        limit: int = 50,
        order: EventOrder = EventOrder.ASCENDING,
        cursor=None,
    ) -> EventPage:
        self.calls["query_events"] += 1
        self.calls[f"query_events:{kind.value}"] += 1
        if kind in self.failing_kinds:
            raise LedgerTransportException("node unavailable", method="suix_queryEvents")

        events = sorted(
            self.events[kind],
            key=lambda e: e.sort_key,
            reverse=order is EventOrder.DESCENDING,
        )
        offset = cursor["offset"] if cursor else 0
        page = events[offset : offset + limit]
        has_next = offset + limit < len(events)
        return EventPage(
            events=page,
            next_cursor={"offset": offset + limit} if has_next else None,
            has_next_page=has_next,
        )

    async def submit_transaction(self, payload: TransactionPayload) -> SubmissionResult:
        self.calls["submit_transaction"] += 1
        self.submissions.append(payload)
        if self.queued_results:
            result = self.queued_results.pop(0)
        else:
            result = SubmissionResult(
                accepted=True, digest=f"digest-{len(self.submissions)}"
            )
        if result.accepted and self.simulate:
            self._apply(payload, result.digest or "")
        return result

    async def await_finality(self, digest: str) -> FinalityStatus:
        self.calls["await_finality"] += 1
        return self.finality

    async def get_owned_receipts(self, owner: str) -> List[DonationReceipt]:
        self.calls["get_owned_receipts"] += 1
        return [r for r in self.receipts if r.donor == owner]

    def _apply(self, payload: TransactionPayload, digest: str) -> None:
        call = payload.move_calls[-1]
        campaign_id = call.arguments[0].object_id
        campaign = self.objects[campaign_id]
        self.now_ms += 1000

        if call.function == DONATE:
            amount = payload.commands[0].amounts[0]
            self.objects[campaign_id] = dataclasses.replace(
                campaign, raised=campaign.raised + amount
            )
            self.add_event(
                make_event(LedgerEventKind.DONATED, campaign_id, amount, self.now_ms, tx_digest=digest)
            )
        elif call.function == FINALIZE:
            state = (
                CampaignState.SUCCEEDED
                if campaign.raised >= campaign.goal
                else CampaignState.FAILED
            )
            self.objects[campaign_id] = dataclasses.replace(campaign, state=state)
            self.add_event(
                make_event(LedgerEventKind.FINALIZED, campaign_id, None, self.now_ms, tx_digest=digest)
            )
        elif call.function == FORCE_SUCCEEDED:
            self.objects[campaign_id] = dataclasses.replace(
                campaign, state=CampaignState.SUCCEEDED
            )
        elif call.function == WITHDRAW:
            self.objects[campaign_id] = dataclasses.replace(campaign, withdrawn=True)
            self.add_event(
                make_event(
                    LedgerEventKind.WITHDRAWN, campaign_id, campaign.raised, self.now_ms, tx_digest=digest
                )
            )
        elif call.function == CANCEL_CAMPAIGN:
            del self.objects[campaign_id]


@pytest.fixture
def fake_ledger() -> FakeLedgerService:
    return FakeLedgerService()


@pytest.fixture
def simulated_ledger() -> FakeLedgerService:
    return FakeLedgerService(simulate=True)


@pytest.fixture
def transactions() -> CrowdfundTransactions:
    return CrowdfundTransactions(PACKAGE_ID)


@pytest.fixture
def sample_campaign() -> Campaign:
    return make_campaign()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow-running")
