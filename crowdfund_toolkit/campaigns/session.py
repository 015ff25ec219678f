"""
CampaignSession - one open campaign view.

A session owns the latest campaign snapshot, the pending-operation flag and
the polling tasks it started. Only one mutating operation may be in flight
per session; a second request raises OperationInProgress. ``close()`` stops
any polling the session started (navigating away). Transactions already
submitted cannot be recalled.
"""

import asyncio
import time
from typing import Callable, List, Optional, Set

from crowdfund_toolkit.campaigns import state_machine
from crowdfund_toolkit.campaigns.executor import Fallback, OperationExecutor
from crowdfund_toolkit.campaigns.models import (
    Campaign,
    DonationReceipt,
    OperationOutcome,
    OperationStatus,
    ReconciledView,
    WithdrawalStatus,
)
from crowdfund_toolkit.campaigns.reconciler import BalanceReconciler
from crowdfund_toolkit.campaigns.state_machine import Action
from crowdfund_toolkit.campaigns.transactions import CrowdfundTransactions
from crowdfund_toolkit.shared.exceptions import (
    OperationInProgress,
    PreconditionFailed,
)
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.results import Result
from crowdfund_toolkit.shared.services.ledger_service import LedgerService

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class CampaignSession:
    """
    Campaign view bound to one canonical id.

    Attributes:
        campaign_id: Canonical campaign id
        snapshot: Last campaign object read, None before the first load
        deleted: True once the object has disappeared (cancelled campaign)
        pending: Name of the operation in flight, if any
        executor: Executor whose refresh re-reads this session's snapshot
    """

    def __init__(
        self,
        campaign_id: str,
        ledger: LedgerService,
        transactions: CrowdfundTransactions,
        reconciler: Optional[BalanceReconciler] = None,
        sender: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.campaign_id = campaign_id
        self.ledger = ledger
        self.transactions = transactions
        self.reconciler = reconciler or BalanceReconciler(ledger)
        self.sender = sender
        self.clock = clock

        self.snapshot: Optional[Campaign] = None
        self.deleted = False
        self.pending: Optional[str] = None
        self.closed = False
        self.executor = OperationExecutor(ledger, refresh=self.refresh)
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    async def refresh(self) -> Optional[Campaign]:
        """Re-read the campaign object. Terminal states never move backwards."""
        campaign = await self.ledger.get_object(self.campaign_id)
        if campaign is None:
            if self.snapshot is not None:
                logger.info(f"Campaign {self.campaign_id} no longer exists")
            self.snapshot = None
            self.deleted = True
            return None

        previous = self.snapshot
        if previous is not None and not state_machine.is_valid_transition(
            previous.state, campaign.state
        ):
            logger.warning(
                f"Ignoring stale read of {self.campaign_id}: "
                f"{previous.state.label} -> {campaign.state.label}"
            )
            return previous

        self.snapshot = campaign
        return campaign

    async def current(self) -> Campaign:
        """Latest snapshot, loading it on first use."""
        if self.snapshot is None and not self.deleted:
            await self.refresh()
        if self.snapshot is None:
            raise PreconditionFailed("open", f"campaign {self.campaign_id} not found")
        return self.snapshot

    # -------------------------------------------------------------------------
    # Task and pending bookkeeping
    # -------------------------------------------------------------------------

    def _begin(self, operation: str) -> None:
        if self.closed:
            raise PreconditionFailed(operation, "view is closed")
        if self.pending is not None:
            raise OperationInProgress(operation, self.pending)
        self.pending = operation

    def _end(self) -> None:
        self.pending = None

    def track(self, coro) -> asyncio.Task:
        """Run ``coro`` as a task cancelled by ``close()``."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def close(self) -> None:
        """Stop pending polling loops started by this view."""
        self.closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"Cancelled {len(tasks)} polling task(s) for {self.campaign_id}")

    async def __aenter__(self) -> "CampaignSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Mutating operations
    # -------------------------------------------------------------------------

    async def donate(self, amount_mist: int) -> OperationOutcome:
        self._begin(Action.DONATE.value)
        try:
            campaign = await self.current()
            state_machine.check(
                Action.DONATE, campaign, sender=self.sender, amount=amount_mist
            )
            return await self.executor.execute(
                Action.DONATE.value,
                lambda: self.transactions.donate(self.campaign_id, amount_mist),
            )
        finally:
            self._end()

    async def finalize(self) -> OperationOutcome:
        self._begin(Action.FINALIZE.value)
        try:
            campaign = await self.current()
            state_machine.check(Action.FINALIZE, campaign, sender=self.sender)
            expected = state_machine.expected_finalize_state(campaign)
            outcome = await self.executor.execute(
                Action.FINALIZE.value,
                lambda: self.transactions.finalize(self.campaign_id),
            )
            if outcome.succeeded and self.snapshot is not None:
                logger.info(
                    f"Campaign {self.campaign_id} finalized as "
                    f"{self.snapshot.state.label} (expected {expected.label})"
                )
            return outcome
        finally:
            self._end()

    async def withdraw(self) -> OperationOutcome:
        """
        Withdraw the treasury of a succeeded campaign.

        Refused before submission unless the reconciled status is
        NOT_WITHDRAWN. After finality the reconciler is polled for
        confirmation; if it never arrives the outcome is UNCONFIRMED and
        further withdrawals stay blocked.
        """
        self._begin(Action.WITHDRAW.value)
        try:
            campaign = await self.current()
            state_machine.check(Action.WITHDRAW, campaign, sender=self.sender)
            status = await self.reconciler.withdrawal_status(
                self.campaign_id, snapshot=campaign
            )
            state_machine.check_withdrawal_status(status)

            return await self.executor.execute(
                Action.WITHDRAW.value,
                lambda: self.transactions.withdraw(self.campaign_id),
                on_success=self._confirm_withdrawal,
            )
        finally:
            self._end()

    async def _confirm_withdrawal(self, outcome: OperationOutcome) -> None:
        self.reconciler.mark_submitted(self.campaign_id)
        if self.snapshot is not None and self.snapshot.withdrawn:
            self.reconciler.mark_withdrawn(self.campaign_id)
            return

        task = self.track(
            self.reconciler.await_withdrawal_confirmation(self.campaign_id)
        )
        try:
            status = await task
        except asyncio.CancelledError:
            # close() stopped the confirmation poll
            if not self.closed:
                raise
            status = WithdrawalStatus.UNCONFIRMED
        if status is not WithdrawalStatus.WITHDRAWN:
            outcome.status = OperationStatus.UNCONFIRMED
            outcome.message = (
                "Withdrawal finalized but not yet visible on the ledger; "
                "status unconfirmed"
            )

    async def force_succeed(self) -> OperationOutcome:
        """
        Owner override: mark an active campaign succeeded regardless of goal
        and deadline. Falls back to ``finalize`` once if the deployed contract
        lacks the entry function. Every attempt lands in the audit trail.
        """
        self._begin(Action.FORCE_SUCCEED.value)
        try:
            campaign = await self.current()
            state_machine.check(Action.FORCE_SUCCEED, campaign, sender=self.sender)
            outcome = await self.executor.execute(
                Action.FORCE_SUCCEED.value,
                lambda: self.transactions.force_succeeded(self.campaign_id),
                fallback=Fallback(
                    Action.FINALIZE.value,
                    lambda: self.transactions.finalize(self.campaign_id),
                ),
            )
            self.executor.record_override(
                outcome,
                campaign_id=self.campaign_id,
                operator=self.sender,
                requested=Action.FORCE_SUCCEED.value,
            )
            return outcome
        finally:
            self._end()

    async def refund(
        self, receipt_id: str, receipt: Optional[DonationReceipt] = None
    ) -> OperationOutcome:
        self._begin(Action.REFUND.value)
        try:
            campaign = await self.current()
            state_machine.check(
                Action.REFUND, campaign, sender=self.sender, receipt=receipt
            )
            return await self.executor.execute(
                Action.REFUND.value,
                lambda: self.transactions.refund(self.campaign_id, receipt_id),
            )
        finally:
            self._end()

    async def cancel(self) -> OperationOutcome:
        self._begin(Action.CANCEL.value)
        try:
            campaign = await self.current()
            state_machine.check(Action.CANCEL, campaign, sender=self.sender)
            return await self.executor.execute(
                Action.CANCEL.value,
                lambda: self.transactions.cancel_campaign(self.campaign_id),
            )
        finally:
            self._end()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def reconciled_view(self) -> Result[ReconciledView]:
        """Verification panel data. Provisional while an operation is pending."""
        campaign = await self.refresh()
        if campaign is None:
            return Result.fail_with_message(
                source="session",
                message=f"Campaign {self.campaign_id} not found",
                context={"campaign_id": self.campaign_id},
            )
        result = await self.reconciler.reconcile(campaign)
        if self.pending is not None:
            result.add_warning(
                source="session",
                message=f"'{self.pending}' in flight, values are provisional",
                context={"campaign_id": self.campaign_id},
            )
        return result

    async def available_actions(self, has_receipt: bool = False) -> List[Action]:
        campaign = await self.current()
        status = None
        if campaign.state.is_terminal:
            status = await self.reconciler.withdrawal_status(
                self.campaign_id, snapshot=campaign
            )
        return state_machine.available_actions(
            campaign,
            self.clock(),
            sender=self.sender,
            withdrawal_status=status,
            has_receipt=has_receipt,
        )
