"""
BalanceReconciler - decide whether a campaign treasury has been paid out.

Two independent signals:
- Signal A: the ``withdrawn`` flag on the live campaign object
- Signal B: a Withdrawn event for the campaign in the event log

Either signal asserting "withdrawn" wins (monotonic OR), and once a campaign
has been seen withdrawn the answer is latched for the lifetime of the
reconciler. A zero balance alone is never taken as proof of withdrawal.

Status is tri-state. NOT_WITHDRAWN requires both signals to have been read
and to agree. A missing signal, or a withdrawal submitted but not yet
visible, yields UNCONFIRMED. If Signal A is wrong and Signal B stays
unreadable, a real withdrawal remains UNCONFIRMED; that limitation is
reported, not guessed away.
"""

import asyncio
from typing import Optional, Set

from crowdfund_toolkit.campaigns.ledger import FundsLedgerBuilder
from crowdfund_toolkit.campaigns.models import (
    Campaign,
    LedgerEventKind,
    ReconciledView,
    WithdrawalStatus,
)
from crowdfund_toolkit.shared.constants import WITHDRAWAL_CONFIRMATION_POLICY
from crowdfund_toolkit.shared.exceptions import RetryableException
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.results import Result
from crowdfund_toolkit.shared.retry import PollPolicy, poll_until
from crowdfund_toolkit.shared.services.ledger_service import LedgerService

logger = get_logger(__name__)


class BalanceReconciler:
    """Reconciles withdrawal status from object state and the event log."""

    def __init__(
        self,
        ledger: LedgerService,
        ledger_builder: Optional[FundsLedgerBuilder] = None,
        confirmation_policy: PollPolicy = WITHDRAWAL_CONFIRMATION_POLICY,
    ):
        self.ledger = ledger
        self.ledger_builder = ledger_builder or FundsLedgerBuilder(ledger)
        self.confirmation_policy = confirmation_policy
        self._withdrawn: Set[str] = set()
        self._awaiting_confirmation: Set[str] = set()

    def is_latched(self, campaign_id: str) -> bool:
        return campaign_id in self._withdrawn

    def is_awaiting_confirmation(self, campaign_id: str) -> bool:
        return campaign_id in self._awaiting_confirmation

    def mark_withdrawn(self, campaign_id: str) -> WithdrawalStatus:
        self._withdrawn.add(campaign_id)
        self._awaiting_confirmation.discard(campaign_id)
        return WithdrawalStatus.WITHDRAWN

    async def object_signal(
        self, campaign_id: str, snapshot: Optional[Campaign] = None
    ) -> Optional[bool]:
        """Signal A. None when the object could not be read."""
        if snapshot is not None:
            return snapshot.withdrawn
        try:
            campaign = await self.ledger.get_object(campaign_id)
        except RetryableException as e:
            logger.warning(f"Signal A unavailable for {campaign_id}: {e}")
            return None
        if campaign is None:
            return None
        return campaign.withdrawn

    async def event_signal(self, campaign_id: str) -> Optional[bool]:
        """
        Signal B. None when the Withdrawn events could not be queried.

        The scan starts at the newest page and stops at the first match, so a
        fresh withdrawal is always inside the page budget. A scan cut short
        without a match reads as False; older withdrawals are carried by
        Signal A by then.
        """
        try:
            scan = await self.ledger_builder.fetch_kind(
                campaign_id, LedgerEventKind.WITHDRAWN, first_match=True
            )
        except RetryableException as e:
            logger.warning(f"Signal B unavailable for {campaign_id}: {e}")
            return None
        return len(scan.events) > 0

    async def withdrawal_status(
        self, campaign_id: str, snapshot: Optional[Campaign] = None
    ) -> WithdrawalStatus:
        """
        Reconcile both signals into a WithdrawalStatus.

        Args:
            campaign_id: Canonical campaign id
            snapshot: Freshly read campaign object, saves one Signal A lookup
        """
        if campaign_id in self._withdrawn:
            return WithdrawalStatus.WITHDRAWN

        signal_a, signal_b = await asyncio.gather(
            self.object_signal(campaign_id, snapshot),
            self.event_signal(campaign_id),
        )
        return self.decide(campaign_id, signal_a, signal_b)

    def decide(
        self,
        campaign_id: str,
        signal_a: Optional[bool],
        signal_b: Optional[bool],
    ) -> WithdrawalStatus:
        """Combine two signals; None means the signal could not be read."""
        if campaign_id in self._withdrawn:
            return WithdrawalStatus.WITHDRAWN

        if signal_a or signal_b:
            if signal_a != signal_b:
                logger.info(
                    f"Withdrawal signals disagree for {campaign_id} "
                    f"(object={signal_a}, events={signal_b}); treating as withdrawn"
                )
            return self.mark_withdrawn(campaign_id)

        if signal_a is None or signal_b is None:
            return WithdrawalStatus.UNCONFIRMED
        if campaign_id in self._awaiting_confirmation:
            return WithdrawalStatus.UNCONFIRMED
        return WithdrawalStatus.NOT_WITHDRAWN

    async def is_withdrawn(
        self, campaign_id: str, snapshot: Optional[Campaign] = None
    ) -> bool:
        status = await self.withdrawal_status(campaign_id, snapshot)
        return status is WithdrawalStatus.WITHDRAWN

    async def reconcile(self, campaign: Campaign) -> Result[ReconciledView]:
        """
        Build the verification view of ``campaign``.

        Signal B comes from the replayed ledger, so the Withdrawn events are
        queried once. Degraded event kinds and a mismatch between the live
        ``raised`` field and the replayed donations are attached as warnings.
        """
        funds = await self.ledger_builder.build_ledger(campaign.id)

        if funds.has_event(LedgerEventKind.WITHDRAWN):
            signal_b = True
        elif LedgerEventKind.WITHDRAWN in funds.degraded_kinds:
            signal_b = None
        else:
            signal_b = False
        status = self.decide(campaign.id, campaign.withdrawn, signal_b)

        audit = funds.audit(campaign)
        view = ReconciledView(
            campaign=campaign,
            balance=funds.totals,
            withdrawal_status=status,
            audit=audit,
            ledger_complete=funds.is_complete,
        )
        result = Result.ok(view)
        for error in funds.errors:
            result.add_error(error)

        if funds.is_complete and not audit.consistent:
            logger.warning(
                f"Balance mismatch for {campaign.id}: live raised "
                f"{audit.live_raised}, ledger donations {audit.ledger_donated}"
            )
            result.add_warning(
                source="reconciler",
                message=(
                    f"Live raised ({audit.live_raised}) differs from replayed "
                    f"donations ({audit.ledger_donated}) by {audit.discrepancy}"
                ),
                context={"campaign_id": campaign.id},
            )
        return result

    def mark_submitted(self, campaign_id: str) -> None:
        """A withdrawal was accepted; hold UNCONFIRMED until a signal flips."""
        if campaign_id not in self._withdrawn:
            self._awaiting_confirmation.add(campaign_id)

    async def await_withdrawal_confirmation(
        self, campaign_id: str, policy: Optional[PollPolicy] = None
    ) -> WithdrawalStatus:
        """
        Poll Signal B after a withdrawal until it flips or attempts run out.

        Returns WITHDRAWN, or UNCONFIRMED when the budget is exhausted. The
        campaign stays marked as awaiting confirmation in the latter case.
        """
        self.mark_submitted(campaign_id)
        policy = policy or self.confirmation_policy

        _, confirmed = await poll_until(
            lambda: self.event_signal(campaign_id),
            policy,
            operation_name=f"withdrawal confirmation {campaign_id}",
        )
        if confirmed:
            return self.mark_withdrawn(campaign_id)

        logger.warning(
            f"Withdrawal of {campaign_id} submitted but not yet visible "
            f"after {policy.max_attempts} checks"
        )
        return WithdrawalStatus.UNCONFIRMED
