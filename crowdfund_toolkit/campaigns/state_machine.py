"""
Campaign lifecycle rules.

    ACTIVE --finalize (raised >= goal)--> SUCCEEDED
    ACTIVE --finalize (raised <  goal)--> FAILED
    ACTIVE --force_succeed (owner)-----> SUCCEEDED
    ACTIVE --cancel (owner, raised 0)--> deleted

SUCCEEDED and FAILED are absorbing. Within SUCCEEDED the owner may withdraw
once; within FAILED each receipt may be refunded once.

Guards here run before anything is submitted. Deadline checks are left to the
contract (abort codes 3 and 6); ``available_actions`` only hides the action.
"""

from enum import Enum
from typing import List, Optional

from crowdfund_toolkit.campaigns.models import (
    Campaign,
    CampaignState,
    DonationReceipt,
    WithdrawalStatus,
)
from crowdfund_toolkit.shared.exceptions import PreconditionFailed


class Action(Enum):
    """User-visible mutating actions on a campaign."""

    DONATE = "donate"
    FINALIZE = "finalize"
    WITHDRAW = "withdraw"
    FORCE_SUCCEED = "force_succeed"
    REFUND = "refund"
    CANCEL = "cancel"


OWNER_ACTIONS = (Action.WITHDRAW, Action.FORCE_SUCCEED, Action.CANCEL)

_REQUIRED_STATE = {
    Action.DONATE: CampaignState.ACTIVE,
    Action.FINALIZE: CampaignState.ACTIVE,
    Action.FORCE_SUCCEED: CampaignState.ACTIVE,
    Action.CANCEL: CampaignState.ACTIVE,
    Action.WITHDRAW: CampaignState.SUCCEEDED,
    Action.REFUND: CampaignState.FAILED,
}


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def is_valid_transition(before: CampaignState, after: CampaignState) -> bool:
    """Forward-only: ACTIVE may move anywhere, terminal states never change."""
    if before is CampaignState.ACTIVE:
        return True
    return before is after


def expected_finalize_state(campaign: Campaign) -> CampaignState:
    """State ``finalize`` produces once the deadline has passed."""
    if campaign.raised >= campaign.goal:
        return CampaignState.SUCCEEDED
    return CampaignState.FAILED


def check(
    action: Action,
    campaign: Campaign,
    sender: Optional[str] = None,
    amount: Optional[int] = None,
    receipt: Optional[DonationReceipt] = None,
) -> None:
    """
    Refuse ``action`` on ``campaign`` when the lifecycle forbids it.

    Owner checks apply only when ``sender`` is known; without a sender nothing
    can be signed anyway.

    Raises:
        PreconditionFailed: with a human-readable reason
    """
    required = _REQUIRED_STATE[action]
    if campaign.state is not required:
        raise PreconditionFailed(
            action.value,
            f"campaign is {campaign.state.label}, must be {required.label}",
        )

    if (
        action in OWNER_ACTIONS
        and sender is not None
        and not same_address(sender, campaign.owner)
    ):
        raise PreconditionFailed(action.value, "only the campaign owner can do this")

    if action is Action.DONATE and (amount is None or amount <= 0):
        raise PreconditionFailed(action.value, "amount must be positive")

    if action is Action.CANCEL and campaign.raised > 0:
        raise PreconditionFailed(
            action.value, "donations have been made, campaign cannot be cancelled"
        )

    if action is Action.REFUND and receipt is not None:
        if receipt.campaign_id != campaign.id:
            raise PreconditionFailed(
                action.value, "receipt belongs to a different campaign"
            )
        if sender is not None and not same_address(sender, receipt.donor):
            raise PreconditionFailed(action.value, "receipt is not owned by sender")


def check_withdrawal_status(status: WithdrawalStatus) -> None:
    """Withdraw is single-shot; an unconfirmed status blocks it too."""
    if status is WithdrawalStatus.WITHDRAWN:
        raise PreconditionFailed(Action.WITHDRAW.value, "funds already withdrawn")
    if status is WithdrawalStatus.UNCONFIRMED:
        raise PreconditionFailed(
            Action.WITHDRAW.value,
            "withdrawal status is unconfirmed, wait for the ledger to catch up",
        )


def available_actions(
    campaign: Campaign,
    now_ms: int,
    sender: Optional[str] = None,
    withdrawal_status: Optional[WithdrawalStatus] = None,
    has_receipt: bool = False,
) -> List[Action]:
    """Actions the UI should offer right now."""
    is_owner = same_address(sender, campaign.owner)
    actions: List[Action] = []

    if campaign.state is CampaignState.ACTIVE:
        if campaign.deadline_passed(now_ms):
            actions.append(Action.FINALIZE)
        else:
            actions.append(Action.DONATE)
        if is_owner:
            actions.append(Action.FORCE_SUCCEED)
            if campaign.raised == 0:
                actions.append(Action.CANCEL)

    elif campaign.state is CampaignState.SUCCEEDED:
        if is_owner and withdrawal_status is WithdrawalStatus.NOT_WITHDRAWN:
            actions.append(Action.WITHDRAW)

    elif campaign.state is CampaignState.FAILED:
        if has_receipt:
            actions.append(Action.REFUND)

    return actions
