"""
Transaction builders for the crowdfunding Move module.

A TransactionPayload is an ordered list of programmable-transaction commands
(coin splits and Move calls). Builders only describe the transaction; turning
it into signed bytes is the signer's job (see ledger_service).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from crowdfund_toolkit.campaigns.metadata import encode_metadata
from crowdfund_toolkit.shared.constants import CrowdfundConstants

# Entry functions of the crowd module
CREATE_CAMPAIGN = "create_campaign"
DONATE = "donate"
FINALIZE = "finalize"
WITHDRAW = "withdraw"
REFUND = "refund"
FORCE_SUCCEEDED = "force_succeeded"
CANCEL_CAMPAIGN = "cancel_campaign"


@dataclass(frozen=True)
class ObjectArg:
    object_id: str


@dataclass(frozen=True)
class PureArg:
    type: str  # Move type, e.g. "u64" or "vector<u8>"
    value: Any


@dataclass(frozen=True)
class ResultArg:
    """Output ``index`` of command ``command``."""

    command: int
    index: int = 0


Argument = Union[ObjectArg, PureArg, ResultArg]


@dataclass(frozen=True)
class SplitCoins:
    """Split exact amounts off the gas coin."""

    amounts: List[int]


@dataclass(frozen=True)
class MoveCall:
    package: str
    module: str
    function: str
    arguments: List[Argument] = field(default_factory=list)

    @property
    def target(self) -> str:
        return f"{self.package}::{self.module}::{self.function}"


Command = Union[SplitCoins, MoveCall]


@dataclass
class TransactionPayload:
    commands: List[Command] = field(default_factory=list)
    gas_budget: int = CrowdfundConstants.DEFAULT_GAS_BUDGET

    def is_empty(self) -> bool:
        """True when nothing would execute on chain."""
        return not any(isinstance(c, MoveCall) for c in self.commands)

    @property
    def move_calls(self) -> List[MoveCall]:
        return [c for c in self.commands if isinstance(c, MoveCall)]

    @property
    def function(self) -> Optional[str]:
        calls = self.move_calls
        return calls[-1].function if calls else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gas_budget": self.gas_budget,
            "commands": [
                {"split_coins": c.amounts}
                if isinstance(c, SplitCoins)
                else {
                    "move_call": c.target,
                    "arguments": [repr(a) for a in c.arguments],
                }
                for c in self.commands
            ],
        }


class CrowdfundTransactions:
    """Builds payloads for one deployed crowdfunding package."""

    def __init__(self, package_id: str, module: str = CrowdfundConstants.MODULE):
        self.package_id = package_id
        self.module = module

    def _call(self, function: str, *arguments: Argument) -> MoveCall:
        return MoveCall(
            package=self.package_id,
            module=self.module,
            function=function,
            arguments=list(arguments),
        )

    @staticmethod
    def _clock() -> ObjectArg:
        return ObjectArg(CrowdfundConstants.CLOCK_OBJECT_ID)

    def create_campaign(
        self,
        goal_mist: int,
        deadline_ms: int,
        title: str,
        description: str,
        image_url: Optional[str] = None,
    ) -> TransactionPayload:
        blob = list(encode_metadata(title, description, image_url))
        return TransactionPayload(
            commands=[
                self._call(
                    CREATE_CAMPAIGN,
                    PureArg("u64", goal_mist),
                    PureArg("u64", deadline_ms),
                    PureArg("vector<u8>", blob),
                )
            ]
        )

    def donate(self, campaign_id: str, amount_mist: int) -> TransactionPayload:
        return TransactionPayload(
            commands=[
                SplitCoins([amount_mist]),
                self._call(
                    DONATE,
                    ObjectArg(campaign_id),
                    ResultArg(command=0),
                    self._clock(),
                ),
            ]
        )

    def finalize(self, campaign_id: str) -> TransactionPayload:
        return TransactionPayload(
            commands=[self._call(FINALIZE, ObjectArg(campaign_id), self._clock())]
        )

    def withdraw(self, campaign_id: str) -> TransactionPayload:
        return TransactionPayload(
            commands=[self._call(WITHDRAW, ObjectArg(campaign_id))]
        )

    def refund(self, campaign_id: str, receipt_id: str) -> TransactionPayload:
        return TransactionPayload(
            commands=[
                self._call(REFUND, ObjectArg(campaign_id), ObjectArg(receipt_id))
            ]
        )

    def force_succeeded(self, campaign_id: str) -> TransactionPayload:
        return TransactionPayload(
            commands=[self._call(FORCE_SUCCEEDED, ObjectArg(campaign_id))]
        )

    def cancel_campaign(self, campaign_id: str) -> TransactionPayload:
        return TransactionPayload(
            commands=[self._call(CANCEL_CAMPAIGN, ObjectArg(campaign_id))]
        )
