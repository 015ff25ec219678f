"""
Type definitions for crowdfunding campaigns.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from crowdfund_toolkit.campaigns.metadata import (
    CampaignMetadata,
    decode_metadata,
)
from crowdfund_toolkit.shared.results import ProcessingError

# =============================================================================
# ENUMS
# =============================================================================


class CampaignState(IntEnum):
    """Campaign state as stored by the contract. Terminal states are absorbing."""

    ACTIVE = 0
    SUCCEEDED = 1
    FAILED = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self is not CampaignState.ACTIVE


class LedgerEventKind(Enum):
    """Event types emitted by the crowdfunding module."""

    CREATED = "CampaignCreated"
    DONATED = "Donated"
    WITHDRAWN = "Withdrawn"
    REFUNDED = "Refunded"
    FINALIZED = "Finalized"


class EventOrder(Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class WithdrawalStatus(Enum):
    """Reconciled withdrawal status of a campaign treasury."""

    WITHDRAWN = "withdrawn"
    NOT_WITHDRAWN = "not_withdrawn"
    UNCONFIRMED = "unconfirmed"  # Signals unavailable or confirmation lag


class OperationStatus(Enum):
    """Status of a mutating operation as rendered by the UI."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"  # Submitted and accepted, effects not yet observed


class FinalityStatus(Enum):
    FINALIZED = "finalized"
    TIMEOUT = "timeout"


class RejectionCode(Enum):
    """Structured reasons a submission was refused."""

    MOVE_ABORT = "move_abort"  # Contract aborted, see abort_code
    FUNCTION_NOT_FOUND = "function_not_found"  # Target entry function missing
    EMPTY_TRANSACTION = "empty_transaction"
    INSUFFICIENT_GAS = "insufficient_gas"
    OBJECT_NOT_FOUND = "object_not_found"
    UNKNOWN = "unknown"


class AbortCode(IntEnum):
    """Abort codes raised by the crowdfunding contract."""

    DEADLINE_NOT_REACHED = 3
    ALREADY_FINALIZED = 5
    DEADLINE_PASSED = 6
    NOT_SUCCEEDED = 7
    NOT_OWNER = 8
    DONATIONS_EXIST = 10


ABORT_REASONS: Dict[AbortCode, str] = {
    AbortCode.DEADLINE_NOT_REACHED: "Campaign deadline has not been reached yet",
    AbortCode.DEADLINE_PASSED: "Campaign deadline has passed (cannot donate anymore)",
    AbortCode.ALREADY_FINALIZED: "Campaign already finalized",
    AbortCode.NOT_SUCCEEDED: "Campaign has not succeeded (cannot withdraw)",
    AbortCode.NOT_OWNER: "You are not the campaign owner",
    AbortCode.DONATIONS_EXIST: "Cannot delete campaign - donations have been made",
}


# =============================================================================
# ENTITIES
# =============================================================================


@dataclass
class Campaign:
    """
    Read-only snapshot of a campaign object.

    Amounts are integers in MIST. ``metadata_blob`` is decoded lazily.
    """

    id: str
    owner: str
    goal: int
    raised: int
    deadline_ms: int
    state: CampaignState
    withdrawn: bool = False
    metadata_blob: bytes = b""
    _metadata: Optional[CampaignMetadata] = field(
        default=None, repr=False, compare=False
    )

    @property
    def metadata(self) -> CampaignMetadata:
        if self._metadata is None:
            self._metadata = decode_metadata(self.metadata_blob)
        return self._metadata

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def slug(self) -> str:
        return self.metadata.slug

    def deadline_passed(self, now_ms: int) -> bool:
        return now_ms >= self.deadline_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "goal": self.goal,
            "raised": self.raised,
            "deadline_ms": self.deadline_ms,
            "state": self.state.label,
            "withdrawn": self.withdrawn,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class DonationReceipt:
    """Donor-owned proof of one donation. Destroyed by a refund."""

    id: str
    campaign_id: str
    donor: str
    amount: int
    timestamp_ms: int


@dataclass(frozen=True)
class LedgerEvent:
    """One immutable event from the remote log."""

    kind: LedgerEventKind
    campaign_id: str
    timestamp_ms: int
    sequence_no: int
    tx_digest: str = ""
    amount: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        # Digest last keeps the order total across same-checkpoint transactions
        return (self.timestamp_ms, self.sequence_no, self.tx_digest)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "campaign_id": self.campaign_id,
            "amount": self.amount,
            "timestamp_ms": self.timestamp_ms,
            "sequence_no": self.sequence_no,
            "tx_digest": self.tx_digest,
        }


@dataclass
class EventPage:
    """One page of an event query."""

    events: List[LedgerEvent]
    next_cursor: Optional[Dict[str, Any]] = None
    has_next_page: bool = False


# =============================================================================
# RECONCILIATION
# =============================================================================


@dataclass(frozen=True)
class ReconciledBalance:
    """Balance derived by replaying the event log of one campaign."""

    total_donated: int = 0
    total_withdrawn: int = 0
    total_refunded: int = 0

    @property
    def current_balance(self) -> int:
        return self.total_donated - self.total_withdrawn - self.total_refunded

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_donated": self.total_donated,
            "total_withdrawn": self.total_withdrawn,
            "total_refunded": self.total_refunded,
            "current_balance": self.current_balance,
        }


@dataclass(frozen=True)
class BalanceAudit:
    """Comparison of the replayed ledger against the live ``raised`` field."""

    live_raised: int
    ledger_donated: int
    ledger_balance: int

    @property
    def discrepancy(self) -> int:
        return self.live_raised - self.ledger_donated

    @property
    def consistent(self) -> bool:
        return self.discrepancy == 0


@dataclass
class FundsLedger:
    """Ordered event history of a campaign with its totals."""

    campaign_id: str
    events: List[LedgerEvent]
    totals: ReconciledBalance
    errors: List[ProcessingError] = field(default_factory=list)
    degraded_kinds: List[LedgerEventKind] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.degraded_kinds

    def has_event(self, kind: LedgerEventKind) -> bool:
        return any(e.kind is kind for e in self.events)

    def audit(self, campaign: Campaign) -> BalanceAudit:
        return BalanceAudit(
            live_raised=campaign.raised,
            ledger_donated=self.totals.total_donated,
            ledger_balance=self.totals.current_balance,
        )


@dataclass
class ReconciledView:
    """Everything the verification panel renders for one campaign."""

    campaign: Campaign
    balance: ReconciledBalance
    withdrawal_status: WithdrawalStatus
    audit: BalanceAudit
    ledger_complete: bool = True

    @property
    def is_withdrawn(self) -> bool:
        return self.withdrawal_status is WithdrawalStatus.WITHDRAWN


# =============================================================================
# SUBMISSION
# =============================================================================


@dataclass(frozen=True)
class RejectionReason:
    """Structured rejection produced by the ledger adapter."""

    code: RejectionCode
    message: str = ""
    abort_code: Optional[int] = None

    def describe(self) -> str:
        """Human-readable reason for the UI."""
        if self.code is RejectionCode.MOVE_ABORT and self.abort_code is not None:
            try:
                return ABORT_REASONS[AbortCode(self.abort_code)]
            except ValueError:
                return f"Contract aborted with code {self.abort_code}"
        if self.code is RejectionCode.FUNCTION_NOT_FOUND:
            return "Operation is not supported by the deployed contract"
        if self.code is RejectionCode.EMPTY_TRANSACTION:
            return "Transaction has no commands"
        if self.code is RejectionCode.INSUFFICIENT_GAS:
            return "Insufficient gas to execute the transaction"
        if self.code is RejectionCode.OBJECT_NOT_FOUND:
            return "Referenced object does not exist"
        return self.message or "Transaction rejected"


@dataclass(frozen=True)
class SubmissionResult:
    accepted: bool
    digest: Optional[str] = None
    rejection: Optional[RejectionReason] = None


@dataclass
class OperationOutcome:
    """Typed outcome of a mutating operation."""

    operation: str
    status: OperationStatus
    digest: Optional[str] = None
    rejection: Optional[RejectionReason] = None
    message: str = ""
    fallback_from: Optional[str] = None  # Operation originally requested
    override: bool = False
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "status": self.status.value,
            "digest": self.digest,
            "rejection": self.rejection.code.value if self.rejection else None,
            "abort_code": self.rejection.abort_code if self.rejection else None,
            "message": self.message,
            "fallback_from": self.fallback_from,
            "override": self.override,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class AuditEntry:
    """Record of an owner override (forced settlement)."""

    operation: str
    campaign_id: str
    operator: Optional[str]
    status: OperationStatus
    timestamp_ms: int
    digest: Optional[str] = None
    executed_as: Optional[str] = None
