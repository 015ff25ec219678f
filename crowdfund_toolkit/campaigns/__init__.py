"""Campaign module: models, lifecycle rules and the client-side core."""

from .metadata import CampaignMetadata, decode_metadata, encode_metadata, slugify
from .models import (
    Campaign,
    CampaignState,
    DonationReceipt,
    LedgerEvent,
    LedgerEventKind,
    OperationOutcome,
    OperationStatus,
    ReconciledBalance,
    ReconciledView,
    WithdrawalStatus,
)

__all__ = [
    "Campaign",
    "CampaignMetadata",
    "CampaignState",
    "DonationReceipt",
    "LedgerEvent",
    "LedgerEventKind",
    "OperationOutcome",
    "OperationStatus",
    "ReconciledBalance",
    "ReconciledView",
    "WithdrawalStatus",
    "decode_metadata",
    "encode_metadata",
    "slugify",
]
