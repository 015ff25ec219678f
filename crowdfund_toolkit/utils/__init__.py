from crowdfund_toolkit.utils.cache import (
    FileIdentifierStore,
    IdentifierStore,
    InMemoryIdentifierStore,
)
from crowdfund_toolkit.utils.campaign_utils import (
    format_countdown,
    mist_to_sui,
    progress_percentage,
    sui_to_mist,
)

__all__ = [
    "IdentifierStore",
    "InMemoryIdentifierStore",
    "FileIdentifierStore",
    "format_countdown",
    "mist_to_sui",
    "progress_percentage",
    "sui_to_mist",
]
