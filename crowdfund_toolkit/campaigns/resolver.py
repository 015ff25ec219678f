"""
IdentifierResolver - turn a user-supplied string into a canonical campaign id.

Resolution order:
1. Canonical id format -> returned unchanged, no lookup
2. Local identifier cache -> returned optimistically, no remote call
3. Scan of CampaignCreated events (newest first, bounded window): first an
   exact slug match, then a case-insensitive title substring match

Not-found is ``None``. Only a failed event query raises; a campaign object
that cannot be read during the scan is skipped.
"""

from typing import List, Optional

from eth_utils import is_hexstr, remove_0x_prefix

from crowdfund_toolkit.campaigns.metadata import slugify
from crowdfund_toolkit.campaigns.models import (
    Campaign,
    EventOrder,
    LedgerEventKind,
)
from crowdfund_toolkit.shared.constants import CrowdfundConstants
from crowdfund_toolkit.shared.exceptions import RetryableException
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.services.ledger_service import LedgerService
from crowdfund_toolkit.utils.cache import IdentifierStore

logger = get_logger(__name__)

OBJECT_ID_HEX_LENGTH = 64


def is_canonical_id(identifier: str) -> bool:
    """True for a 0x-prefixed 32-byte hex object id."""
    if not isinstance(identifier, str) or not identifier.startswith("0x"):
        return False
    if not is_hexstr(identifier):
        return False
    return len(remove_0x_prefix(identifier)) == OBJECT_ID_HEX_LENGTH


class IdentifierResolver:
    """Resolves ids, slugs and partial titles to canonical campaign ids."""

    def __init__(
        self,
        ledger: LedgerService,
        store: IdentifierStore,
        scan_limit: int = CrowdfundConstants.EVENT_PAGE_LIMIT,
    ):
        self.ledger = ledger
        self.store = store
        self.scan_limit = scan_limit

    async def cached(self, identifier: str) -> Optional[str]:
        hit = await self.store.get(identifier)
        if hit is None:
            slug = slugify(identifier)
            if slug and slug != identifier:
                hit = await self.store.get(slug)
        return hit

    async def scan(self) -> List[Campaign]:
        """
        Campaigns referenced by the newest Created events, newest first.

        Raises:
            RetryableException: the event query itself failed
        """
        page = await self.ledger.query_events(
            LedgerEventKind.CREATED,
            limit=self.scan_limit,
            order=EventOrder.DESCENDING,
        )

        campaigns: List[Campaign] = []
        seen = set()
        for event in page.events:
            if event.campaign_id in seen:
                continue
            seen.add(event.campaign_id)
            try:
                campaign = await self.ledger.get_object(event.campaign_id)
            except RetryableException as e:
                logger.warning(f"Skipping campaign {event.campaign_id}: {e}")
                continue
            if campaign is None:
                logger.debug(f"Campaign {event.campaign_id} no longer exists")
                continue
            campaigns.append(campaign)
        return campaigns

    @staticmethod
    def match(identifier: str, campaigns: List[Campaign]) -> Optional[Campaign]:
        """Exact slug match first, then title substring, in the given order."""
        wanted_slug = slugify(identifier)
        if wanted_slug:
            for campaign in campaigns:
                if campaign.slug == wanted_slug:
                    return campaign

        needle = identifier.strip().lower()
        if needle:
            for campaign in campaigns:
                if needle in campaign.title.lower():
                    return campaign
        return None

    async def remember(self, identifier: str, campaign: Campaign) -> None:
        """Write cache entries for a resolved campaign."""
        if campaign.slug:
            await self.store.set(campaign.slug, campaign.id)
        key = slugify(identifier)
        if key and key != campaign.slug:
            await self.store.set(key, campaign.id)

    async def resolve(self, identifier: str) -> Optional[str]:
        """
        Resolve ``identifier`` to a canonical campaign id.

        Returns:
            The canonical id, or None when nothing in the scan window matches

        Raises:
            RetryableException: the event scan could not be performed
        """
        identifier = identifier.strip()
        if not identifier:
            return None

        if is_canonical_id(identifier):
            return identifier

        hit = await self.cached(identifier)
        if hit is not None:
            logger.debug(f"Resolved '{identifier}' from cache -> {hit}")
            return hit

        logger.info(f"Resolving '{identifier}' by scanning recent campaigns")
        campaign = self.match(identifier, await self.scan())
        if campaign is None:
            logger.info(f"No campaign matches '{identifier}'")
            return None

        logger.info(f"Resolved '{identifier}' -> {campaign.id} ({campaign.title})")
        await self.remember(identifier, campaign)
        return campaign.id
