"""
Campaign metadata codec.

A campaign carries an opaque byte blob (``metadata_cid`` on chain) that holds
a UTF-8 JSON record ``{"title", "description", "imageUrl"}``. Decoding never
fails: unreadable metadata falls back to fixed defaults so that a corrupted
blob can never block a funds-related operation.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from crowdfund_toolkit.shared.constants import CrowdfundConstants
from crowdfund_toolkit.shared.logging import get_logger

logger = get_logger(__name__)

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class CampaignMetadata:
    """Decoded campaign metadata."""

    title: str
    description: str
    image_url: Optional[str] = None

    @property
    def slug(self) -> str:
        return slugify(self.title)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
        }


DEFAULT_METADATA = CampaignMetadata(
    title=CrowdfundConstants.DEFAULT_TITLE,
    description=CrowdfundConstants.DEFAULT_DESCRIPTION,
)


def encode_metadata(
    title: str, description: str, image_url: Optional[str] = None
) -> bytes:
    """Serialize a metadata record to the on-chain byte blob."""
    record: Dict[str, Any] = {"title": title, "description": description}
    if image_url:
        record["imageUrl"] = image_url
    return json.dumps(record, ensure_ascii=False).encode("utf-8")


def decode_metadata(
    blob: Union[bytes, bytearray, Iterable[int], str, None],
) -> CampaignMetadata:
    """
    Parse a metadata blob into a CampaignMetadata record.

    Accepts raw bytes, the list-of-ints shape the RPC returns for
    ``vector<u8>`` fields, or an already-decoded string. Any malformation
    yields DEFAULT_METADATA.
    """
    if blob is None:
        return DEFAULT_METADATA

    try:
        if isinstance(blob, str):
            text = blob
        else:
            text = bytes(blob).decode("utf-8")
        record = json.loads(text)
    except (TypeError, ValueError) as e:
        # ValueError covers UnicodeDecodeError, JSONDecodeError and bad byte values
        logger.debug(f"Unreadable campaign metadata, using defaults: {e}")
        return DEFAULT_METADATA

    if not isinstance(record, dict):
        return DEFAULT_METADATA

    title = record.get("title")
    description = record.get("description")
    image_url = record.get("imageUrl")

    return CampaignMetadata(
        title=title if isinstance(title, str) and title.strip() else DEFAULT_METADATA.title,
        description=(
            description
            if isinstance(description, str) and description.strip()
            else DEFAULT_METADATA.description
        ),
        image_url=image_url if isinstance(image_url, str) and image_url else None,
    )


def slugify(title: str) -> str:
    """
    Derive a URL-safe slug from a title.

    Lowercase, collapse every non-alphanumeric run to one hyphen, trim
    hyphens at both ends, truncate to 50 characters. The trim runs again
    after truncation so the result is a fixed point:
    ``slugify(slugify(x)) == slugify(x)``.
    """
    if not title:
        return ""
    slug = _NON_ALNUM_RUN.sub("-", title.lower()).strip("-")
    return slug[: CrowdfundConstants.SLUG_MAX_LENGTH].strip("-")
