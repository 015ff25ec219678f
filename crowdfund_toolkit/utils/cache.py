"""
Local identifier cache: slug/name -> canonical campaign id, plus archival tags.

This module provides:
1. An abstract IdentifierStore the resolver and listings depend on
2. An in-memory store (tests, one-shot scripts)
3. A file-based persistent store (one JSON document under the cache dir)

Entries are advisory. A hit is returned optimistically by the resolver and is
never treated as authoritative over a remote lookup.
"""

import abc
import asyncio
import json
from pathlib import Path
from typing import Dict, Optional, Set, Union

from crowdfund_toolkit.shared.constants import CrowdfundConstants
from crowdfund_toolkit.shared.logging import get_logger

logger = get_logger(__name__)

CACHE_FILENAME = "identifiers.json"


class IdentifierStore(abc.ABC):
    """Key-value store of identifier -> canonical id, with archival tags."""

    @abc.abstractmethod
    async def get(self, identifier: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def set(self, identifier: str, campaign_id: str) -> None:
        ...

    @abc.abstractmethod
    async def archive(self, campaign_id: str) -> None:
        ...

    @abc.abstractmethod
    async def unarchive(self, campaign_id: str) -> None:
        ...

    @abc.abstractmethod
    async def archived_ids(self) -> Set[str]:
        ...


class InMemoryIdentifierStore(IdentifierStore):
    """Process-local store."""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self.entries: Dict[str, str] = dict(entries or {})
        self.archived: Set[str] = set()

    async def get(self, identifier: str) -> Optional[str]:
        return self.entries.get(identifier)

    async def set(self, identifier: str, campaign_id: str) -> None:
        self.entries[identifier] = campaign_id

    async def archive(self, campaign_id: str) -> None:
        self.archived.add(campaign_id)

    async def unarchive(self, campaign_id: str) -> None:
        self.archived.discard(campaign_id)

    async def archived_ids(self) -> Set[str]:
        return set(self.archived)


class FileIdentifierStore(IdentifierStore):
    """File-based persistent store. The whole map lives in one JSON file."""

    def __init__(self, cache_dir: Union[str, Path, None] = None):
        """
        Initialize the store.

        Args:
            cache_dir: Directory holding the cache file (default: CF_CACHE_DIR)
        """
        self.cache_dir = Path(cache_dir or CrowdfundConstants.CACHE_DIR)
        self.path = self.cache_dir / CACHE_FILENAME
        self._lock = asyncio.Lock()

    def _load(self) -> Dict[str, list]:
        empty = {"campaigns": {}, "archived": []}
        if not self.path.exists():
            return empty
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable identifier cache {self.path}: {e}")
            return empty
        if not isinstance(data, dict):
            return empty
        campaigns = data.get("campaigns")
        archived = data.get("archived")
        return {
            "campaigns": campaigns if isinstance(campaigns, dict) else {},
            "archived": archived if isinstance(archived, list) else [],
        }

    def _save(self, data: Dict[str, list]) -> None:
        """Write the map. A failed write is logged and the entry is dropped."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
        except OSError as e:
            logger.warning(f"Could not write identifier cache {self.path}: {e}")

    async def get(self, identifier: str) -> Optional[str]:
        async with self._lock:
            return self._load()["campaigns"].get(identifier)

    async def set(self, identifier: str, campaign_id: str) -> None:
        async with self._lock:
            data = self._load()
            if data["campaigns"].get(identifier) == campaign_id:
                return
            data["campaigns"][identifier] = campaign_id
            self._save(data)

    async def archive(self, campaign_id: str) -> None:
        async with self._lock:
            data = self._load()
            if campaign_id not in data["archived"]:
                data["archived"].append(campaign_id)
                self._save(data)

    async def unarchive(self, campaign_id: str) -> None:
        async with self._lock:
            data = self._load()
            if campaign_id in data["archived"]:
                data["archived"].remove(campaign_id)
                self._save(data)

    async def archived_ids(self) -> Set[str]:
        async with self._lock:
            return set(self._load()["archived"])
