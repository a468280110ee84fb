"""Narrow interfaces the maintenance engine uses to read and delete media."""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from shelfwarden.models.schemas import MediaType


@dataclass
class CatalogPage:
    """One page of item snapshots plus the token for the next page."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None


@runtime_checkable
class CatalogAdapter(Protocol):
    """Read side of the media server.

    Snapshots are plain dicts keyed by registry field names plus ``key``
    (the media server's item id) and ``title``.
    """

    async def list_items(
        self, media_type: MediaType, page_token: Optional[str] = None
    ) -> CatalogPage: ...


@runtime_checkable
class DeletionExecutor(Protocol):
    """Write side of the media server; raises ExternalAdapterError on failure."""

    async def delete(self, media_item_key: str) -> None: ...
