"""Plex Media Server catalog and deletion adapters."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from plexapi.exceptions import PlexApiException
from plexapi.server import PlexServer
from requests.exceptions import RequestException

from shelfwarden.core.adapters import CatalogPage
from shelfwarden.core.errors import ExternalAdapterError
from shelfwarden.models.schemas import MediaType

logger = logging.getLogger(__name__)

# Plex library section type and search libtype per media type.
_SECTION_TYPES = {
    MediaType.MOVIE: ("movie", "movie"),
    MediaType.TV_SERIES: ("show", "show"),
    MediaType.EPISODE: ("show", "episode"),
}

_PLEX_ERRORS = (PlexApiException, RequestException, OSError)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """plexapi returns naive local datetimes; pin them to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.astimezone(timezone.utc)
    return value


def _tags(item: Any, attribute: str) -> list[str]:
    return [tag.tag for tag in getattr(item, attribute, None) or []]


def _file_size(item: Any) -> Optional[int]:
    sizes = [
        part.size
        for media in getattr(item, "media", None) or []
        for part in getattr(media, "parts", None) or []
        if getattr(part, "size", None)
    ]
    return sum(sizes) if sizes else None


def _media_attribute(item: Any, attribute: str) -> Any:
    """First non-empty ``attribute`` across the item's media versions."""
    for media in getattr(item, "media", None) or []:
        value = getattr(media, attribute, None)
        if value:
            return value
    return None


def _resolution(item: Any) -> Optional[str]:
    resolution = _media_attribute(item, "videoResolution")
    return str(resolution) if resolution else None


def _codec(item: Any, attribute: str) -> Optional[str]:
    value = _media_attribute(item, attribute)
    return str(value).lower() if value else None


def _file_path(item: Any) -> Optional[str]:
    for media in getattr(item, "media", None) or []:
        for part in getattr(media, "parts", None) or []:
            if getattr(part, "file", None):
                return part.file
    return None


def _duration_minutes(item: Any) -> Optional[float]:
    millis = getattr(item, "duration", None) or _media_attribute(item, "duration")
    return round(millis / 60000, 2) if millis else None


def build_snapshot(item: Any, library_id: str) -> dict[str, Any]:
    """Flatten a plexapi video object into an evaluator snapshot."""
    play_count = getattr(item, "viewCount", None) or 0
    snapshot = {
        "key": str(item.ratingKey),
        "title": item.title,
        "year": getattr(item, "year", None),
        "libraryId": library_id,
        "playCount": play_count,
        "neverWatched": play_count == 0,
        "lastWatchedAt": _utc(getattr(item, "lastViewedAt", None)),
        "addedAt": _utc(getattr(item, "addedAt", None)),
        "fileSize": _file_size(item),
        "filePath": _file_path(item),
        "duration": _duration_minutes(item),
        "resolution": _resolution(item),
        "videoCodec": _codec(item, "videoCodec"),
        "audioCodec": _codec(item, "audioCodec"),
        "container": _codec(item, "container"),
        "bitrate": _media_attribute(item, "bitrate"),
        "rating": getattr(item, "userRating", None),
        "audienceRating": getattr(item, "audienceRating", None),
        "contentRating": getattr(item, "contentRating", None),
        "labels": _tags(item, "labels"),
        "genres": _tags(item, "genres"),
    }
    if getattr(item, "type", None) == "episode":
        snapshot["seasonNumber"] = getattr(item, "parentIndex", None)
        snapshot["episodeNumber"] = getattr(item, "index", None)
        snapshot["title"] = f"{item.grandparentTitle} - {item.seasonEpisode} - {item.title}"
    return snapshot


class PlexConnector:
    """Lazily opened connection to one Plex server."""

    def __init__(self, server_url: Optional[str], token: Optional[str]):
        """
        Initialize Plex connector.

        Args:
            server_url: Base URL of the Plex server
            token: Plex authentication token
        """
        self.server_url = server_url
        self.token = token
        self._server: Optional[PlexServer] = None

    def get_server(self) -> PlexServer:
        """Get or create Plex server connection."""
        if self._server is not None:
            return self._server
        if not self.server_url or not self.token:
            raise ExternalAdapterError("Plex server URL and token are required")
        try:
            self._server = PlexServer(self.server_url, self.token)
        except _PLEX_ERRORS as exc:
            raise ExternalAdapterError(f"Could not connect to Plex: {exc}") from exc
        return self._server


class PlexCatalogAdapter:
    """Pages through every Plex library section matching a media type.

    Page tokens have the form ``"<sectionKey>:<offset>"``.
    """

    def __init__(self, connector: PlexConnector, page_size: int = 200):
        self.connector = connector
        self.page_size = page_size

    async def list_items(
        self, media_type: MediaType, page_token: Optional[str] = None
    ) -> CatalogPage:
        return await asyncio.to_thread(self._list_items_sync, media_type, page_token)

    def _section_keys(self, section_type: str) -> list[str]:
        server = self.connector.get_server()
        return [
            str(section.key)
            for section in server.library.sections()
            if section.type == section_type
        ]

    def _list_items_sync(
        self, media_type: MediaType, page_token: Optional[str]
    ) -> CatalogPage:
        section_type, libtype = _SECTION_TYPES[media_type]
        try:
            section_keys = self._section_keys(section_type)
            if not section_keys:
                return CatalogPage()

            if page_token:
                section_key, _, raw_offset = page_token.partition(":")
                offset = int(raw_offset or 0)
            else:
                section_key, offset = section_keys[0], 0
            if section_key not in section_keys:
                raise ExternalAdapterError(f"Unknown Plex library section '{section_key}'")

            section = self.connector.get_server().library.sectionByID(int(section_key))
            results = section.search(
                libtype=libtype,
                container_start=offset,
                container_size=self.page_size,
                maxresults=self.page_size,
            )
        except _PLEX_ERRORS as exc:
            raise ExternalAdapterError(f"Plex catalog request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalAdapterError(f"Malformed catalog page token '{page_token}'") from exc

        items = [build_snapshot(item, section_key) for item in results]

        if len(results) >= self.page_size:
            next_token: Optional[str] = f"{section_key}:{offset + len(results)}"
        else:
            position = section_keys.index(section_key)
            next_token = (
                f"{section_keys[position + 1]}:0"
                if position + 1 < len(section_keys)
                else None
            )

        logger.debug(
            "Fetched %s %s item(s) from section %s at offset %s",
            len(items),
            libtype,
            section_key,
            offset,
        )
        return CatalogPage(items=items, next_page_token=next_token)


class PlexDeletionExecutor:
    """Deletes items from Plex by rating key."""

    def __init__(self, connector: PlexConnector):
        self.connector = connector

    async def delete(self, media_item_key: str) -> None:
        await asyncio.to_thread(self._delete_sync, media_item_key)

    def _delete_sync(self, media_item_key: str) -> None:
        try:
            item = self.connector.get_server().fetchItem(int(media_item_key))
            item.delete()
        except _PLEX_ERRORS as exc:
            raise ExternalAdapterError(
                f"Plex deletion of item {media_item_key} failed: {exc}"
            ) from exc
        except ValueError as exc:
            raise ExternalAdapterError(f"Invalid Plex rating key '{media_item_key}'") from exc
        logger.info("Deleted Plex item %s", media_item_key)
