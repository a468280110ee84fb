"""Static registry of catalog fields that maintenance rules can test."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from shelfwarden.models.schemas import MediaType


class ValueType(str, Enum):
    """Value type tag carried by every field descriptor."""

    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ENUM = "enum"
    STRING_SET = "string-set"
    DATE = "date"


# Operators grouped by the value types that accept them.
BOOLEAN_OPERATORS = frozenset({"equals", "notEquals"})
NUMBER_OPERATORS = frozenset(
    {
        "equals",
        "notEquals",
        "lessThan",
        "lessThanOrEqual",
        "greaterThan",
        "greaterThanOrEqual",
    }
)
ORDINAL_OPERATORS = frozenset(
    {"equals", "notEquals", "in", "notIn", "lessThanOrEqual", "greaterThanOrEqual"}
)
STRING_OPERATORS = frozenset({"equals", "notEquals", "contains", "startsWith", "in", "notIn"})
CHOICE_OPERATORS = frozenset({"equals", "notEquals", "in", "notIn"})
PATH_OPERATORS = frozenset({"equals", "notEquals", "contains", "startsWith"})
RANGE_OPERATORS = NUMBER_OPERATORS - {"equals", "notEquals"}
SET_OPERATORS = frozenset({"containsAny", "containsAll"})
DATE_OPERATORS = frozenset({"olderThan", "newerThan"})
NULL_OPERATORS = frozenset({"isNull", "isNotNull"})
LIST_VALUE_OPERATORS = frozenset({"in", "notIn", "containsAny", "containsAll"})

TIME_UNITS = MappingProxyType({"days": 1, "months": 30, "years": 365})
SIZE_UNITS = MappingProxyType(
    {"MB": 1024**2, "GB": 1024**3, "TB": 1024**4}
)
DURATION_UNITS = MappingProxyType({"minutes": 1, "hours": 60})
BITRATE_UNITS = MappingProxyType({"kbps": 1, "Mbps": 1000})

VIDEO_CODECS = ("h264", "hevc", "av1", "mpeg4", "mpeg2video", "vc1")
AUDIO_CODECS = ("aac", "ac3", "eac3", "dts", "truehd", "flac", "mp3", "opus")
CONTAINERS = ("mkv", "mp4", "avi", "mov", "wmv", "ts")

# Ordinal rank of normalized resolution labels; "sd" is Plex's label for <=480 lines.
RESOLUTION_RANKS = MappingProxyType(
    {"sd": 0, "480": 0, "576": 1, "720": 2, "1080": 3, "4k": 4}
)

ALL_MEDIA_TYPES = (MediaType.MOVIE, MediaType.TV_SERIES, MediaType.EPISODE)


def normalize_resolution(value: object) -> Optional[str]:
    """Map resolution spellings (``1080p``, ``4K``, ``2160``) to registry labels."""
    if value is None:
        return None
    label = str(value).strip().lower()
    if label.endswith("p"):
        label = label[:-1]
    if label in ("2160", "uhd"):
        label = "4k"
    return label if label in RESOLUTION_RANKS else None


@dataclass(frozen=True)
class FieldDescriptor:
    """Everything the validator and evaluator need to know about one field."""

    name: str
    label: str
    value_type: ValueType
    operators: frozenset[str]
    category: str
    media_types: tuple[MediaType, ...] = ALL_MEDIA_TYPES
    units: Mapping[str, int] = field(default_factory=dict)
    unit_required: bool = False
    ranks: Mapping[str, int] = field(default_factory=dict)
    # Common values offered to rule builders; not enforced.
    suggestions: tuple[str, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    # Operators for which a missing item value counts as a match.
    missing_matches: frozenset[str] = frozenset()
    description: Optional[str] = None

    def applies_to(self, media_type: MediaType) -> bool:
        return media_type in self.media_types

    def unit_factor(self, unit: Optional[str]) -> int:
        """Factor converting a value in ``unit`` to the canonical unit."""
        if unit is None:
            return 1
        return self.units[unit]


_FIELDS: tuple[FieldDescriptor, ...] = (
    # === METADATA ===
    FieldDescriptor(
        name="title",
        label="Title",
        value_type=ValueType.STRING,
        operators=STRING_OPERATORS,
        category="metadata",
    ),
    FieldDescriptor(
        name="year",
        label="Year",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS,
        category="metadata",
        min_value=0,
    ),
    FieldDescriptor(
        name="rating",
        label="Rating (User)",
        description="Plex user rating (0-10)",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS | NULL_OPERATORS,
        category="metadata",
        min_value=0,
        max_value=10,
    ),
    FieldDescriptor(
        name="audienceRating",
        label="Audience Rating",
        description="Aggregated audience rating from the metadata agent (0-10)",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS | NULL_OPERATORS,
        category="metadata",
        min_value=0,
        max_value=10,
    ),
    FieldDescriptor(
        name="contentRating",
        label="Content Rating",
        description="Age rating (PG, PG-13, R, etc.)",
        value_type=ValueType.STRING,
        operators=CHOICE_OPERATORS,
        category="metadata",
    ),
    FieldDescriptor(
        name="libraryId",
        label="Library",
        value_type=ValueType.STRING,
        operators=frozenset({"equals", "notEquals", "in", "notIn"}),
        category="metadata",
    ),
    FieldDescriptor(
        name="labels",
        label="Labels/Tags",
        value_type=ValueType.STRING_SET,
        operators=SET_OPERATORS,
        category="metadata",
    ),
    FieldDescriptor(
        name="genres",
        label="Genres",
        value_type=ValueType.STRING_SET,
        operators=SET_OPERATORS,
        category="metadata",
    ),
    FieldDescriptor(
        name="seasonNumber",
        label="Season Number",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS,
        category="metadata",
        media_types=(MediaType.EPISODE,),
        min_value=0,
    ),
    FieldDescriptor(
        name="episodeNumber",
        label="Episode Number",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS,
        category="metadata",
        media_types=(MediaType.EPISODE,),
        min_value=0,
    ),
    # === PLAYBACK ===
    FieldDescriptor(
        name="neverWatched",
        label="Never Watched",
        description="Media that has never been played",
        value_type=ValueType.BOOLEAN,
        operators=frozenset({"equals"}),
        category="playback",
    ),
    FieldDescriptor(
        name="playCount",
        label="Play Count",
        value_type=ValueType.NUMBER,
        operators=NUMBER_OPERATORS,
        category="playback",
        min_value=0,
    ),
    FieldDescriptor(
        name="lastWatchedAt",
        label="Last Watched Date",
        description="Never-watched items count as watched long ago",
        value_type=ValueType.DATE,
        operators=DATE_OPERATORS | NULL_OPERATORS,
        category="playback",
        units=TIME_UNITS,
        unit_required=True,
        min_value=0,
        missing_matches=frozenset({"olderThan"}),
    ),
    FieldDescriptor(
        name="addedAt",
        label="Date Added",
        value_type=ValueType.DATE,
        operators=DATE_OPERATORS,
        category="playback",
        units=TIME_UNITS,
        unit_required=True,
        min_value=0,
    ),
    # === FILE ===
    FieldDescriptor(
        name="fileSize",
        label="File Size",
        description="Total size of all media parts in bytes",
        value_type=ValueType.NUMBER,
        operators=RANGE_OPERATORS,
        category="file",
        units=SIZE_UNITS,
        min_value=0,
    ),
    FieldDescriptor(
        name="filePath",
        label="File Path",
        description="Path of the first media file",
        value_type=ValueType.STRING,
        operators=PATH_OPERATORS,
        category="file",
    ),
    FieldDescriptor(
        name="duration",
        label="Duration",
        description="Runtime in minutes",
        value_type=ValueType.NUMBER,
        operators=RANGE_OPERATORS,
        category="file",
        units=DURATION_UNITS,
        min_value=0,
    ),
    # === QUALITY ===
    FieldDescriptor(
        name="resolution",
        label="Resolution",
        value_type=ValueType.ENUM,
        operators=ORDINAL_OPERATORS,
        category="quality",
        ranks=RESOLUTION_RANKS,
    ),
    FieldDescriptor(
        name="videoCodec",
        label="Video Codec",
        value_type=ValueType.STRING,
        operators=CHOICE_OPERATORS,
        category="quality",
        suggestions=VIDEO_CODECS,
    ),
    FieldDescriptor(
        name="audioCodec",
        label="Audio Codec",
        value_type=ValueType.STRING,
        operators=CHOICE_OPERATORS,
        category="quality",
        suggestions=AUDIO_CODECS,
    ),
    FieldDescriptor(
        name="container",
        label="Container Format",
        value_type=ValueType.STRING,
        operators=CHOICE_OPERATORS,
        category="quality",
        suggestions=CONTAINERS,
    ),
    FieldDescriptor(
        name="bitrate",
        label="Bitrate",
        description="Overall bitrate in kbps",
        value_type=ValueType.NUMBER,
        operators=RANGE_OPERATORS,
        category="quality",
        units=BITRATE_UNITS,
        min_value=0,
    ),
)

FIELD_REGISTRY: Mapping[str, FieldDescriptor] = MappingProxyType(
    {descriptor.name: descriptor for descriptor in _FIELDS}
)


def describe(field_name: str) -> Optional[FieldDescriptor]:
    """Return the descriptor for ``field_name`` or None when unknown."""
    return FIELD_REGISTRY.get(field_name)


def list_fields(media_type: MediaType) -> list[FieldDescriptor]:
    """Fields applicable to ``media_type`` in registry order."""
    return [d for d in FIELD_REGISTRY.values() if d.applies_to(media_type)]


def list_fields_by_category(media_type: MediaType) -> dict[str, list[FieldDescriptor]]:
    grouped: dict[str, list[FieldDescriptor]] = {
        "metadata": [],
        "playback": [],
        "file": [],
        "quality": [],
    }
    for descriptor in list_fields(media_type):
        grouped.setdefault(descriptor.category, []).append(descriptor)
    return grouped
