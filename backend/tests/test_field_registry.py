import pytest

from shelfwarden.core.field_registry import (
    FIELD_REGISTRY,
    NULL_OPERATORS,
    ValueType,
    describe,
    list_fields,
    list_fields_by_category,
    normalize_resolution,
)
from shelfwarden.models.schemas import MediaType


def test_every_field_has_operators_and_a_known_category():
    for descriptor in FIELD_REGISTRY.values():
        assert descriptor.operators, descriptor.name
        assert descriptor.category in {"metadata", "playback", "file", "quality"}


def test_describe_unknown_field_returns_none():
    assert describe("audioLanguage") is None
    assert describe("playCount").value_type == ValueType.NUMBER


def test_episode_only_fields_are_hidden_from_movies():
    movie_fields = {d.name for d in list_fields(MediaType.MOVIE)}
    episode_fields = {d.name for d in list_fields(MediaType.EPISODE)}

    assert "seasonNumber" not in movie_fields
    assert "episodeNumber" not in movie_fields
    assert {"seasonNumber", "episodeNumber"} <= episode_fields


def test_file_size_does_not_support_equality():
    operators = describe("fileSize").operators

    assert "equals" not in operators
    assert "notEquals" not in operators
    assert "greaterThan" in operators


def test_last_watched_requires_unit_and_accepts_null_checks():
    descriptor = describe("lastWatchedAt")

    assert descriptor.unit_required
    assert set(descriptor.units) == {"days", "months", "years"}
    assert NULL_OPERATORS <= descriptor.operators
    assert descriptor.missing_matches == frozenset({"olderThan"})


def test_unit_factors():
    assert describe("lastWatchedAt").unit_factor("months") == 30
    assert describe("lastWatchedAt").unit_factor("years") == 365
    assert describe("fileSize").unit_factor("GB") == 1024**3
    assert describe("fileSize").unit_factor(None) == 1


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1080p", "1080"),
        ("4K", "4k"),
        ("2160", "4k"),
        ("SD", "sd"),
        (720, "720"),
        ("8k", None),
        (None, None),
    ],
)
def test_normalize_resolution(raw, expected):
    assert normalize_resolution(raw) == expected


def test_resolution_ranks_are_ordered():
    ranks = describe("resolution").ranks

    assert ranks["sd"] < ranks["720"] < ranks["1080"] < ranks["4k"]


def test_list_fields_by_category_groups_in_registry_order():
    grouped = list_fields_by_category(MediaType.MOVIE)

    assert [d.name for d in grouped["file"]] == ["fileSize", "filePath", "duration"]
    assert [d.name for d in grouped["quality"]] == [
        "resolution",
        "videoCodec",
        "audioCodec",
        "container",
        "bitrate",
    ]
    assert grouped["playback"][0].name == "neverWatched"


def test_media_detail_fields():
    assert describe("videoCodec").operators == frozenset({"equals", "notEquals", "in", "notIn"})
    assert "hevc" in describe("videoCodec").suggestions
    assert "truehd" in describe("audioCodec").suggestions
    assert "mkv" in describe("container").suggestions
    assert describe("filePath").value_type == ValueType.STRING
    assert describe("contentRating").category == "metadata"
    assert describe("audienceRating").max_value == 10
    assert describe("bitrate").unit_factor("Mbps") == 1000
    assert describe("duration").unit_factor("hours") == 60
    assert "equals" not in describe("duration").operators
