from datetime import datetime

import pytest
from pydantic import ValidationError

from app.models import (
    ContinueWatchingItem,
    FavoriteItem,
    ItemDetail,
    Movie,
    RemoteCategory,
    RemoteChannelRecord,
    RemoteMovieRecord,
    RemoteSeriesRecord,
    ensure_content_type,
)


def test_remote_channel_record_parses_provider_fields():
    record = RemoteChannelRecord.model_validate(
        {
            "num": 1,
            "name": " News 24 ",
            "stream_type": "live",
            "stream_id": "1001",
            "stream_icon": "",
            "epg_channel_id": "news24.uk",
            "added": "1700000000",
            "category_id": "5",
            "category_ids": [5, 9],
            "tv_archive": "1",
            "tv_archive_duration": "3",
            "direct_source": "",
        }
    )

    assert record.remote_id == 1001
    assert record.name == "News 24"
    assert record.icon_url is None
    assert record.stream_kind == "live"
    assert record.has_archive is True
    assert record.archive_duration_hours == 3
    assert record.direct_source is None
    assert record.added_at == datetime(2023, 11, 14, 22, 13, 20)
    assert record.primary_category_id == "5"
    assert record.secondary_category_ids == ["9"]
    assert record.category_ids() == ["5", "9"]
    assert "secondary_category_ids" not in record.to_row()


def test_remote_record_requires_numeric_id():
    with pytest.raises(ValidationError):
        RemoteMovieRecord.model_validate({"name": "No id", "stream_id": "abc"})


def test_remote_series_record_uses_series_id_and_backdrops():
    record = RemoteSeriesRecord.model_validate(
        {
            "series_id": 55,
            "name": "Drama",
            "cover": "http://img/cover.jpg",
            "releaseDate": "2020-02-02",
            "rating_5based": "4.2",
            "backdrop_path": "http://img/backdrop.jpg",
            "youtube_trailer": "",
            "last_modified": "1700000000",
        }
    )

    assert record.remote_id == 55
    assert record.icon_url == "http://img/cover.jpg"
    assert record.release_date == "2020-02-02"
    assert record.rating_5based == 4.2
    assert record.backdrop_paths == ["http://img/backdrop.jpg"]
    assert record.trailer_ref is None
    assert record.last_modified == datetime(2023, 11, 14, 22, 13, 20)


def test_remote_category_aliases():
    category = RemoteCategory.model_validate(
        {"category_id": 12, "category_name": "Action", "parent_id": 0}
    )

    assert category.id == "12"
    assert category.name == "Action"
    assert category.parent_id == 0


def test_catalog_item_category_membership_and_payload():
    movie = Movie(
        remote_id=4,
        name="Heist",
        primary_category_id="1",
        secondary_category_ids=["7"],
        cached_at=datetime(2024, 1, 1),
    )

    assert movie.in_category("1")
    assert movie.in_category("7")
    assert not movie.in_category("3")
    payload = movie.to_payload()
    assert payload["remoteId"] == 4
    assert payload["contentType"] == "movies"
    assert payload["secondaryCategoryIds"] == ["7"]


def test_item_detail_from_series_info():
    detail = ItemDetail.from_provider(
        "series",
        55,
        {
            "seasons": [
                {"season_number": 1, "name": "Season 1", "episode_count": "2"},
                {"name": "Specials without number"},
            ],
            "info": {"name": "Drama", "plot": "Things happen"},
            "episodes": {
                "1": [
                    {
                        "id": "901",
                        "episode_num": "1",
                        "title": "Pilot",
                        "container_extension": "mkv",
                        "info": {"duration_secs": "2700", "plot": "Start"},
                    },
                    {"id": 902, "episode_num": 2, "title": "Second"},
                ]
            },
        },
    )

    assert detail.info["plot"] == "Things happen"
    assert [season.season_number for season in detail.seasons] == [1]
    assert detail.seasons[0].episode_count == 2
    episodes = detail.episodes["1"]
    assert [episode.id for episode in episodes] == ["901", "902"]
    assert episodes[0].season == 1
    assert episodes[0].duration_secs == 2700


def test_item_detail_handles_list_shaped_sections():
    """Panels answer ``[]`` for empty info and a bare list for one season."""

    detail = ItemDetail.from_provider(
        "series", 3, {"info": [], "episodes": [{"id": "1", "episode_num": 1}]}
    )

    assert detail.info == {}
    assert list(detail.episodes) == ["1"]


def test_item_detail_merges_movie_data():
    detail = ItemDetail.from_provider(
        "movies",
        8,
        {"info": {"plot": "Heist"}, "movie_data": {"stream_id": 8, "container_extension": "mp4"}},
    )

    assert detail.info["plot"] == "Heist"
    assert detail.info["movie_data"]["container_extension"] == "mp4"


def test_item_detail_rejects_non_objects():
    with pytest.raises(ValueError):
        ItemDetail.from_provider("movies", 1, ["unexpected"])


def test_watch_state_models_accept_numeric_ids_and_camel_case():
    favorite = FavoriteItem.model_validate({"itemId": 12, "itemType": "movie", "title": "A"})
    assert favorite.item_id == "12"

    entry = ContinueWatchingItem.model_validate(
        {"item_id": "9", "item_type": "series", "progressPercent": 40}
    )
    assert entry.progress_percent == 40

    with pytest.raises(ValidationError):
        ContinueWatchingItem(item_id="9", item_type="movie", progress_percent=140)


def test_ensure_content_type():
    assert ensure_content_type(" Movies ") == "movies"
    with pytest.raises(ValueError):
        ensure_content_type("epg")
