import httpx
import pytest

from shelfsync.api.response_parser import (
    ResponseError,
    extract_error_message,
    normalize_search_result,
    parse_listing,
    parse_search_results,
    validate_json_response,
)
from shelfsync.library.models import MediaKind


@pytest.mark.unit
def test_validate_json_response_rejects_bad_bodies():
    with pytest.raises(ResponseError, match="Empty"):
        validate_json_response(httpx.Response(200, content=b""))

    with pytest.raises(ResponseError, match="Malformed"):
        validate_json_response(httpx.Response(200, content=b"<html>"))

    with pytest.raises(ResponseError, match="expected object"):
        validate_json_response(httpx.Response(200, json=[1, 2]))

    assert validate_json_response(httpx.Response(200, json={"code": 200})) == {"code": 200}


@pytest.mark.unit
def test_normalize_movie_result():
    match = normalize_search_result({
        "id": 27205,
        "media_type": "movie",
        "title": "Inception",
        "release_date": "2010-07-15",
        "poster_path": "/abc.jpg",
        "overview": "Dreams within dreams",
        "vote_average": 8.4,
    })

    assert match.catalog_id == 27205
    assert match.title == "Inception"
    assert match.release_date == "2010-07-15"
    assert match.poster_path == "/abc.jpg"
    assert match.rating == 8.4
    assert match.media_kind is MediaKind.MOVIE


@pytest.mark.unit
def test_normalize_tv_result_uses_name_and_first_air_date():
    match = normalize_search_result({
        "id": 1396,
        "media_type": "tv",
        "name": "Breaking Bad",
        "first_air_date": "2008-01-20",
        "poster_path": None,
    })

    assert match.title == "Breaking Bad"
    assert match.release_date == "2008-01-20"
    assert match.poster_path is None
    assert match.overview == ""
    assert match.rating == 0.0
    assert match.media_kind is MediaKind.TV


@pytest.mark.unit
def test_normalize_falls_back_to_other_kind_fields():
    match = normalize_search_result({"id": 5, "media_type": "tv", "title": "Odd", "release_date": "2001-01-01"})
    assert match.title == "Odd"
    assert match.release_date == "2001-01-01"


@pytest.mark.unit
def test_normalize_requires_integer_id():
    with pytest.raises(ResponseError):
        normalize_search_result({"media_type": "movie", "title": "No id"})
    with pytest.raises(ResponseError):
        normalize_search_result({"id": "abc", "media_type": "movie"})


@pytest.mark.unit
def test_parse_search_results_skips_people_and_takes_first_title():
    data = {
        "results": [
            {"id": 1, "media_type": "person", "name": "Christopher Nolan"},
            {"id": 27205, "media_type": "movie", "title": "Inception"},
            {"id": 2, "media_type": "tv", "name": "Later"},
        ]
    }
    match = parse_search_results(data)
    assert match.catalog_id == 27205


@pytest.mark.unit
def test_parse_search_results_empty_and_invalid():
    assert parse_search_results({"results": []}) is None
    assert parse_search_results({"results": [{"id": 1, "media_type": "person"}]}) is None
    with pytest.raises(ResponseError):
        parse_search_results({"page": 1})


@pytest.mark.unit
def test_parse_listing_keeps_order_and_skips_nameless():
    data = {
        "code": 200,
        "data": {
            "content": [
                {"name": "Inception (2010)", "is_dir": True, "size": 0},
                {"name": "", "is_dir": True},
                {"name": "readme.txt", "is_dir": False, "size": 12},
                "junk",
            ],
            "total": 4,
        },
    }
    entries = parse_listing(data)
    assert [e["name"] for e in entries] == ["Inception (2010)", "readme.txt"]
    assert entries[0]["is_dir"] is True
    assert entries[1]["size"] == 12


@pytest.mark.unit
def test_parse_listing_null_content_is_empty():
    assert parse_listing({"code": 200, "data": {"content": None}}) == []
    assert parse_listing({"code": 200, "data": None}) == []
    with pytest.raises(ResponseError):
        parse_listing({"code": 200, "data": {"content": "nope"}})


@pytest.mark.unit
def test_extract_error_message():
    assert extract_error_message({"code": 200, "message": "success"}) is None
    assert extract_error_message({"code": 500, "message": "object not found"}) == "object not found"
    assert extract_error_message({"code": 403}) == "code 403"
