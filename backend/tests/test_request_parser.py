"""Request path parsing tests."""

import pytest

from transform_proxy.errors import BadRequestError, InvalidDimensionError
from transform_proxy.request_parser import (
    MAX_KEY_LENGTH,
    cache_key_for,
    parse_request_path,
)


class TestParseRequestPath:

    def test_parses_all_fields(self):
        request = parse_request_path("/thumb/100/50/example.com/a.jpg")

        assert request.transform == "thumb"
        assert request.width == 100
        assert request.height == 50
        assert request.source == "example.com/a.jpg"
        assert request.upstream_url == "https://example.com/a.jpg"
        assert request.cache_key == "example.com%2Fa.jpg"

    def test_source_keeps_nested_segments(self):
        request = parse_request_path("/fill/300/300/example.com/path/to/name")
        assert request.source == "example.com/path/to/name"

    def test_query_is_fetched_but_not_keyed(self):
        request = parse_request_path("/thumb/10/10/example.com/a.jpg?v=2&s=1")

        assert request.upstream_url == "https://example.com/a.jpg?v=2&s=1"
        assert request.cache_key == parse_request_path("/thumb/10/10/example.com/a.jpg").cache_key

    @pytest.mark.parametrize("path", ["thumb/1/1/example.com/a.jpg", "", "x"])
    def test_path_must_start_with_slash(self, path):
        with pytest.raises(BadRequestError):
            parse_request_path(path)

    @pytest.mark.parametrize("path", ["/", "/thumb", "/thumb/1", "/thumb/1/1", "/thumb/1/1/", "/thumb/1/1/?q=1"])
    def test_missing_segments(self, path):
        with pytest.raises(BadRequestError):
            parse_request_path(path)

    @pytest.mark.parametrize("width,height", [("1", "1"), ("5000", "5000"), ("+7", "0042")])
    def test_dimension_bounds_accepted(self, width, height):
        request = parse_request_path(f"/thumb/{width}/{height}/example.com/a.jpg")
        assert request.width == int(width)
        assert request.height == int(height)

    @pytest.mark.parametrize("width,height,field", [
        ("0", "10", "width"),
        ("5001", "10", "width"),
        ("-3", "10", "width"),
        ("10", "0", "height"),
        ("10", "5001", "height"),
    ])
    def test_out_of_range(self, width, height, field):
        with pytest.raises(InvalidDimensionError) as exc_info:
            parse_request_path(f"/thumb/{width}/{height}/example.com/a.jpg")

        assert exc_info.value.field == field
        assert exc_info.value.unparseable is False
        assert exc_info.value.status_code == 400
        assert "not specified or invalid" in exc_info.value.message

    @pytest.mark.parametrize("width,height", [("abc", "10"), ("10", "1.5"), ("", "10"), ("1_0", "10"), (" 5", "10")])
    def test_unparseable(self, width, height):
        with pytest.raises(InvalidDimensionError) as exc_info:
            parse_request_path(f"/thumb/{width}/{height}/example.com/a.jpg")

        assert exc_info.value.unparseable is True
        assert exc_info.value.status_code == 400


class TestCacheKey:

    def test_slashes_are_escaped(self):
        assert "/" not in cache_key_for("example.com/a/b/c.jpg")

    def test_distinct_sources_distinct_keys(self):
        assert cache_key_for("example.com/a.jpg") != cache_key_for("example.com/b.jpg")

    def test_leading_dot_is_escaped(self):
        assert cache_key_for("..") == "%2E."
        assert not cache_key_for(".partial").startswith(".")

    def test_long_keys_are_shortened_deterministically(self):
        source = "example.com/" + "a" * 500
        key = cache_key_for(source)

        assert len(key) <= MAX_KEY_LENGTH
        assert key == cache_key_for(source)
        assert key != cache_key_for(source + "b")
