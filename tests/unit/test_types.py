"""
Unit tests for request types and value/etag encoding.
"""

import pytest

from components.pgstate.errors import InvalidArgumentError, InvalidETagError
from components.pgstate.state.types import (
    GetResponse,
    encode_value,
    parse_etag,
    require_key,
)


class TestParseEtag:
    """Tests for parse_etag."""

    @pytest.mark.parametrize("etag", [None, ""])
    def test_absent_etag(self, etag):
        assert parse_etag(etag) is None

    @pytest.mark.parametrize("etag,expected", [("0", 0), ("731", 731), ("+5", 5), ("4294967295", 4294967295)])
    def test_decimal_etag(self, etag, expected):
        assert parse_etag(etag) == expected

    @pytest.mark.parametrize("etag", ["abc", "1.5", " 12", "12\n", "1_000", "0x10"])
    def test_malformed_etag(self, etag):
        with pytest.raises(InvalidETagError) as exc_info:
            parse_etag(etag, key="a")
        assert exc_info.value.etag == etag
        assert exc_info.value.key == "a"

    def test_malformed_etag_is_invalid_argument(self):
        """InvalidETagError is part of the InvalidArgument class."""
        with pytest.raises(InvalidArgumentError):
            parse_etag("nope")


class TestEncodeValue:
    """Tests for encode_value."""

    def test_object_is_json_encoded(self):
        assert encode_value({"x": 1}) == '{"x": 1}'

    def test_scalars(self):
        assert encode_value("hello") == '"hello"'
        assert encode_value(3) == "3"
        assert encode_value(None) == "null"

    def test_bytes_json_document_kept_verbatim(self):
        assert encode_value(b'{"a":[1,2]}') == '{"a":[1,2]}'
        assert encode_value(bytearray(b"[]")) == "[]"

    def test_bytes_must_be_json(self):
        with pytest.raises(InvalidArgumentError):
            encode_value(b"\xff\xfe")
        with pytest.raises(InvalidArgumentError):
            encode_value(b"{broken")

    def test_unserializable_value(self):
        with pytest.raises(InvalidArgumentError, match="not JSON serializable"):
            encode_value({"when": object()}, key="a")


class TestRequireKey:
    def test_empty_key(self):
        with pytest.raises(InvalidArgumentError, match="missing key in delete operation"):
            require_key("", "delete")

    def test_non_empty_key(self):
        require_key("a", "set")


class TestGetResponse:
    def test_empty_response_is_miss(self):
        resp = GetResponse()
        assert not resp.found
        assert resp.json() is None

    def test_json_roundtrip(self):
        resp = GetResponse(data=b'{"nested": {"list": [1, "two", null]}}', etag="9")
        assert resp.json() == {"nested": {"list": [1, "two", None]}}
