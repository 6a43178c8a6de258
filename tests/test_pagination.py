"""
Tests for cursor pagination.
"""

import base64

import pytest

from conftest import make_merged
from token_aggregator.services.pagination import (
    InvalidCursorError, decode_cursor, encode_cursor, paginate
)


@pytest.fixture
def tokens():
    return [make_merged(f"addr{i}") for i in range(100)]


def test_first_page(tokens):
    page = paginate(tokens, 10)

    assert [t.token_address for t in page.tokens] == [f"addr{i}" for i in range(10)]
    assert page.next_cursor is not None


def test_cursor_walks_to_next_page(tokens):
    first = paginate(tokens, 10)

    assert decode_cursor(first.next_cursor) == 10
    second = paginate(tokens, 10, first.next_cursor)

    assert [t.token_address for t in second.tokens] == [f"addr{i}" for i in range(10, 20)]


def test_last_partial_page_has_no_cursor(tokens):
    page = paginate(tokens, 10, encode_cursor(95))

    assert len(page.tokens) == 5
    assert page.next_cursor is None


def test_exact_last_page_has_no_cursor(tokens):
    page = paginate(tokens, 10, encode_cursor(90))

    assert len(page.tokens) == 10
    assert page.next_cursor is None


def test_offset_past_end_is_empty(tokens):
    page = paginate(tokens, 10, encode_cursor(150))

    assert page.tokens == []
    assert page.next_cursor is None


def test_empty_collection():
    page = paginate([], 30)

    assert page.tokens == []
    assert page.next_cursor is None


def test_cursor_serializes_as_camel_case(tokens):
    data = paginate(tokens, 10).dict(by_alias=True)

    assert "nextCursor" in data
    assert "next_cursor" not in data


def test_cursor_encodes_offset_and_issue_time():
    decoded = base64.urlsafe_b64decode(encode_cursor(42)).decode()
    offset, issued = decoded.split(":")

    assert offset == "42"
    assert int(issued) > 0


@pytest.mark.parametrize("cursor", ["not-base64!!", base64.urlsafe_b64encode(b"abc:123").decode(),
                                    base64.urlsafe_b64encode(b"-5:123").decode()])
def test_invalid_cursor_raises(cursor):
    with pytest.raises(InvalidCursorError):
        decode_cursor(cursor)
