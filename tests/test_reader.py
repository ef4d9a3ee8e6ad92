"""Tests for the public reader's next/previous navigation."""
from __future__ import annotations

import pytest


@pytest.fixture
def published_book(make_book, make_chapter, make_page):
    book = make_book(title="Reader", is_published=True)
    c1 = make_chapter(book["id"], title="C1")
    c2 = make_chapter(book["id"], title="C2")
    make_page(c1["id"], content="P1")
    make_page(c1["id"], content="P2")
    make_page(c2["id"], content="P3")
    return book


def _read(client, book_id, **params):
    resp = client.get(f"/books/public/{book_id}/read", query_string=params)
    return resp.status_code, resp.get_json()


def test_reader_opens_on_first_page(client, published_book):
    status, body = _read(client, published_book["id"])

    assert status == 200
    assert body["position"] == {"chapter_index": 0, "page_index": 0}
    assert body["page"]["content"] == "P1"
    assert body["has_previous"] is False
    assert body["has_next"] is True


def test_next_from_end_of_chapter_crosses_boundary(client, published_book):
    _, body = _read(client, published_book["id"], chapter=0, page=1, move="next")

    assert body["chapter"]["title"] == "C2"
    assert body["page"]["content"] == "P3"


def test_next_at_last_page_is_noop(client, published_book):
    _, body = _read(client, published_book["id"], chapter=1, page=0, move="next")

    assert body["position"] == {"chapter_index": 1, "page_index": 0}
    assert body["page"]["content"] == "P3"
    assert body["has_next"] is False


def test_previous_crosses_back_to_last_page(client, published_book):
    _, body = _read(client, published_book["id"], chapter=1, page=0, move="prev")

    assert body["position"] == {"chapter_index": 0, "page_index": 1}
    assert body["page"]["content"] == "P2"


def test_previous_at_first_page_is_noop(client, published_book):
    _, body = _read(client, published_book["id"], chapter=0, page=0, move="prev")
    assert body["page"]["content"] == "P1"


def test_reader_rejects_bad_positions_and_moves(client, published_book):
    status, body = _read(client, published_book["id"], chapter=5, page=0)
    assert status == 400
    assert body == {"error": "chapter index out of range"}

    status, _ = _read(client, published_book["id"], chapter=0, page=9)
    assert status == 400

    status, _ = _read(client, published_book["id"], move="sideways")
    assert status == 400


def test_reader_hides_unpublished_books(client, make_book):
    draft = make_book(title="Draft")
    status, body = _read(client, draft["id"])
    assert status == 404
    assert body == {"error": "Book not found"}


def test_reader_on_book_without_chapters(client, make_book):
    book = make_book(is_published=True)
    status, body = _read(client, book["id"], move="next")

    assert status == 200
    assert body["position"] is None
    assert body["page"] is None
    assert body["has_next"] is False


def test_reader_requires_chapter_with_page(client, published_book):
    status, body = _read(client, published_book["id"], page=1)
    assert status == 400
    assert body == {"error": "page requires chapter"}

    status, body = _read(client, published_book["id"], chapter="one")
    assert status == 400
    assert body == {"error": "chapter and page must be integers"}
