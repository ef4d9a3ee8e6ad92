"""Shared fixtures: an app on in-memory SQLite and an authenticated admin."""
from __future__ import annotations

import pytest

from book_creator import create_app


ADMIN_USERNAME = "editor"
ADMIN_PASSWORD = "Correct-Horse-42"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SECRET_KEY": "test-secret",
            "SESSION_COOKIE_SECURE": False,
        }
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin(client):
    resp = client.post("/auth/init", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert resp.status_code == 201
    return resp.get_json()["admin"]


@pytest.fixture
def auth(client, admin) -> dict:
    resp = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    # Drop the cookie so every request authenticates through the header only.
    client.delete_cookie("admin_session")
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def make_book(client, auth):
    def _make(title: str = "Field Guide", **extra) -> dict:
        resp = client.post("/books", json={"title": title, **extra}, headers=auth)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _make


@pytest.fixture
def make_chapter(client, auth):
    def _make(book_id: int, title: str = "Chapter", **extra) -> dict:
        resp = client.post("/chapters", json={"book_id": book_id, "title": title, **extra}, headers=auth)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _make


@pytest.fixture
def make_page(client, auth):
    def _make(chapter_id: int, content: str = "Lorem ipsum", **extra) -> dict:
        resp = client.post("/pages", json={"chapter_id": chapter_id, "content": content, **extra}, headers=auth)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _make
