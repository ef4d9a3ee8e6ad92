"""Tests for the singleton site settings and the homepage message."""
from __future__ import annotations

from book_creator import Admin, Author, Settings


def test_settings_row_is_created_on_first_read(app, client, auth):
    resp = client.get("/settings", headers=auth)

    assert resp.status_code == 200
    assert resp.get_json()["site_title"] is None
    client.get("/settings", headers=auth)
    with app.app_context():
        assert Settings.query.count() == 1


def test_patch_settings_follows_absent_null_convention(client, auth):
    client.patch(
        "/settings",
        json={"site_title": "Library", "meta_title": "Library | Home", "home_content": "# Hello"},
        headers=auth,
    )

    resp = client.patch("/settings", json={"meta_title": None, "logo": "logo.png"}, headers=auth)

    body = resp.get_json()
    assert body["site_title"] == "Library"
    assert body["home_content"] == "# Hello"
    assert body["meta_title"] is None
    assert body["logo"] == "logo.png"


def test_home_message_defaults_then_updates(app, client, auth):
    default = client.get("/site-settings").get_json()["default_home_message"]
    assert default == app.config["DEFAULT_HOME_MESSAGE"]

    resp = client.patch("/site-settings", json={"default_home_message": "Nothing here yet"}, headers=auth)
    assert resp.status_code == 200
    assert client.get("/site-settings").get_json() == {"default_home_message": "Nothing here yet"}


def test_home_message_patch_requires_value_and_auth(client, auth):
    assert client.patch("/site-settings", json={}, headers=auth).status_code == 400
    assert client.patch("/site-settings", json={"default_home_message": "x"}).status_code == 401


def test_seed_command_is_idempotent(app):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["seed", "--password", "Seeded-Pass-9"])
    second = runner.invoke(args=["seed"])

    assert first.exit_code == 0
    assert "[SEED] admin ok created admin" in first.output
    assert "admin already present" in second.output
    with app.app_context():
        assert Admin.query.count() == 1
        assert Author.query.count() == 2


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}
