"""Session/config persistence and cookie handling."""

from __future__ import annotations

import json

from session_store import (cookie_string_to_dict, get_auth_cookie_string, load_config,
                           load_credential, save_config)


def test_cookie_string_round_trip_ignores_junk():
    assert cookie_string_to_dict("a=1; b=x=y;  ; broken") == {"a": "1", "b": "x=y"}
    assert cookie_string_to_dict(None) == {}


def test_auth_cookie_subset_keeps_portal_cookies_only():
    cookie = "tracking=1; AuthToken=abc; __cf_bm=cf; JWTUserToken="
    assert get_auth_cookie_string(cookie) == "__cf_bm=cf; AuthToken=abc"
    assert get_auth_cookie_string({"AuthToken": "abc", "other": "x"}) == "AuthToken=abc"
    assert get_auth_cookie_string("") == ""


def test_save_splits_session_and_settings(isolated_store):
    save_config({"token": "t1", "cookie": "AuthToken=a; x=1", "username": "1000", "role_id": 5})

    session = json.loads((isolated_store / "session" / "session.json").read_text())
    settings = json.loads((isolated_store / "data" / "config.json").read_text())
    assert session == {"token": "t1", "cookie": {"AuthToken": "a", "x": "1"}, "username": "1000"}
    assert settings == {"role_id": 5}


def test_load_merges_and_flattens_cookie(isolated_store):
    save_config({"token": "t1", "cookie": "AuthToken=a", "organization_id": 9})
    save_config({"token": "t2"})

    config = load_config()

    assert config["token"] == "t2"
    assert config["cookie"] == "AuthToken=a"
    assert config["organization_id"] == 9


def test_environment_overrides_stored_values(isolated_store, monkeypatch):
    save_config({"token": "stored", "username": "1000"})
    monkeypatch.setenv("SEHA_TOKEN", "from-env")

    config = load_config()

    assert config["token"] == "from-env"
    assert config["username"] == "1000"


def test_missing_files_give_empty_config(isolated_store):
    assert load_config() == {"cookie": ""}


def test_corrupt_file_is_treated_as_missing(isolated_store):
    session_file = isolated_store / "session" / "session.json"
    session_file.parent.mkdir(parents=True)
    session_file.write_text("{not json")

    assert load_config()["cookie"] == ""


def test_load_credential_defaults(isolated_store):
    save_config({"token": "t", "cookie": "AuthToken=a; junk=1"})

    credential = load_credential()

    assert credential.token == "t"
    assert credential.cookie == "AuthToken=a"
    assert (credential.role_id, credential.organization_id) == (808, 8930)
