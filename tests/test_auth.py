"""Token lifecycle: role-login refresh, probe fallback and stored-session handling."""

from __future__ import annotations

import pytest
import requests

import auth
from auth import extract_token, get_valid_token, validate_and_refresh_token


@pytest.fixture
def portal(monkeypatch, fake_session):
    """Route auth's HTTP calls to a scripted session"""
    def install(responses, config=None):
        session = fake_session(responses)
        monkeypatch.setattr(auth, "get_client", lambda token, cookie: session)
        monkeypatch.setattr(auth, "load_config", lambda: dict(config or {}))
        return session
    return install


def test_extract_token_prefers_body_fields(fake_response):
    response = fake_response(200, {"accessToken": "c", "Token": "b"}, cookies={"JWTUserToken": "d"})
    assert extract_token(response) == "b"


def test_extract_token_falls_back_to_cookie(fake_response):
    response = fake_response(200, {"ok": True}, cookies={"JWTUserToken": "from-cookie"})
    assert extract_token(response) == "from-cookie"


def test_extract_token_none_when_missing(fake_response):
    assert extract_token(fake_response(200, None)) is None


def test_role_login_returns_new_token(portal, fake_response):
    session = portal([fake_response(200, {"token": "fresh"})],
                     config={"username": "1000", "role_id": 5, "organization_id": 6})

    assert validate_and_refresh_token("old", "c=1") == "fresh"
    _, url, kwargs = session.calls[0]
    assert url.endswith("/Account/DoLoginByRolev2")
    assert kwargs["json"] == {"RoleId": 5, "OrganizationId": 6, "UserName": "1000"}


def test_role_login_without_token_keeps_current(portal, fake_response):
    portal([fake_response(200, {"ok": True})], config={"username": "1000"})
    assert validate_and_refresh_token("old") == "old"


def test_probe_401_means_invalid(portal, fake_response):
    session = portal([fake_response(500), fake_response(401)], config={"username": "1000"})

    assert validate_and_refresh_token("old") is None
    assert session.calls[1][1].endswith("/referrals/facility/tabs")


def test_probe_without_username_skips_role_login(portal, fake_response):
    session = portal([fake_response(200, {"items": []})])

    assert validate_and_refresh_token("old") == "old"
    assert len(session.calls) == 1


def test_probe_network_error_assumes_valid(portal):
    portal([requests.ConnectionError("down")])

    assert validate_and_refresh_token("old") == "old"
    assert validate_and_refresh_token("old", strict=True) is None


def test_probe_server_error_assumes_valid(portal, fake_response):
    portal([fake_response(503)])

    assert validate_and_refresh_token("old") == "old"
    assert validate_and_refresh_token("old", strict=True) is None


def test_get_valid_token_persists_changed_token(monkeypatch):
    saved = []
    monkeypatch.setattr(auth, "load_config", lambda: {"token": "old", "cookie": "AuthToken=x; other=y",
                                                      "username": "1000"})
    monkeypatch.setattr(auth, "save_config", saved.append)
    seen = {}

    def validate(token, cookie, username, strict):
        seen.update(token=token, cookie=cookie)
        return "new"

    monkeypatch.setattr(auth, "validate_and_refresh_token", validate)

    assert get_valid_token() == "new"
    assert saved == [{"token": "new"}]
    assert seen == {"token": "old", "cookie": "AuthToken=x"}


def test_get_valid_token_login_only_when_allowed(monkeypatch):
    monkeypatch.setattr(auth, "load_config", lambda: {"token": "dead", "username": "1000"})
    monkeypatch.setattr(auth, "validate_and_refresh_token", lambda *a: None)
    logins = []

    def login(username):
        logins.append(username)
        return "logged-in"

    assert get_valid_token(auto_login=False, login_fn=login) is None
    assert logins == []
    assert get_valid_token(auto_login=True, login_fn=login) == "logged-in"
    assert logins == ["1000"]


def test_get_valid_token_login_failure_returns_none(monkeypatch):
    monkeypatch.setattr(auth, "load_config", lambda: {})

    def login(username):
        raise RuntimeError("captcha")

    assert get_valid_token(auto_login=True, login_fn=login) is None
