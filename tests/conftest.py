"""Shared fakes for HTTP sessions and responses."""

from __future__ import annotations

import pytest
import requests

import models


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, cookies=None):
        self.status_code = status_code
        self._json = json_data
        self.cookies = cookies or {}

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Scripted stand-in for requests.Session

    responses: list of FakeResponse / Exception consumed in order (the last
    one repeats), or a callable(method, url, kwargs) returning one.
    """

    def __init__(self, responses=None):
        self.headers = {}
        self.responses = responses if responses is not None else [FakeResponse()]
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if callable(self.responses):
            result = self.responses(method, url, kwargs)
        elif len(self.responses) > 1:
            result = self.responses.pop(0)
        else:
            result = self.responses[0]
        if isinstance(result, Exception):
            raise result
        return result

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def isolated_store(tmp_path, monkeypatch):
    """Point session/config persistence at a temp dir"""
    import session_store

    session_file = str(tmp_path / "session" / "session.json")
    config_file = str(tmp_path / "data" / "config.json")
    monkeypatch.setattr(session_store, "SESSION_FILE", session_file)
    monkeypatch.setattr(session_store, "CONFIG_FILE", config_file)
    for env_name in session_store.ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)
    return tmp_path


@pytest.fixture(autouse=True)
def reset_monitor_state():
    snapshot = {k: (list(v) if isinstance(v, list) else v) for k, v in models.monitor_state.items()}
    yield
    models.monitor_state.clear()
    models.monitor_state.update(snapshot)


@pytest.fixture
def no_upload_delay(monkeypatch):
    import referrals_client

    monkeypatch.setattr(referrals_client, "UPLOAD_RETRY_DELAY", 0)
