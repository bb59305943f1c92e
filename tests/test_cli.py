"""Command line entry points."""

from __future__ import annotations

import pytest

import cli
from models import Credential, UploadError


@pytest.fixture
def accept_env(monkeypatch):
    """Logged-in operator whose case is listed on tab 1"""
    built = []

    class FakeScheduler:
        def __init__(self, case, file_path, credential, concurrency=1):
            built.append({"case": case, "file": file_path, "token": credential.token,
                          "concurrency": concurrency})

        def run(self):
            result = FakeScheduler.result
            if isinstance(result, Exception):
                raise result
            return result

    FakeScheduler.result = True
    monkeypatch.setattr(cli, "get_valid_token", lambda *a, **kw: "tok")
    monkeypatch.setattr(cli, "load_credential", lambda: Credential(token="stale", cookie="AuthToken=x"))
    monkeypatch.setattr(cli, "get_referrals",
                        lambda token, cookie, tab: {"items": [{"id": 12345, "patientName": "P"}]})
    monkeypatch.setattr(cli, "CountdownScheduler", FakeScheduler)
    return built, FakeScheduler


def test_parse_target_time_is_local_today():
    target = cli.parse_target_time("14:30:05")

    assert (target.hour, target.minute, target.second) == (14, 30, 5)
    assert target.tzinfo is not None


def test_accept_uses_listed_case_and_fresh_token(accept_env):
    built, _ = accept_env

    assert cli.main(["accept", "--case", "12345", "--file", "r.pdf", "--threads", "2"]) == 0

    assert built[0]["case"]["patientName"] == "P"
    assert built[0]["token"] == "tok"
    assert built[0]["concurrency"] == 2


def test_accept_unknown_case_with_override_time(accept_env):
    built, _ = accept_env

    cli.main(["accept", "-c", "999", "-f", "r.pdf", "-t", "09:00:00"])

    case = built[0]["case"]
    assert case["id"] == "999"
    assert case["openTime"].hour == 9


def test_accept_upload_failure_exits_nonzero(accept_env):
    _, scheduler = accept_env
    scheduler.result = UploadError("gave up")

    assert cli.main(["accept", "-c", "12345", "-f", "r.pdf"]) == 1


def test_accept_requires_token(accept_env, monkeypatch):
    monkeypatch.setattr(cli, "get_valid_token", lambda *a, **kw: None)

    assert cli.main(["accept", "-c", "12345", "-f", "r.pdf"]) == 1


def test_accept_malformed_target_time_exits_nonzero(accept_env):
    built, _ = accept_env

    assert cli.main(["accept", "-c", "12345", "-f", "r.pdf", "--at", "14:30"]) == 1
    assert built == []
