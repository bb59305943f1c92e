"""Status API handlers, called directly."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import HTTPException

import api_endpoints
from models import monitor_state


def test_status_reports_monitor_state():
    monitor_state.update(is_running=True, counter=4, errors=[{"error": str(i)} for i in range(8)])

    status = asyncio.run(api_endpoints.get_status())

    assert status["is_running"] is True
    assert status["counter"] == 4
    assert len(status["recent_errors"]) == 5
    assert status["uptime_seconds"] >= 0


def test_snapshot_exposes_both_tabs():
    monitor_state.update(tab1=[{"id": 1}], tab2=[{"id": 2}], tab2_total=30)

    snapshot = asyncio.run(api_endpoints.get_referrals_snapshot())

    assert snapshot["tab1"] == [{"id": 1}]
    assert snapshot["tab2_total"] == 30


def test_stop_when_idle_is_rejected():
    monitor_state["is_running"] = False

    response = asyncio.run(api_endpoints.stop_monitoring())

    assert response.status_code == 400


def test_stop_flips_running_flag():
    monitor_state.update(is_running=True, counter=3)

    result = asyncio.run(api_endpoints.stop_monitoring())

    assert monitor_state["is_running"] is False
    assert result["cycles"] == 3


def test_start_when_running_is_rejected():
    monitor_state["is_running"] = True

    response = asyncio.run(api_endpoints.start_monitoring())

    assert response.status_code == 400


def test_check_session_maps_invalid_to_401(monkeypatch):
    monkeypatch.setattr(api_endpoints, "check_session_and_login", lambda: False)

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(api_endpoints.check_session())
    assert excinfo.value.status_code == 401

    monkeypatch.setattr(api_endpoints, "check_session_and_login", lambda: True)
    assert asyncio.run(api_endpoints.check_session()) == {"message": "Session is valid"}
