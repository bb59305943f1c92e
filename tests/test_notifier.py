"""IFTTT notifications."""

from __future__ import annotations

import pytest
import requests

import notifier
from notifier import build_html_body, send_to_ifttt


@pytest.fixture
def webhook(monkeypatch, fake_response):
    posts = []

    def post(url, json=None, timeout=None):
        posts.append((url, json))
        return fake_response(200, {})

    monkeypatch.setattr(notifier, "IFTTT_WEBHOOK_URL", "")
    monkeypatch.setattr(notifier, "IFTTT_KEY", "k3y")
    monkeypatch.setattr(notifier.requests, "post", post)
    return posts


def test_html_body_escapes_values_and_links_attachments():
    body = build_html_body({
        "patientName": "<script>",
        "status": 3,
        "referralReason": ["Cardiac", "ICU"],
        "attachments": [{"fileName": "scan.pdf", "fileUrl": "/files/scan.pdf"}],
    })

    assert "&lt;script&gt;" in body
    assert "Accepted" in body
    assert "Cardiac, ICU" in body
    assert f'href="{notifier.REFERRALS_HOST}/files/scan.pdf"' in body


def test_send_posts_three_values(webhook):
    assert send_to_ifttt({"id": 7, "patientName": "A", "referralType": "ER"}) is True

    url, payload = webhook[0]
    assert url.endswith("/with/key/k3y")
    assert payload["value1"] == "📢 New Referral: ER - A"
    assert payload["value3"] == "7"


def test_send_uses_custom_subject(webhook):
    send_to_ifttt({"id": 7}, "⚠️ Status Changed: Pending ➔ Accepted")
    assert webhook[0][1]["value1"] == "⚠️ Status Changed: Pending ➔ Accepted"


def test_send_without_webhook_is_noop(monkeypatch):
    monkeypatch.setattr(notifier, "IFTTT_WEBHOOK_URL", "")
    monkeypatch.setattr(notifier, "IFTTT_KEY", "")
    assert send_to_ifttt({"id": 1}) is False


def test_send_failure_returns_false(monkeypatch):
    def post(url, json=None, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(notifier, "IFTTT_WEBHOOK_URL", "https://hooks.example/x")
    monkeypatch.setattr(notifier.requests, "post", post)
    assert send_to_ifttt({"id": 1}) is False
