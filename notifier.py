#!/usr/bin/env python3
"""
IFTTT webhook notifications for watcher events
"""

import logging
from html import escape
from typing import Dict, Optional

import requests

from config import (IFTTT_WEBHOOK_URL, IFTTT_KEY, IFTTT_EVENT, NOTIFY_TIMEOUT,
                    REFERRALS_HOST)
from models import get_status_text

logger = logging.getLogger(__name__)

STYLE_TABLE = "width:100%; border-collapse: collapse; font-family: Arial, sans-serif;"
STYLE_TH = "padding: 10px; border: 1px solid #ddd; background-color: #f2f2f2; text-align: left; width: 30%;"
STYLE_TD = "padding: 10px; border: 1px solid #ddd;"


def get_webhook_url() -> Optional[str]:
    if IFTTT_WEBHOOK_URL:
        return IFTTT_WEBHOOK_URL
    if IFTTT_KEY:
        return f"https://maker.ifttt.com/trigger/{IFTTT_EVENT}/with/key/{IFTTT_KEY}"
    return None


def _val(value) -> str:
    return escape(str(value)) if value else "N/A"


def _section(title: str, color: str) -> str:
    return f'<tr><th colspan="2" style="background-color: {color}; color: white; padding: 10px;">{title}</th></tr>'


def _row(label: str, value: str) -> str:
    return f'<tr><td style="{STYLE_TH}">{label}</td><td style="{STYLE_TD}">{value}</td></tr>'


def build_html_body(item: Dict) -> str:
    """HTML e-mail body describing one referral"""
    reason = item.get("referralReason")
    if isinstance(reason, list):
        reason = ", ".join(str(r) for r in reason)

    rows = [
        _section("👤 Patient Information", "#3498db"),
        _row("Name", _val(item.get("patientName"))),
        _row("National ID", _val(item.get("patientNationalId"))),
        _row("Nationality", _val(item.get("patientNationality"))),
        _row("DOB", _val(item.get("patientDOB"))),
        _row("Mobile", _val(item.get("patientMobile"))),
        _section("📋 Referral Information", "#27ae60"),
        _row("Type", f"<strong>{_val(item.get('referralType'))}</strong>"),
        _row("Referral ID", _val(item.get("referralId"))),
        _row("Reference ID", _val(item.get("referralReferenceId"))),
        _row("Source", _val(item.get("source"))),
        _row("Status", f"<strong>{escape(get_status_text(item.get('status')))}</strong>"),
        _row("Created At", _val(item.get("createdAt"))),
        _row("Reason", _val(reason)),
        _section("🏥 Medical & Provider", "#8e44ad"),
        _row("Provider Name", _val(item.get("providerName"))),
        _row("Region", _val(item.get("providerRegion"))),
        _row("Specialty", f"{_val(item.get('mainSpecialty'))} - {_val(item.get('subSpecialty'))}"),
        _row("Bed Type", _val(item.get("requestedBedType"))),
    ]

    attachments = item.get("attachments") or []
    if attachments:
        rows.append(_section("📎 Attachments", "#e67e22"))
        for att in attachments:
            file_url = att.get("fileUrl") or ""
            if file_url and not file_url.startswith("http"):
                file_url = f"{REFERRALS_HOST}{file_url}"
            rows.append(
                f'<tr><td style="{STYLE_TD}" colspan="2"><a href="{escape(file_url)}" target="_blank">'
                f'📄 {_val(att.get("fileName"))}</a></td></tr>'
            )

    return (
        '<div style="font-family: Arial, sans-serif; color: #333;">'
        '<h2 style="color: #2c3e50;">New Referral Details</h2>'
        f'<table style="{STYLE_TABLE}">{"".join(rows)}</table>'
        '</div>'
    )


def send_to_ifttt(item: Dict, message: Optional[str] = None) -> bool:
    """
    Post a referral to the IFTTT webhook

    Best effort: returns False on any failure, never raises.
    """
    url = get_webhook_url()
    if not url:
        return False

    subject = message or f"📢 New Referral: {item.get('referralType')} - {item.get('patientName')}"
    payload = {
        "value1": subject,
        "value2": build_html_body(item),
        "value3": str(item.get("id") or "No ID")
    }

    try:
        response = requests.post(url, json=payload, timeout=NOTIFY_TIMEOUT)
        response.raise_for_status()
        logger.info("🔔 IFTTT notification sent")
        return True
    except Exception as e:
        logger.warning(f"⚠️ IFTTT notification failed: {e}")
        return False
