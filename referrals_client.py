#!/usr/bin/env python3
"""
Referral portal operations: listing, details and report upload
"""

import logging
import os
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from config import (TABS_URL, UPLOAD_URL, REFERRALS_API, PAGE_SIZE, MAX_PAGES,
                    PORTAL_UTC_OFFSET_HOURS, OPEN_DELAY_MINUTES, INBOUND_TAB,
                    OUTBOUND_TAB, UPLOAD_MAX_ATTEMPTS, UPLOAD_RETRY_DELAY)
from http_client import get_client
from models import UploadError

logger = logging.getLogger(__name__)

FRACTION = re.compile(r"\.(\d+)")

PORTAL_TZ = timezone(timedelta(hours=PORTAL_UTC_OFFSET_HOURS))
OPEN_DELAY = timedelta(minutes=OPEN_DELAY_MINUTES)


def _path(*keys: str) -> Callable[[Any], Any]:
    def extract(raw):
        for key in keys:
            if not isinstance(raw, dict):
                return None
            raw = raw.get(key)
        return raw
    return extract


# Response shape differs between deployments, first list found wins
ITEM_EXTRACTORS = [
    _path("items"),
    _path("data", "items"),
    _path("data", "data"),
    _path("data"),
    _path("result", "items"),
    _path("result", "data"),
    lambda raw: raw,
]


def extract_items(raw: Any) -> List[Dict]:
    for extractor in ITEM_EXTRACTORS:
        items = extractor(raw)
        if isinstance(items, list):
            return items
    return []


def extract_total_count(raw: Any) -> int:
    if not isinstance(raw, dict):
        return 0
    total = raw.get("totalCount") or raw.get("count") or raw.get("total") or 0
    if not total and isinstance(raw.get("data"), dict):
        total = raw["data"].get("totalCount") or 0
    return total


def _normalize_fraction(match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_broadcast_time(value: str) -> datetime:
    """
    Parse a portal timestamp

    Values without an offset are KSA local time, whatever the host timezone is.
    Fractions of any length are cut or padded to microseconds (the portal
    sends .NET style 7 digit ticks). Raises ValueError on a malformed value.
    """
    text = value.strip().replace(" ", "T").replace("Z", "+00:00")
    text = FRACTION.sub(_normalize_fraction, text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=PORTAL_TZ)
    return parsed


def compute_open_time(broadcasted_at: str) -> datetime:
    return parse_broadcast_time(broadcasted_at) + OPEN_DELAY


def get_referrals(token: str, cookie: str = None, tab: int = OUTBOUND_TAB,
                  page: int = 1) -> Dict:
    """
    Fetch one page of a tab

    HTTP errors propagate as requests.HTTPError so callers can tell a dead
    session from a server outage.
    """
    session = get_client(token, cookie)
    response = session.post(TABS_URL, json={
        "pageNumber": page,
        "pageSize": PAGE_SIZE,
        "sortField": "createdDate",
        "sortDirection": "DESC",
        "tab": tab
    })
    response.raise_for_status()
    raw = response.json()

    items = extract_items(raw)
    for item in items:
        if isinstance(item, dict) and item.get("broadcastedAt"):
            item["openTime"] = compute_open_time(item["broadcastedAt"])

    result = dict(raw) if isinstance(raw, dict) else {}
    result["items"] = items
    result["totalCount"] = extract_total_count(raw)
    return result


def get_all_referrals(token: str, cookie: str = None, tab: int = INBOUND_TAB) -> Dict:
    """
    Walk every page of a tab

    Stops on a short page, the page ceiling or the first error. Never raises,
    an error returns whatever was collected so far.
    """
    all_items = []
    total_count = 0
    page = 1
    has_more = True

    while has_more and page <= MAX_PAGES:
        try:
            data = get_referrals(token, cookie, tab, page)
        except Exception as e:
            logger.warning(f"⚠️ Stopped paging tab {tab} at page {page}: {e}")
            has_more = False
            break

        if page == 1:
            total_count = data.get("totalCount") or 0

        items = data.get("items") or []
        all_items.extend(items)

        if len(items) < PAGE_SIZE:
            has_more = False
        else:
            page += 1

    logger.debug(f"Fetched {len(all_items)} items from tab {tab}")
    return {
        "items": all_items,
        "totalCount": total_count or len(all_items),
        "hasMore": has_more
    }


def get_case_details(token: str, cookie: str, case_id: str) -> Dict:
    session = get_client(token, cookie)
    response = session.get(f"{REFERRALS_API}/referrals/{case_id}")
    response.raise_for_status()
    return response.json()


def upload_file(token: str, cookie: str, file_path: str,
                mime_type: str = "application/pdf", session: Optional[requests.Session] = None) -> str:
    """
    Upload the acceptance report and return its attachment id

    Raises FileNotFoundError for a missing report and UploadError once every
    attempt has failed.
    """
    logger.info("📤 Starting file upload...")
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    with open(file_path, "rb") as f:
        content = f.read()
    file_name = os.path.basename(file_path)

    session = session or get_client(token, cookie)
    # Let requests build the multipart boundary
    session.headers.pop("Content-Type", None)

    for attempt in range(1, UPLOAD_MAX_ATTEMPTS + 1):
        try:
            response = session.post(UPLOAD_URL, files={"file": (file_name, content, mime_type)})
            if response.status_code in (200, 201):
                file_id = response.json()["id"]
                logger.info(f"✅ File uploaded! ID: {file_id}")
                return file_id
            logger.warning(f"⚠️ Upload attempt {attempt} failed with status {response.status_code}")
        except Exception as e:
            logger.warning(f"⚠️ Upload attempt {attempt} failed: {e}")

        if attempt < UPLOAD_MAX_ATTEMPTS:
            time.sleep(UPLOAD_RETRY_DELAY)

    raise UploadError(f"Failed to upload file after {UPLOAD_MAX_ATTEMPTS} attempts")
