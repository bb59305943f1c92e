#!/usr/bin/env python3
"""
Background monitoring task
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Callable, Optional

import requests

from config import (MONITOR_MIN_DELAY, MONITOR_MAX_DELAY, SERVER_ERROR_WAIT,
                    MAX_EVENTS, MAX_ERRORS, OUTBOUND_TAB, INBOUND_TAB)
from models import monitor_state
from auth import validate_and_refresh_token
from referrals_client import get_referrals, get_all_referrals
from session_store import load_config, save_config, get_auth_cookie_string
from watcher import ReferralWatcher

logger = logging.getLogger(__name__)


def _status_of(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def push_event(message: str) -> None:
    monitor_state["events"].append(message)
    monitor_state["events"] = monitor_state["events"][-MAX_EVENTS:]


def record_error(error: Exception) -> None:
    monitor_state["errors"].append({
        "timestamp": datetime.utcnow().isoformat(),
        "error": str(error)
    })
    # Keep only last 10 errors
    monitor_state["errors"] = monitor_state["errors"][-MAX_ERRORS:]


async def countdown(seconds: int) -> None:
    """Sleep one second at a time so the dashboard sees the countdown"""
    for remaining in range(seconds, 0, -1):
        monitor_state["next_update_in"] = remaining
        await asyncio.sleep(1)
    monitor_state["next_update_in"] = 0


def refresh_snapshot(watcher: ReferralWatcher, token: str, cookie: str) -> None:
    """One fetch + watch pass over both tabs. HTTP errors propagate."""
    tab1 = get_referrals(token, cookie, OUTBOUND_TAB)
    tab1_items = tab1.get("items") or []

    tab2 = get_all_referrals(token, cookie, INBOUND_TAB)
    tab2_items = tab2.get("items") or []

    watcher.analyze_tab1(tab1_items, token, cookie)
    for event in watcher.analyze_tab2(tab2_items):
        push_event(event.message)

    monitor_state["tab1"] = tab1_items
    monitor_state["tab2"] = tab2_items
    monitor_state["tab2_total"] = tab2.get("totalCount") or len(tab2_items)
    monitor_state["last_update"] = datetime.utcnow().isoformat()


def recover_session(token: str, cookie: str, username: str,
                    login_fn: Callable[..., Optional[str]] = None) -> str:
    """
    Handle a 401 during polling

    Returns "refreshed" (token persisted, carry on), "logged_in" (restart the
    cycle now) or "failed".
    """
    logger.warning("⚠️ Token expired. Refreshing...")
    new_token = validate_and_refresh_token(token, cookie, username, True)
    if new_token:
        if new_token != token:
            save_config({"token": new_token})
        logger.info("✅ Token refreshed")
        return "refreshed"

    if login_fn is None:
        logger.error("❌ Background refresh failed and no login flow is configured")
        return "failed"

    logger.warning("🔐 Background refresh failed. Initiating auto-login...")
    try:
        login_token = login_fn(username=username)
    except Exception as e:
        logger.error(f"❌ Login error: {e}")
        return "failed"

    if login_token:
        logger.info("✅ Auto-login successful, resuming monitor")
        return "logged_in"
    logger.error("❌ Auto-login failed")
    return "failed"


async def monitor_and_process(login_fn: Callable[..., Optional[str]] = None,
                              watcher: ReferralWatcher = None):
    """Background task that continuously polls both referral tabs"""
    logger.info("🔄 Starting continuous monitoring...")
    watcher = watcher or ReferralWatcher()

    while monitor_state["is_running"]:
        monitor_state["counter"] += 1
        monitor_state["is_updating"] = True
        monitor_state["last_check"] = datetime.utcnow().isoformat()

        config = load_config()
        token = config.get("token")
        cookie = get_auth_cookie_string(config.get("cookie"))

        try:
            refresh_snapshot(watcher, token, cookie)

        except requests.HTTPError as e:
            status = _status_of(e)
            if status is not None and 500 <= status < 600:
                # Server is down, the session is fine
                logger.warning(f"⚠️ Server error ({status}). Retrying in {SERVER_ERROR_WAIT}s...")
                push_event(f"[{datetime.now().strftime('%H:%M:%S')}] ⚠️ Server Error {status} - "
                           f"retrying in {SERVER_ERROR_WAIT}s")
                monitor_state["is_updating"] = False
                await countdown(SERVER_ERROR_WAIT)
                continue

            if status == 401:
                outcome = recover_session(token, cookie, config.get("username"), login_fn)
                if outcome == "logged_in":
                    monitor_state["is_updating"] = False
                    monitor_state["next_update_in"] = 0
                    continue
            else:
                logger.error(f"Error in monitoring loop: {e}")
                record_error(e)

        except Exception as e:
            logger.error(f"Error in monitoring loop: {e}")
            record_error(e)

        monitor_state["is_updating"] = False

        # Wait before next check
        delay = random.randint(MONITOR_MIN_DELAY, MONITOR_MAX_DELAY)
        await countdown(delay)

    logger.info("🛑 Monitoring stopped")


def check_session_and_login(login_fn: Callable[..., Optional[str]] = None) -> bool:
    """
    Probe the stored session, logging in again only when it is really dead

    Server errors and network trouble count as a valid session.
    """
    logger.info("🔍 Checking session validity...")
    config = load_config()
    token = config.get("token")
    cookie = get_auth_cookie_string(config.get("cookie"))

    is_valid = False
    if token:
        try:
            get_referrals(token, cookie, OUTBOUND_TAB)
            is_valid = True
        except requests.HTTPError as e:
            status = _status_of(e)
            if status == 401:
                is_valid = False
            else:
                logger.warning(f"⚠️ HTTP error ({status}). Session assumed valid, will retry.")
                is_valid = True
        except Exception as e:
            logger.warning(f"⚠️ Connection error: {e}. Will retry.")
            is_valid = True

    if is_valid:
        logger.info("✅ Session is VALID")
        return True

    logger.warning("❌ Session is EXPIRED/INVALID")
    if login_fn is None:
        logger.info("Run the login flow to get a fresh token.")
        return False

    try:
        if login_fn(username=config.get("username")):
            logger.info("✅ Login successful. Session renewed.")
            return True
    except Exception as e:
        logger.error(f"❌ Login failed: {e}")
    return False
