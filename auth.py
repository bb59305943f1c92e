#!/usr/bin/env python3
"""
Token lifecycle: validate, refresh, and fall back to login
"""

import logging
from typing import Callable, Optional

import requests

from config import (ROLE_LOGIN_URL, TABS_URL, TOKEN_COOKIE_NAME,
                    DEFAULT_ROLE_ID, DEFAULT_ORGANIZATION_ID, OUTBOUND_TAB)
from http_client import get_client
from session_store import load_config, save_config, get_auth_cookie_string

logger = logging.getLogger(__name__)

# Tried in order on the role login response body
TOKEN_BODY_FIELDS = ("token", "Token", "accessToken")


def extract_token(response: requests.Response) -> Optional[str]:
    """Pull a token from a role login response, body first, then cookies"""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for name in TOKEN_BODY_FIELDS:
            if body.get(name):
                return body[name]

    return response.cookies.get(TOKEN_COOKIE_NAME) or None


def _refresh_via_role_login(session: requests.Session, username: str,
                            role_id: int, organization_id: int) -> requests.Response:
    response = session.post(ROLE_LOGIN_URL, json={
        "RoleId": role_id,
        "OrganizationId": organization_id,
        "UserName": username
    })
    response.raise_for_status()
    return response


def validate_and_refresh_token(token: str, cookie: str = None, username: str = None,
                               strict: bool = False) -> Optional[str]:
    """
    Validate a token, refreshing it through role login when possible

    Args:
        token: current bearer token
        cookie: auth cookie subset
        username: account used for role login, falls back to the stored one
        strict: treat inconclusive probe errors as invalid

    Returns:
        A usable token (possibly the same one), or None when it is definitely dead.
        Never raises.
    """
    logger.info("🔍 Verifying token validity...")
    session = get_client(token, cookie)

    try:
        config = load_config()
    except Exception as e:
        logger.warning(f"⚠️ Could not load config for token refresh: {e}")
        config = {}

    username = username or config.get("username")
    if username:
        role_id = int(config.get("role_id") or DEFAULT_ROLE_ID)
        organization_id = int(config.get("organization_id") or DEFAULT_ORGANIZATION_ID)
        try:
            logger.info("🔄 Attempting session refresh via role login...")
            response = _refresh_via_role_login(session, username, role_id, organization_id)
            logger.info("✅ Session refreshed via role login")

            candidate = extract_token(response)
            if candidate:
                logger.info("✅ Got fresh token from refresh")
                return candidate
            return token
        except Exception as e:
            logger.warning(f"⚠️ Role login refresh failed: {e}")
            logger.warning("Continuing to check if token works for data...")

    # Cheap read-only probe
    try:
        response = session.post(TABS_URL, json={"pageNumber": 1, "pageSize": 1, "tab": OUTBOUND_TAB})
        response.raise_for_status()
        logger.info("✅ Token valid (data access confirmed)")
        return token
    except requests.HTTPError as e:
        if e.response is not None and e.response.status_code == 401:
            logger.warning("❌ Token invalid/expired (401)")
            return None
        logger.warning(f"⚠️ Token validation warning: {e}")
    except Exception as e:
        logger.warning(f"⚠️ Token validation warning: {e}")

    return None if strict else token


def get_valid_token(auto_login: bool = False,
                    login_fn: Callable[..., Optional[str]] = None) -> Optional[str]:
    """
    Return a working token from the stored session

    Falls back to login_fn only when auto_login is set. Returns None when the
    operator has to log in manually.
    """
    config = load_config()
    token = config.get("token")

    if token:
        cookie = get_auth_cookie_string(config.get("cookie"))
        fresh = validate_and_refresh_token(token, cookie, config.get("username"), False)
        if fresh:
            if fresh != token:
                save_config({"token": fresh})
            return fresh

    logger.warning("❌ No valid token found in session")

    if auto_login and login_fn is not None:
        logger.info("🔐 Attempting auto-login...")
        try:
            return login_fn(username=config.get("username"))
        except Exception as e:
            logger.error(f"❌ Auto-login failed: {e}")
            return None

    logger.info("Run the login flow to get a fresh token.")
    return None
