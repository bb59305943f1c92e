#!/usr/bin/env python3
"""
Session and config persistence

Credentials live in SESSION_FILE, everything else the operator sets lives in
CONFIG_FILE. Both are plain JSON documents that get overwritten on save.
"""

import json
import logging
import os
from typing import Dict, Optional

from config import (SESSION_FILE, CONFIG_FILE, AUTH_COOKIE_NAMES,
                    DEFAULT_ROLE_ID, DEFAULT_ORGANIZATION_ID)
from models import Credential

logger = logging.getLogger(__name__)

SESSION_KEYS = ("token", "cookie", "username")

# Environment always wins over stored values
ENV_OVERRIDES = {
    "SEHA_TOKEN": "token",
    "SEHA_USERNAME": "username",
    "SEHA_PASSWORD": "password",
    "CAPSOLVER_KEY": "capsolver_key",
    "GMAIL_ADDRESS": "gmail_address",
    "GMAIL_APP_PASSWORD": "gmail_app_password",
}


def read_json(path: str) -> Optional[Dict]:
    """Read a JSON document, None if missing or unreadable"""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"⚠️ Could not read {path}: {e}")
        return None


def write_json(path: str, data: Dict) -> None:
    """Overwrite a JSON document, creating its directory if needed"""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def cookie_string_to_dict(cookie: str) -> Dict[str, str]:
    """Parse 'a=1; b=2' into a dict"""
    out = {}
    if not cookie or not isinstance(cookie, str):
        return out
    for part in cookie.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        if name.strip():
            out[name.strip()] = value.strip()
    return out


def cookie_dict_to_string(cookies) -> str:
    if not cookies:
        return ""
    if isinstance(cookies, str):
        return cookies.strip()
    return "; ".join(f"{k}={v}" for k, v in cookies.items() if k and v is not None)


def get_auth_cookie_string(cookie) -> str:
    """Keep only the cookies the API needs for a session"""
    if not cookie:
        return ""
    cookies = cookie_string_to_dict(cookie) if isinstance(cookie, str) else cookie
    if not isinstance(cookies, dict):
        return ""
    subset = {name: cookies[name] for name in AUTH_COOKIE_NAMES if cookies.get(name)}
    return cookie_dict_to_string(subset)


def load_config() -> Dict:
    """Merged view of session + config files + environment overrides"""
    session = read_json(SESSION_FILE) or {}
    settings = read_json(CONFIG_FILE) or {}

    merged = {**settings, **session}
    for env_name, key in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            merged[key] = value

    merged["cookie"] = cookie_dict_to_string(merged.get("cookie"))
    return merged


def save_config(update: Dict) -> None:
    """Merge update into the stored documents and write both back"""
    session = read_json(SESSION_FILE) or {}
    settings = read_json(CONFIG_FILE) or {}

    for key, value in update.items():
        if key in SESSION_KEYS:
            if key == "cookie" and isinstance(value, str):
                value = cookie_string_to_dict(value)
            session[key] = value
        else:
            settings[key] = value

    try:
        write_json(SESSION_FILE, session)
        write_json(CONFIG_FILE, settings)
    except OSError as e:
        logger.error(f"❌ Error saving session: {e}")


def load_credential() -> Credential:
    """Credential used for API calls, cookie reduced to the auth subset"""
    config = load_config()
    return Credential(
        token=config.get("token"),
        cookie=get_auth_cookie_string(config.get("cookie")),
        username=config.get("username"),
        role_id=int(config.get("role_id") or DEFAULT_ROLE_ID),
        organization_id=int(config.get("organization_id") or DEFAULT_ORGANIZATION_ID)
    )
