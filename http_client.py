#!/usr/bin/env python3
"""
HTTP client facade

Two flavours:
- get_client(): timeouts + retries, for polling, uploads and auth
- get_accept_client(): no timeout, big keep-alive pool, no retries, for the burst race
"""

import logging
import os
import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import (USER_AGENT, REFERRALS_HOST, REQUEST_TIMEOUT,
                    MAX_RETRIES)

logger = logging.getLogger(__name__)

BASE_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Accept-Language": "en,ar;q=0.9",
    "Origin": "https://www.seha.sa",
    "Referer": "https://www.seha.sa/",
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin"
}

ACCEPT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "Origin": REFERRALS_HOST,
    "Referer": f"{REFERRALS_HOST}/",
    "User-Agent": USER_AGENT
}


class PortalSession(requests.Session):
    """Session with a default timeout and the referrals host origin fix"""

    def __init__(self, timeout=REQUEST_TIMEOUT):
        super().__init__()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)
        if url.startswith(REFERRALS_HOST):
            headers = dict(kwargs.pop("headers", None) or {})
            headers.setdefault("Origin", REFERRALS_HOST)
            headers.setdefault("Referer", f"{REFERRALS_HOST}/")
            kwargs["headers"] = headers
        return super().request(method, url, **kwargs)


def _auth_headers(token: str = None, cookie: str = None) -> dict:
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if cookie:
        headers["Cookie"] = cookie
    return headers


def get_client(token: str = None, cookie: str = None) -> requests.Session:
    """Standard client for everything except the burst"""
    session = PortalSession()
    session.headers.update(BASE_HEADERS)
    session.headers.update(_auth_headers(token, cookie))

    retry = Retry(
        total=MAX_RETRIES,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        raise_on_status=False
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


# Keep-alive pool shared by every accept client in this process.
# Pings and the burst must go through the same pool.
_accept_adapter = None
_accept_adapter_pid = None
_accept_adapter_lock = threading.Lock()


def get_accept_adapter() -> HTTPAdapter:
    """Process-wide accept pool, rebuilt after a fork"""
    global _accept_adapter, _accept_adapter_pid
    with _accept_adapter_lock:
        # A worker process must never write to sockets inherited from its parent
        if _accept_adapter is None or _accept_adapter_pid != os.getpid():
            _accept_adapter = HTTPAdapter(pool_connections=4, pool_maxsize=64, max_retries=0)
            _accept_adapter_pid = os.getpid()
        return _accept_adapter


def get_accept_client(token: str = None, cookie: str = None) -> requests.Session:
    """
    Fast client for the accept race

    No timeout, no retries, no redirects. Callers inspect status codes
    themselves, nothing here raises on a bad status. Every client mounts the
    shared accept pool, so do not close() these sessions: that would drop
    the warmed connections for everyone.
    """
    session = PortalSession(timeout=None)
    session.headers.update(ACCEPT_HEADERS)
    session.headers.update(_auth_headers(token, cookie))

    adapter = get_accept_adapter()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def set_token(session: requests.Session, token: str) -> None:
    """Swap the bearer token of an existing session in place"""
    session.headers["Authorization"] = f"Bearer {token}"
