#!/usr/bin/env python3
"""
Burst acceptance

accept_case_burst() races several threads hammering the accept endpoint.
burst_worker_main() is the entry point of a worker process spawned by the
countdown scheduler: warm a connection, wait for the target instant, fire once.
"""

import json
import logging
import multiprocessing
import threading
import time
from typing import Callable, Dict, Optional

import requests

from config import (REFERRALS_API, TABS_URL, BURST_CONCURRENCY, BUSY_WAIT_MS,
                    BUSY_WAIT_CEILING_MS)
from http_client import get_accept_client, set_token
from models import BurstResult

logger = logging.getLogger(__name__)


def accept_url(case_id) -> str:
    return f"{REFERRALS_API}/referrals/{case_id}/accept-json"


def build_accept_body(file_id) -> str:
    return json.dumps({"accept": True, "file": file_id})


def parse_accept_response(response: requests.Response) -> Optional[Dict]:
    """Response body when the portal confirmed the acceptance, else None"""
    if response.status_code != 200:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("message"):
        return data
    return None


def wait_until(target: float, clock: Callable[[], float] = time.time,
               sleep: Callable[[float], None] = time.sleep,
               spin_ms: int = BUSY_WAIT_MS, ceiling_ms: int = BUSY_WAIT_CEILING_MS) -> None:
    """
    Block until the wall clock reaches target (epoch seconds)

    Sleeps coarsely, then spins for the last spin_ms. The spin trades CPU for
    firing precision and gives up after ceiling_ms of monotonic time.
    """
    remaining = target - clock()
    if remaining > spin_ms / 1000.0:
        sleep(remaining - spin_ms / 1000.0)

    deadline = time.perf_counter() + ceiling_ms / 1000.0
    while clock() < target and time.perf_counter() < deadline:
        pass


def _default_refresh(token: str, cookie: str) -> Optional[str]:
    # Imported lazily so worker processes do not pull in the auth stack
    from auth import validate_and_refresh_token
    from session_store import load_config

    return validate_and_refresh_token(token, cookie, load_config().get("username"), False)


class RaceCell:
    """Single-assignment result shared by every racing thread"""

    def __init__(self):
        self._lock = threading.Lock()
        self.attempts = 0
        self.data = None
        self.winner = None
        self.accepted = False

    def count_attempt(self) -> int:
        with self._lock:
            self.attempts += 1
            return self.attempts

    def settle(self, data: Dict, winner: str) -> bool:
        """True for the first caller only"""
        with self._lock:
            if self.accepted:
                return False
            self.accepted = True
            self.data = data
            self.winner = winner
            return True


def accept_case_burst(token: str, cookie: str, case_id, file_id,
                      concurrency: int = BURST_CONCURRENCY,
                      client_factory: Callable[[str, str], requests.Session] = get_accept_client,
                      refresh_token: Callable[[str, str], Optional[str]] = None,
                      stop_event: threading.Event = None,
                      timeout: float = None) -> BurstResult:
    """
    Race `concurrency` threads to accept a case

    Each thread owns its client and token copy. No delay between attempts:
    errors and non-success statuses loop straight away, 401/403 refresh the
    thread's token first. Returns as soon as any thread settles, then tells
    the rest to stop. Without a timeout this only returns on success or when
    stop_event is set from outside.
    """
    logger.info(f"🚀 Starting burst acceptance for case {case_id} ({concurrency} threads)")

    url = accept_url(case_id)
    body = build_accept_body(file_id)
    refresh_token = refresh_token or _default_refresh
    stop_event = stop_event or threading.Event()
    cell = RaceCell()
    finished = threading.Event()

    def race(thread_id: int):
        session = client_factory(token, cookie)
        thread_token = token
        try:
            while not cell.accepted and not stop_event.is_set():
                cell.count_attempt()
                try:
                    response = session.post(url, data=body, allow_redirects=False)
                except Exception:
                    continue

                data = parse_accept_response(response)
                if data is not None:
                    if cell.settle(data, f"thread-{thread_id}"):
                        logger.info(f"✅ CASE ACCEPTED! Thread {thread_id} hit the target "
                                    f"({cell.attempts} total attempts)")
                    return

                if response.status_code in (401, 403):
                    logger.warning(f"⚠️ Thread {thread_id}: token rejected, refreshing...")
                    try:
                        new_token = refresh_token(thread_token, cookie)
                    except Exception:
                        new_token = None
                    if new_token:
                        thread_token = new_token
                        set_token(session, new_token)
        finally:
            finished.set()

    threads = [
        threading.Thread(target=race, args=(i,), name=f"burst-{i}", daemon=True)
        for i in range(concurrency)
    ]
    for thread in threads:
        thread.start()

    deadline = time.monotonic() + timeout if timeout is not None else None
    # Short waits keep Ctrl+C responsive
    while not finished.wait(0.05):
        if deadline is not None and time.monotonic() >= deadline:
            logger.warning("⏱️ Burst timed out")
            break
    stop_event.set()

    logger.info(f"Burst finished. Total attempts across all threads: {cell.attempts}")
    return BurstResult(accepted=cell.accepted, attempts=cell.attempts,
                       data=cell.data, winner=cell.winner)


def burst_worker_main(payload: Dict, queue) -> None:
    """
    Worker process body

    payload: {token, cookie, caseId, fileId, targetTimeMs, offsetMs}
    Sends "ready" once the connection is warm (even if warming failed), then
    exactly one {success, data|error, firedAt, offset} message.
    """
    offset_ms = payload.get("offsetMs", 0)
    session = get_accept_client(payload.get("token"), payload.get("cookie"))
    url = accept_url(payload["caseId"])
    body = build_accept_body(payload["fileId"])
    fire_at = (payload["targetTimeMs"] - offset_ms) / 1000.0

    try:
        session.get(TABS_URL)
    except Exception:
        pass
    queue.put("ready")

    wait_until(fire_at)

    message = {"offset": offset_ms}
    try:
        response = session.post(url, data=body, allow_redirects=False)
        data = parse_accept_response(response)
        if data is not None:
            message.update(success=True, data=data)
        else:
            message.update(success=False, error=f"HTTP {response.status_code}")
    except Exception as e:
        message.update(success=False, error=str(e))
    message["firedAt"] = int(time.time() * 1000)
    queue.put(message)


def spawn_burst_worker(payload: Dict, queue) -> multiprocessing.Process:
    process = multiprocessing.Process(target=burst_worker_main, args=(payload, queue), daemon=True)
    process.start()
    return process
