#!/usr/bin/env python3
"""
Countdown scheduler for a single accept flow

Timeline relative to the case open time (T):
    T-60s+   keep-alive ping every 60s
    T-15s    upload the report
    T-10s    refresh the token
    T-5s     spawn worker processes
    T-2s     warm up a connection
    T-50ms   busy-wait
    T        fire (main context races too, unless a worker already won)
"""

import logging
import multiprocessing
import os
import queue as queue_module
import re
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from auth import validate_and_refresh_token
from burst import accept_case_burst, spawn_burst_worker, wait_until
from config import (UPLOAD_TRIGGER_MS, TOKEN_TRIGGER_MS, WORKER_TRIGGER_MS,
                    WARM_UP_TRIGGER_MS, BUSY_WAIT_MS, KEEP_ALIVE_INTERVAL_MS,
                    BURST_WORKER_COUNT, WORKER_REPORT_GRACE, TABS_URL, LOG_DIR,
                    LOG_FORMAT)
from http_client import get_accept_client
from models import BurstTimeline, Credential, SchedulerPhase, SchedulerState
from referrals_client import upload_file, parse_broadcast_time
from session_store import save_config

logger = logging.getLogger(__name__)


def open_session_log(name: str) -> logging.Handler:
    """Mirror all logging of one accept flow into its own file"""
    safe_name = re.sub(r'[<>:"/\\|?*]+', "_", name or "session")
    os.makedirs(LOG_DIR, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = os.path.join(LOG_DIR, f"accept_{safe_name}_{stamp}.log")

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    logger.info(f"📝 Session log: {path}")
    return handler


def close_session_log(handler: logging.Handler) -> None:
    logging.getLogger().removeHandler(handler)
    handler.close()


def sleep_interval(remaining_ms: float) -> float:
    """Tick length in seconds, finer as the target gets closer"""
    if remaining_ms <= 1000:
        return 0.01
    if remaining_ms <= 5000:
        return 0.1
    return 1.0


class CountdownScheduler:
    """
    Drives one accept flow from ARMED to SETTLED

    Owns the token and file id for the flow. Worker processes get copies at
    spawn time and only talk back through the result queue.
    """

    def __init__(self, case: Dict, file_path: str, credential: Credential,
                 worker_count: int = BURST_WORKER_COUNT, concurrency: int = 1,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep,
                 uploader: Callable = upload_file,
                 token_refresher: Callable = validate_and_refresh_token,
                 persist_token: Callable[[str], None] = None,
                 burst: Callable = accept_case_burst,
                 spawn_worker: Callable = spawn_burst_worker,
                 queue_factory: Callable = multiprocessing.Queue,
                 pinger: Callable[[str], None] = None,
                 session_log: bool = True):
        self.case = case
        self.case_id = case["id"]
        self.file_path = file_path
        self.cookie = credential.cookie
        self.username = credential.username
        self.worker_count = worker_count
        self.concurrency = concurrency
        self.clock = clock
        self.sleep = sleep
        self.uploader = uploader
        self.token_refresher = token_refresher
        self.persist_token = persist_token or (lambda token: save_config({"token": token}))
        self.burst = burst
        self.spawn_worker = spawn_worker
        self.queue_factory = queue_factory
        self.pinger = pinger or self._ping
        self.session_log = session_log

        self.state = SchedulerState(token=credential.token, last_keep_alive=clock())
        self.queue = None
        # The worker-watch thread and the main thread both drain during the race
        self._drain_lock = threading.Lock()

        open_time = case.get("openTime")
        self.timeline = BurstTimeline(
            broadcasted_at=self._parse_broadcast(case.get("broadcastedAt")),
            open_time=open_time
        )

        now = clock()
        if open_time is not None and open_time.timestamp() > now:
            self.target_time = open_time.timestamp()
        else:
            self.target_time = now

    @staticmethod
    def _parse_broadcast(value) -> Optional[datetime]:
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        try:
            return parse_broadcast_time(value)
        except ValueError:
            return None

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock()).astimezone()

    def remaining_ms(self) -> float:
        return (self.target_time - self.clock()) * 1000

    # === Side effects ===

    def _upload(self) -> None:
        self.state.upload_attempted = True
        self.state.phase = SchedulerPhase.UPLOAD_TRIGGERED
        self.timeline.upload_start = self._now()
        try:
            self.state.file_id = self.uploader(self.state.token, self.cookie, self.file_path)
            self.state.uploaded = True
            self.timeline.upload_end = self._now()
            logger.info(f"✅ Upload done in {self.timeline.upload_ms}ms (fileId: {self.state.file_id})")
        except Exception as e:
            logger.error(f"❌ Upload failed: {e}. Will retry at burst.")

    def _refresh_token(self) -> None:
        self.state.token_refreshed = True
        self.state.phase = SchedulerPhase.TOKEN_TRIGGERED
        self.timeline.token_start = self._now()
        try:
            new_token = self.token_refresher(self.state.token, self.cookie, self.username, False)
        except Exception as e:
            logger.error(f"❌ Token refresh failed: {e}")
            new_token = None

        if new_token:
            if new_token != self.state.token:
                self.state.token = new_token
                try:
                    self.persist_token(new_token)
                except Exception as e:
                    logger.warning(f"⚠️ Could not persist refreshed token: {e}")
            logger.info("✅ Token refreshed")
        else:
            logger.warning("⚠️ Token refresh gave nothing, keeping the current token")
        self.timeline.token_end = self._now()

    def _spawn_workers(self) -> None:
        self.state.workers_spawned = True
        if not self.state.file_id:
            logger.warning("⚠️ No file id yet, skipping worker spawn")
            return

        logger.info(f"⚡ Spawning {self.worker_count} parallel workers...")
        self.queue = self.queue_factory()
        payload = {
            "token": self.state.token,
            "cookie": self.cookie,
            "caseId": self.case_id,
            "fileId": self.state.file_id,
            "targetTimeMs": int(self.target_time * 1000),
            "offsetMs": 0
        }
        for i in range(self.worker_count):
            try:
                self.state.workers.append(self.spawn_worker(dict(payload), self.queue))
            except Exception as e:
                logger.error(f"❌ Worker {i} failed to start: {e}")
        self.state.phase = SchedulerPhase.WORKERS_SPAWNED

    def _ping(self, label: str) -> None:
        try:
            client = get_accept_client(self.state.token, self.cookie)
            client.get(TABS_URL)
            logger.debug(f"[{label}] ping ok")
        except Exception as e:
            logger.warning(f"⚠️ [{label}] ping failed: {e}")

    def _ping_in_background(self, label: str) -> None:
        threading.Thread(target=self.pinger, args=(label,), name=label, daemon=True).start()

    def drain_worker_messages(self) -> None:
        if self.queue is None:
            return
        with self._drain_lock:
            self._drain_locked()

    def _drain_locked(self) -> None:
        while True:
            try:
                message = self.queue.get_nowait()
            except queue_module.Empty:
                return
            except (OSError, ValueError):
                return

            if message == "ready":
                self.state.ready_workers += 1
            elif isinstance(message, dict) and message.get("success"):
                if not self.state.accepted:
                    self.state.accepted = True
                    self.timeline.winner = f"worker (offset {message.get('offset', 0)}ms)"
                    logger.info("🏆 A worker won the race!")
            elif isinstance(message, dict):
                logger.debug(f"Worker reported failure: {message.get('error')}")

    def _terminate_workers(self) -> None:
        for worker in self.state.workers:
            try:
                worker.terminate()
            except Exception as e:
                logger.debug(f"Could not terminate worker: {e}")

    # === State machine ===

    def tick(self, remaining_ms: float) -> bool:
        """Run every trigger due at remaining_ms. True when it is time to fire."""
        self.drain_worker_messages()

        if remaining_ms > KEEP_ALIVE_INTERVAL_MS and \
                (self.clock() - self.state.last_keep_alive) * 1000 >= KEEP_ALIVE_INTERVAL_MS:
            self.state.last_keep_alive = self.clock()
            self._ping_in_background("keep-alive")

        if remaining_ms <= UPLOAD_TRIGGER_MS and not self.state.upload_attempted:
            logger.info("📤 T-15s: uploading report...")
            self._upload()

        if remaining_ms <= TOKEN_TRIGGER_MS and not self.state.token_refreshed:
            logger.info("🔄 T-10s: refreshing token...")
            self._refresh_token()

        if remaining_ms <= WORKER_TRIGGER_MS and not self.state.workers_spawned:
            self._spawn_workers()

        if remaining_ms <= WARM_UP_TRIGGER_MS and not self.state.warm_up_done:
            self.state.warm_up_done = True
            self._ping_in_background("warm-up")

        if remaining_ms <= BUSY_WAIT_MS:
            wait_until(self.target_time, clock=self.clock, sleep=self.sleep)
            return True

        return remaining_ms <= 0

    def _countdown(self) -> None:
        self.state.phase = SchedulerPhase.WAITING
        while True:
            remaining = self.remaining_ms()
            if self.tick(remaining):
                return
            self.sleep(sleep_interval(remaining))

    def _watch_workers(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.drain_worker_messages()
            if self.state.accepted:
                stop_event.set()
                return
            time.sleep(0.01)

    def _fire(self) -> bool:
        self.state.phase = SchedulerPhase.FIRING
        logger.info("🔥 T-0ms: ENGAGING BURST SEQUENCE")
        self.drain_worker_messages()

        if not self.state.file_id:
            logger.warning("🚨 No file id at fire time, emergency upload...")
            self.timeline.upload_start = self._now()
            self.state.file_id = self.uploader(self.state.token, self.cookie, self.file_path)
            self.state.uploaded = True
            self.timeline.upload_end = self._now()

        self.timeline.burst_start = self._now()
        if not self.state.accepted:
            stop_event = threading.Event()
            watch = None
            if self.queue is not None:
                watch = threading.Thread(target=self._watch_workers, args=(stop_event,),
                                         name="worker-watch", daemon=True)
                watch.start()
            result = self.burst(self.state.token, self.cookie, self.case_id, self.state.file_id,
                                concurrency=self.concurrency, stop_event=stop_event)
            stop_event.set()
            if watch is not None:
                watch.join()
            self.timeline.total_attempts = result.attempts
            with self._drain_lock:
                if result.accepted and not self.state.accepted:
                    self.state.accepted = True
                    self.timeline.winner = f"main ({result.winner})"

        # Let late worker reports arrive
        self.sleep(WORKER_REPORT_GRACE)
        self.drain_worker_messages()
        self._terminate_workers()

        self.timeline.accepted_at = self._now()
        self.state.phase = SchedulerPhase.SETTLED
        return self.state.accepted

    def log_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("📊 ACCEPTANCE TIMING SUMMARY")
        logger.info("=" * 60)
        for label, value in self.timeline.summary():
            logger.info(f"  {label:<16} {value}")
        logger.info("=" * 60)

    def run(self) -> bool:
        """Run the whole flow. Returns True when the case was accepted."""
        handler = open_session_log(self.case.get("patientName") or str(self.case_id)) \
            if self.session_log else None
        try:
            logger.info(f"🎯 Case {self.case_id} - {self.case.get('patientName')}")
            logger.info(f"Target burst time: {datetime.fromtimestamp(self.target_time).strftime('%H:%M:%S')} "
                        f"({max(0, int(self.remaining_ms() // 1000))}s away)")

            if self.remaining_ms() <= 0:
                logger.warning("⚠️ Target time already passed, executing immediately")
                self._upload()
                self._refresh_token()
            else:
                self._countdown()

            accepted = self._fire()
            if accepted:
                logger.info("✅ Sequence complete: case accepted")
            else:
                logger.warning("❌ Sequence complete: case not accepted")
            self.log_summary()
            return accepted
        finally:
            self._terminate_workers()
            if handler is not None:
                close_session_log(handler)
