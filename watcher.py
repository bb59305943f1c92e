#!/usr/bin/env python3
"""
Change watcher

Diffs fetched referral snapshots against the persisted WatcherState:
- tab 1: ids never seen before
- tab 2: ids never seen before and status transitions
"""

import logging
from typing import Callable, Dict, List, Optional, Union

from config import WATCHER_STATE_FILE, OUTBOUND_TAB, INBOUND_TAB
from models import WatcherState, NewItemEvent, TransitionEvent, get_status_text
from notifier import send_to_ifttt
from referrals_client import get_case_details
from session_store import read_json, write_json

logger = logging.getLogger(__name__)

WatcherEvent = Union[NewItemEvent, TransitionEvent]


class ReferralWatcher:
    """
    Tracks which referrals were already announced and their last status

    Single writer: only the monitor loop calls into this, so there is no locking.
    """

    def __init__(self, state_file: str = WATCHER_STATE_FILE, persist: bool = True,
                 notify: Callable[[Dict, Optional[str]], bool] = send_to_ifttt,
                 detail_fetcher: Optional[Callable] = get_case_details):
        self.state_file = state_file
        self.persist = persist
        self.notify = notify
        self.detail_fetcher = detail_fetcher
        self.state = WatcherState()

    def load_state(self) -> WatcherState:
        if not self.persist:
            return self.state
        data = read_json(self.state_file)
        if data:
            try:
                loaded = WatcherState.from_dict(data)
                # Never drop ids we already know about in memory
                loaded.processed_ids |= self.state.processed_ids
                self.state = loaded
            except (AttributeError, TypeError) as e:
                logger.warning(f"⚠️ Failed to load watcher state: {e}")
        return self.state

    def save_state(self) -> None:
        if not self.persist:
            return
        try:
            write_json(self.state_file, self.state.to_dict())
        except OSError as e:
            logger.warning(f"⚠️ Failed to save watcher state: {e}")

    def _notify(self, item: Dict, message: Optional[str] = None) -> None:
        try:
            self.notify(item, message)
        except Exception as e:
            logger.warning(f"⚠️ Notification failed for {item.get('id')}: {e}")

    def _attach_details(self, item: Dict, token: Optional[str], cookie: Optional[str]) -> None:
        if self.detail_fetcher is None or not token:
            return
        try:
            details = self.detail_fetcher(token, cookie, item["id"])
            if details:
                item["attachments"] = details.get("attachments")
        except Exception as e:
            logger.debug(f"Could not fetch details for {item.get('id')}: {e}")

    def analyze_tab1(self, rows: List[Dict], token: str = None, cookie: str = None) -> List[NewItemEvent]:
        """Emit one event per referral id never seen before"""
        self.load_state()
        events = []

        for item in rows:
            if item.get("id") is None:
                continue
            item_id = str(item["id"])
            if item_id in self.state.processed_ids:
                continue

            logger.info(f"🆕 New referral: {item_id} - {item.get('patientName')}")
            self._attach_details(item, token, cookie)
            self._notify(item, None)

            self.state.processed_ids.add(item_id)
            events.append(NewItemEvent(id=item_id, item=item, tab=OUTBOUND_TAB))

        if events:
            self.save_state()
        return events

    def analyze_tab2(self, rows: List[Dict]) -> List[WatcherEvent]:
        """
        Emit new-item and status-transition events for the inbound tab

        An id known from tab 1 but not yet tracked here gets a silent baseline.
        A brand new id only produces a new-item event, never a transition.
        """
        self.load_state()
        events = []
        changed = False

        for item in rows:
            if item.get("id") is None:
                continue
            item_id = str(item["id"])
            status = item.get("status")

            if item_id not in self.state.status_map:
                if item_id not in self.state.processed_ids:
                    event = NewItemEvent(id=item_id, item=item, tab=INBOUND_TAB)
                    logger.info(event.message)
                    self._notify(item, f"🔔 Tab 2 New: {item.get('patientName')}")
                    self.state.processed_ids.add(item_id)
                    events.append(event)
                self.state.status_map[item_id] = status
                changed = True
                continue

            old_status = self.state.status_map[item_id]
            if old_status != status:
                event = TransitionEvent(
                    id=item_id,
                    item=item,
                    old_status_text=get_status_text(old_status),
                    new_status_text=get_status_text(status)
                )
                logger.warning(event.message)
                self._notify(item, f"⚠️ Status Changed: {event.old_status_text} ➔ {event.new_status_text}")
                self.state.status_map[item_id] = status
                events.append(event)
                changed = True

        if changed:
            self.save_state()
        return events
