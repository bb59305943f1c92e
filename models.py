#!/usr/bin/env python3
"""
Data models and type definitions
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

# === Global State ===
# Written by the monitor loop only, read by the status API
monitor_state = {
    "is_running": False,
    "start_time": time.time(),
    "last_check": None,
    "last_update": None,
    "counter": 0,
    "next_update_in": 0,
    "is_updating": False,
    "tab1": [],
    "tab2": [],
    "tab2_total": 0,
    "events": [],
    "errors": []
}

STATUS_TEXT = {
    "1": "Pending",
    "2": "Under Process",
    "3": "Accepted",
    "4": "Rejected",
    "6": "Completed",
}


def get_status_text(status: Any) -> str:
    """Human readable referral status"""
    return STATUS_TEXT.get(str(status), f"Status({status})")


class UploadError(Exception):
    """Report upload failed after every attempt"""


@dataclass
class Credential:
    token: Optional[str] = None
    cookie: str = ""
    username: Optional[str] = None
    role_id: Optional[int] = None
    organization_id: Optional[int] = None


@dataclass
class WatcherState:
    """
    Durable de-duplication memory of the watcher

    processed_ids only grows. status_map holds the last seen status per
    inbound referral id.
    """
    processed_ids: Set[str] = field(default_factory=set)
    status_map: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "processed_ids": sorted(self.processed_ids),
            "status_map": self.status_map
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "WatcherState":
        return cls(
            processed_ids={str(i) for i in data.get("processed_ids", [])},
            status_map={str(k): v for k, v in data.get("status_map", {}).items()}
        )


@dataclass
class NewItemEvent:
    id: str
    item: Dict
    tab: int

    @property
    def message(self) -> str:
        return f"🆕 Tab {self.tab} New: {self.id} - {self.item.get('patientName')}"


@dataclass
class TransitionEvent:
    id: str
    item: Dict
    old_status_text: str
    new_status_text: str

    @property
    def message(self) -> str:
        return f"🔄 Tab 2 Change: {self.id} ({self.old_status_text} -> {self.new_status_text})"


@dataclass
class BurstResult:
    accepted: bool
    attempts: int
    data: Optional[Dict] = None
    winner: Optional[str] = None


class SchedulerPhase(Enum):
    ARMED = "armed"
    WAITING = "waiting"
    UPLOAD_TRIGGERED = "upload_triggered"
    TOKEN_TRIGGERED = "token_triggered"
    WORKERS_SPAWNED = "workers_spawned"
    FIRING = "firing"
    SETTLED = "settled"


@dataclass
class BurstTimeline:
    broadcasted_at: Optional[datetime] = None
    open_time: Optional[datetime] = None
    upload_start: Optional[datetime] = None
    upload_end: Optional[datetime] = None
    token_start: Optional[datetime] = None
    token_end: Optional[datetime] = None
    burst_start: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    total_attempts: int = 0
    winner: Optional[str] = None

    @staticmethod
    def _ms_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
        if start is None or end is None:
            return None
        return int((end - start).total_seconds() * 1000)

    @property
    def upload_ms(self) -> Optional[int]:
        return self._ms_between(self.upload_start, self.upload_end)

    @property
    def token_ms(self) -> Optional[int]:
        return self._ms_between(self.token_start, self.token_end)

    @property
    def reaction_ms(self) -> Optional[int]:
        return self._ms_between(self.open_time, self.accepted_at)

    @property
    def burst_ms(self) -> Optional[int]:
        return self._ms_between(self.burst_start, self.accepted_at)

    def summary(self) -> List[tuple]:
        """Rows of (label, value) for the timing summary"""
        def ts(d):
            return d.strftime("%H:%M:%S:") + f"{d.microsecond // 1000:03d}" if d else "N/A"

        def dur(ms):
            return f" ({ms}ms)" if ms is not None else ""

        return [
            ("Case Dropped", ts(self.broadcasted_at)),
            ("Case Opens", ts(self.open_time)),
            ("Upload Started", ts(self.upload_start)),
            ("Upload Done", ts(self.upload_end) + dur(self.upload_ms)),
            ("Token Refreshed", ts(self.token_end) + dur(self.token_ms)),
            ("Burst Started", ts(self.burst_start)),
            ("Accepted At", ts(self.accepted_at)),
            ("Reaction Time", f"{self.reaction_ms}ms" if self.reaction_ms is not None else "N/A"),
            ("Burst Duration", f"{self.burst_ms}ms" if self.burst_ms is not None else "N/A"),
            ("Total Attempts", str(self.total_attempts)),
            ("Winner", self.winner or "N/A"),
        ]


@dataclass
class SchedulerState:
    """One-shot trigger flags and owned values of a single accept flow"""
    phase: SchedulerPhase = SchedulerPhase.ARMED
    token: Optional[str] = None
    file_id: Optional[str] = None
    upload_attempted: bool = False
    uploaded: bool = False
    token_refreshed: bool = False
    workers_spawned: bool = False
    warm_up_done: bool = False
    accepted: bool = False
    last_keep_alive: float = 0.0
    workers: List[Any] = field(default_factory=list)
    ready_workers: int = 0
