#!/usr/bin/env python3
"""
FastAPI route handlers
"""

import asyncio
import logging
import time

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from config import MONITOR_MIN_DELAY, MONITOR_MAX_DELAY, API_VERSION
from models import monitor_state
from monitor import monitor_and_process, check_session_and_login

logger = logging.getLogger(__name__)


async def root():
    """Root endpoint with API information"""
    return {
        "message": "Referral Sniper API",
        "version": API_VERSION,
        "endpoints": {
            "/status": "Get current monitoring status",
            "/referrals": "Latest snapshot of both tabs",
            "/events": "Recent watcher events",
            "/start": "Start continuous monitoring",
            "/stop": "Stop monitoring",
            "/check-session": "Validate the stored session"
        }
    }


async def get_status():
    """Get current monitoring status"""
    return {
        "is_running": monitor_state["is_running"],
        "is_updating": monitor_state["is_updating"],
        "counter": monitor_state["counter"],
        "uptime_seconds": int(time.time() - monitor_state["start_time"]),
        "last_check": monitor_state["last_check"],
        "last_update": monitor_state["last_update"],
        "next_update_in": monitor_state["next_update_in"],
        "delay_range_seconds": [MONITOR_MIN_DELAY, MONITOR_MAX_DELAY],
        "recent_errors": monitor_state["errors"][-5:]
    }


async def get_referrals_snapshot():
    """Latest tab snapshot as seen by the monitor"""
    return {
        "tab1": monitor_state["tab1"],
        "tab2": monitor_state["tab2"],
        "tab2_total": monitor_state["tab2_total"],
        "last_update": monitor_state["last_update"]
    }


async def get_events():
    return {"events": monitor_state["events"]}


async def start_monitoring():
    """Start continuous monitoring"""
    if monitor_state["is_running"]:
        return JSONResponse(
            status_code=400,
            content={"error": "Monitoring is already running"}
        )

    monitor_state["is_running"] = True
    asyncio.create_task(monitor_and_process())
    logger.info("✅ Monitoring started")

    return {"message": "Monitoring started successfully"}


async def stop_monitoring():
    """Stop monitoring"""
    if not monitor_state["is_running"]:
        return JSONResponse(
            status_code=400,
            content={"error": "Monitoring is not running"}
        )

    monitor_state["is_running"] = False
    logger.info("Monitoring stopped by user request")

    return {
        "message": "Monitoring stopped successfully",
        "cycles": monitor_state["counter"]
    }


async def check_session():
    """Validate the stored session without touching the monitor"""
    try:
        valid = await asyncio.to_thread(check_session_and_login)
    except Exception as e:
        logger.error(f"Error checking session: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if not valid:
        raise HTTPException(status_code=401, detail="Session expired, log in again")
    return {"message": "Session is valid"}
