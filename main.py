#!/usr/bin/env python3
"""
Main FastAPI application - Entry point
"""

import asyncio
import logging
from fastapi import FastAPI

from config import API_HOST, API_PORT, API_TITLE, API_DESCRIPTION, API_VERSION, LOG_FILE, LOG_LEVEL, LOG_FORMAT
from config import REFERRALS_HOST, MONITOR_MIN_DELAY, MONITOR_MAX_DELAY, WATCHER_STATE_FILE
from models import monitor_state
from api_endpoints import (root, get_status, get_referrals_snapshot, get_events,
                           start_monitoring, stop_monitoring, check_session)
from monitor import monitor_and_process

# === Setup Logging ===
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format=LOG_FORMAT,
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# === FastAPI App ===
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION
)

# === Register Routes ===
app.add_api_route("/", root, methods=["GET"])
app.add_api_route("/status", get_status, methods=["GET"])
app.add_api_route("/referrals", get_referrals_snapshot, methods=["GET"])
app.add_api_route("/events", get_events, methods=["GET"])
app.add_api_route("/start", start_monitoring, methods=["POST"])
app.add_api_route("/stop", stop_monitoring, methods=["POST"])
app.add_api_route("/check-session", check_session, methods=["POST"])


@app.on_event("startup")
async def startup_event():
    """Run on application startup"""
    logger.info("=" * 70)
    logger.info(f"🚀 {API_TITLE} Started")
    logger.info("=" * 70)
    logger.info(f"Referrals host: {REFERRALS_HOST}")
    logger.info(f"Poll interval: {MONITOR_MIN_DELAY}-{MONITOR_MAX_DELAY} seconds")
    logger.info(f"Watcher state: {WATCHER_STATE_FILE}")
    logger.info("=" * 70)

    # Auto-start monitoring (even if the portal is down - the loop retries)
    monitor_state["is_running"] = True
    asyncio.create_task(monitor_and_process())
    logger.info("✅ Monitoring task started!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown"""
    monitor_state["is_running"] = False
    logger.info("=" * 70)
    logger.info(f"🛑 {API_TITLE} Stopped")
    logger.info(f"Total poll cycles: {monitor_state['counter']}")
    logger.info("=" * 70)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
