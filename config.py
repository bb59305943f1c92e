#!/usr/bin/env python3
"""
Configuration settings for the Referral Sniper
"""

import os

# === Portal Configuration ===
PORTAL_API = os.getenv("SEHA_PORTAL_API", "https://www.seha.sa/api")
REFERRALS_HOST = os.getenv("SEHA_REFERRALS_HOST", "https://weslah.seha.sa")
REFERRALS_API = f"{REFERRALS_HOST}/api"
ROLE_LOGIN_URL = f"{PORTAL_API}/Account/DoLoginByRolev2"
TABS_URL = f"{REFERRALS_API}/referrals/facility/tabs"
UPLOAD_URL = f"{REFERRALS_API}/attachments/upload"

DEFAULT_ROLE_ID = int(os.getenv("SEHA_ROLE_ID", "808"))
DEFAULT_ORGANIZATION_ID = int(os.getenv("SEHA_ORGANIZATION_ID", "8930"))

USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")
REQUEST_TIMEOUT = 10  # Standard client timeout in seconds
MAX_RETRIES = 3  # urllib3 retries for idempotent requests on the standard client

# Cookies kept for API calls, everything else is dropped
AUTH_COOKIE_NAMES = ["__cf_bm", "AuthToken", "JWTUserToken"]
TOKEN_COOKIE_NAME = "JWTUserToken"

# === Referral Listing ===
OUTBOUND_TAB = 1  # Sent
INBOUND_TAB = 2  # Queue / inbox
PAGE_SIZE = 10
MAX_PAGES = 50  # Safety ceiling for full listing
PORTAL_UTC_OFFSET_HOURS = 3  # Portal timestamps are KSA local time
OPEN_DELAY_MINUTES = 15  # Case opens this long after broadcast

# === Upload ===
UPLOAD_MAX_ATTEMPTS = 5
UPLOAD_RETRY_DELAY = 1  # Seconds between upload attempts

# === Countdown / Burst ===
UPLOAD_TRIGGER_MS = 15000
TOKEN_TRIGGER_MS = 10000
WORKER_TRIGGER_MS = 5000
WARM_UP_TRIGGER_MS = 2000
BUSY_WAIT_MS = 50
BUSY_WAIT_CEILING_MS = 200  # Hard stop for the final spin
KEEP_ALIVE_INTERVAL_MS = 60000
BURST_WORKER_COUNT = int(os.getenv("SEHA_BURST_WORKERS", "4"))
BURST_CONCURRENCY = int(os.getenv("SEHA_BURST_CONCURRENCY", "5"))
WORKER_REPORT_GRACE = 0.5  # Seconds to wait for worker reports after firing

# === Monitoring Configuration ===
MONITOR_MIN_DELAY = int(os.getenv("SEHA_MONITOR_MIN_DELAY", "20"))
MONITOR_MAX_DELAY = int(os.getenv("SEHA_MONITOR_MAX_DELAY", "40"))
SERVER_ERROR_WAIT = 60  # Seconds to wait after a 5xx before retrying
MAX_EVENTS = 50  # Dashboard event log length
MAX_ERRORS = 10

# === Persistence ===
SESSION_DIR = os.getenv("SEHA_SESSION_DIR", "session")
DATA_DIR = os.getenv("SEHA_DATA_DIR", "data")
SESSION_FILE = os.path.join(SESSION_DIR, "session.json")
CONFIG_FILE = os.path.join(DATA_DIR, "config.json")
WATCHER_STATE_FILE = os.path.join(SESSION_DIR, "watcher_state.json")

# === Notifications ===
IFTTT_WEBHOOK_URL = os.getenv("SEHA_IFTTT_WEBHOOK_URL", "")
IFTTT_KEY = os.getenv("SEHA_IFTTT_KEY", "")
IFTTT_EVENT = os.getenv("SEHA_IFTTT_EVENT", "seha_alert")
NOTIFY_TIMEOUT = 10

# === API Configuration ===
API_HOST = "0.0.0.0"
API_PORT = int(os.getenv("PORT", "3333"))
API_TITLE = "Referral Sniper API"
API_DESCRIPTION = "Watches the referral portal and exposes dashboard data"
API_VERSION = "1.0.0"

# === Logging Configuration ===
LOG_DIR = os.getenv("SEHA_LOG_DIR", os.path.join(SESSION_DIR, "logs"))
LOG_FILE = "referral_sniper.log"
LOG_LEVEL = os.getenv("SEHA_LOG_LEVEL", "INFO")
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
