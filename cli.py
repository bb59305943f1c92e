#!/usr/bin/env python3
"""
Referral Sniper command line

Usage:
    python3 cli.py serve
    python3 cli.py status
    python3 cli.py check-session
    python3 cli.py accept --case 12345 --file reports/Acceptance.pdf
    python3 cli.py accept --case 12345 --file report.pdf --at 14:30:00 --threads 2
"""

import argparse
import logging
import sys
from datetime import datetime
from typing import Dict, Optional

from config import API_HOST, API_PORT, LOG_FILE, LOG_LEVEL, LOG_FORMAT, OUTBOUND_TAB
from auth import get_valid_token
from countdown import CountdownScheduler
from models import UploadError
from monitor import check_session_and_login
from referrals_client import get_referrals
from session_store import load_credential

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format=LOG_FORMAT,
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


def parse_target_time(value: str) -> datetime:
    """HH:MM:SS today, in the host's local time"""
    hour, minute, second = (int(part) for part in value.split(":"))
    return datetime.now().astimezone().replace(hour=hour, minute=minute, second=second, microsecond=0)


def find_case(token: str, cookie: str, case_id: str) -> Optional[Dict]:
    try:
        data = get_referrals(token, cookie, OUTBOUND_TAB)
    except Exception as e:
        logger.warning(f"⚠️ Could not fetch tab 1: {e}")
        return None
    for item in data.get("items", []):
        if str(item.get("id")) == str(case_id):
            return item
    return None


def cmd_serve(args) -> int:
    import uvicorn
    uvicorn.run("main:app", host=API_HOST, port=args.port)
    return 0


def cmd_status(args) -> int:
    token = get_valid_token(False)
    if not token:
        logger.warning("Not logged in. Run the login flow first.")
        return 1
    logger.info("✅ Token configured")

    credential = load_credential()
    logger.info("Checking connectivity to referrals...")
    try:
        data = get_referrals(token, credential.cookie, OUTBOUND_TAB)
        logger.info(f"✅ Connected! Found {len(data.get('items', []))} referrals.")
        return 0
    except Exception as e:
        status = getattr(getattr(e, "response", None), "status_code", None)
        if status == 401:
            logger.error("❌ 401 Unauthorized - cannot fetch referrals.")
        else:
            logger.error(f"❌ Connectivity failed: {status or e}")
        return 1


def cmd_check_session(args) -> int:
    return 0 if check_session_and_login() else 1


def cmd_accept(args) -> int:
    token = get_valid_token()
    if not token:
        logger.error("❌ Authentication required.")
        return 1

    credential = load_credential()
    credential.token = token

    case = find_case(token, credential.cookie, args.case) or {"id": args.case}
    try:
        if args.at:
            case["openTime"] = parse_target_time(args.at)
        scheduler = CountdownScheduler(case, args.file, credential, concurrency=args.threads)
        accepted = scheduler.run()
    except (UploadError, FileNotFoundError, ValueError) as e:
        logger.error(f"❌ Accept flow aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("🛑 Interrupted by operator")
        return 130

    return 0 if accepted else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Referral portal watcher and burst acceptor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the status API with the monitor loop")
    serve.add_argument("--port", type=int, default=API_PORT)
    serve.set_defaults(func=cmd_serve)

    status = subparsers.add_parser("status", help="Check saved session and connectivity")
    status.set_defaults(func=cmd_status)

    check = subparsers.add_parser("check-session", help="Validate the session, log in again if needed")
    check.set_defaults(func=cmd_check_session)

    accept = subparsers.add_parser("accept", help="Count down to a case opening and burst-accept it")
    accept.add_argument("--case", "-c", required=True, help="Case ID to accept")
    accept.add_argument("--file", "-f", required=True, help="Path to the PDF report to upload")
    accept.add_argument("--at", "-t", help="Override target time (HH:MM:SS, local)")
    accept.add_argument("--threads", type=int, default=1, help="Main-context burst threads (default: 1)")
    accept.set_defaults(func=cmd_accept)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
