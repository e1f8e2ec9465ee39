#!/usr/bin/env python3
"""
Interview Rooms: Invitation sweep
Persists EXPIRED on pending invitations past their expiry and removes
settled waiting-room records. Reads already treat lapsed invitations as
expired; this only brings stored state in line, for reporting and cleanup.

Not scheduled by the API. Run from cron or by hand:
    python scripts/sweep_invitations.py
    python scripts/sweep_invitations.py --backend file --data-dir ./data/rooms
    python scripts/sweep_invitations.py --now 2025-01-31T00:00:00+00:00
"""

import os
import asyncio
import argparse
import logging
from datetime import datetime, timezone

from database import close_db, get_db_context
from record_store import FileRecordStore, SQLRecordStore
from room_core import build_room_core

logger = logging.getLogger("interview-rooms.sweep")


async def run_sweep(backend: str, data_dir: str, now=None) -> dict:
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    logger.info(f"Sweeping {backend} record store")
    if backend == "file":
        return await build_room_core(FileRecordStore(data_dir)).guests.sweep(now)
    if backend != "sql":
        raise SystemExit(f"Cannot sweep the {backend} backend from a separate process")

    try:
        async with get_db_context() as session:
            return await build_room_core(SQLRecordStore(session)).guests.sweep(now)
    finally:
        await close_db()


# ── CLI ─────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Interview Rooms invitation sweep")
    parser.add_argument("--backend", type=str, default=os.getenv("ROOM_STORE_BACKEND", "sql"),
                        choices=["sql", "file"], help="Record store backend")
    parser.add_argument("--data-dir", type=str, default=os.getenv("ROOM_DATA_DIR", "./data/rooms"),
                        help="Root directory of the file store")
    parser.add_argument("--now", type=datetime.fromisoformat, default=None,
                        help="Evaluate expiry at this ISO-8601 instant instead of the current time")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )

    result = asyncio.run(run_sweep(args.backend, args.data_dir, args.now))
    print(f"Invitations expired: {result['expired_invitations']}")
    print(f"Waiting records purged: {result['purged_waiting']}")


if __name__ == "__main__":
    main()
