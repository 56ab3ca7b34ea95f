#!/usr/bin/env python3
"""
Run the deadline reminder sweep once (the same job the app schedules daily).

Usage:
    python scripts/send_expiry_reminders.py              # Send due reminder emails
    python scripts/send_expiry_reminders.py --dry-run    # Only list what would be sent
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from abordo.config import settings
from abordo.db import SessionLocal
from abordo.logging import setup_logging
from abordo.services.mailer import get_transport, is_configured
from abordo.services.reminders import eligible_rows, sweep_all
from abordo.services.status import local_today, stage_for_days, stage_rank


def dry_run(db):
    today = local_today()
    rows = eligible_rows(db, today=today)
    print(f"Eligible notifications on {today.isoformat()}: {len(rows)}")
    for notification, days in rows:
        stage = stage_for_days(days)
        due = stage is not None and stage_rank(stage) > stage_rank(notification.email_stage)
        marker = "SEND" if due else "skip"
        print(
            f"  [{marker}] {notification.vehicle.plate_number:<10} {notification.type:<12} "
            f"days={days:<5} stage={stage.value if stage else '-':<8} last={notification.email_stage or '-'}"
        )


def main():
    parser = argparse.ArgumentParser(description="Send due deadline reminder emails")
    parser.add_argument("--dry-run", action="store_true", help="List eligible rows without sending")
    args = parser.parse_args()

    setup_logging()
    print("=" * 80)
    print("DEADLINE REMINDER SWEEP")
    print("=" * 80)

    db = SessionLocal()
    try:
        if args.dry_run:
            dry_run(db)
            return 0
        if not is_configured(settings):
            print(f"Email provider '{settings.email_provider}' is not configured, aborting")
            return 1
        result = sweep_all(db, get_transport(settings))
        print(f"Processed: {result.processed}  Sent: {result.sent}  Skipped: {result.skipped}  Errors: {len(result.errors)}")
        for err in result.errors:
            print(f"  [ERROR] {err['notification_id']}: {err['message']}")
        return 0 if not result.errors else 2
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
