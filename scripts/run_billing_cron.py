#!/usr/bin/env python3
"""
Run the daily platform billing job once, outside the HTTP service.

Usage:
  python scripts/run_billing_cron.py              # bill organisations due tomorrow
  python scripts/run_billing_cron.py --preview    # list them without touching Stripe
  python scripts/run_billing_cron.py --date 2024-02-27
  python scripts/run_billing_cron.py --job retry   # retry overdue invoices instead

Requires DATABASE_URL and, unless previewing, STRIPE_SECRET_KEY in .env (or export).
Safe to run more than once a day: organisations billed today are skipped.
"""
import argparse
import asyncio
import os
import sys
from datetime import date

from dotenv import load_dotenv

# Load .env from project root
_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(_root, ".env"))

if not os.getenv("DATABASE_URL"):
    print("ERROR: DATABASE_URL must be set. Add to .env or export.")
    sys.exit(1)

# Add project root to path
sys.path.insert(0, _root)

from app.core.logging import setup_logging
from app.database import AsyncSessionLocal, close_db
from app.services.billing_cron_service import BillingCronService
from app.services.charge_processor import StripeChargeProcessor
from app.services.payment_retry_service import PaymentRetryService
from app.utils.time import get_utc_today


async def run(today: date, preview: bool, notify: bool) -> int:
    async with AsyncSessionLocal() as db:
        if preview:
            result = await BillingCronService.preview(db, today)
            print(f"Billing date {result.billing_date} (anniversary days {result.anniversary_days})")
            for org in result.organisations:
                action = "update" if org.has_subscription else "create"
                print(f"  {org.org_name} ({org.org_id}): {action}")
            print(f"{len(result.organisations)} organisations due")
            return 0

        report = await BillingCronService.run(db, StripeChargeProcessor(db), today=today, notify=notify)

    for r in report.results:
        line = f"  {r.org_name}: {r.status.value}"
        if r.unit_count is not None:
            line += f" ({r.unit_count} units, {r.expected_charge_p}p)"
        if r.error:
            line += f" - {r.error}"
        print(line)
    print(f"Processed {report.processed}, succeeded {report.succeeded}, failed {report.failed}")
    return 1 if report.failed else 0


async def run_retries(today: date, preview: bool, notify: bool) -> int:
    async with AsyncSessionLocal() as db:
        if preview:
            result = await PaymentRetryService.preview(db, today)
            for org in result.ready_for_retry:
                print(f"  {org.org_name} ({org.org_id}): retry {org.retry_count + 1}, {org.days_since_first_failure} days overdue")
            print(f"{len(result.ready_for_retry)} of {result.total_past_due} past-due organisations ready for retry")
            return 0

        report = await PaymentRetryService.run(db, StripeChargeProcessor(db), today=today, notify=notify)

    for r in report.results:
        print(f"  {r.org_name}: {r.status.value} (retry {r.retry_count})" + (f" - {r.error}" if r.error else ""))
    print(f"Retried {report.retried}, succeeded {report.succeeded}, failed {report.failed}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run the platform billing or payment retry job")
    parser.add_argument("--job", choices=("billing", "retry"), default="billing", help="Which job to run")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Run date (YYYY-MM-DD), default today (UTC)")
    parser.add_argument("--preview", action="store_true", help="Only list organisations that are due")
    parser.add_argument("--no-notify", action="store_true", help="Do not email admins about failed payments")
    args = parser.parse_args()

    setup_logging()

    async def _main() -> int:
        try:
            job = run_retries if args.job == "retry" else run
            return await job(args.date or get_utc_today(), args.preview, not args.no_notify)
        finally:
            await close_db()

    sys.exit(asyncio.run(_main()))


if __name__ == "__main__":
    main()
