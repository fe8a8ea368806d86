#!/usr/bin/env python
"""Run the daily expiry sweep once, outside the API process."""

import argparse
import asyncio
import sys
from datetime import date

from vendorstock.config import settings
from vendorstock.database.engine import AsyncSessionLocal, close_db
from vendorstock.database.store import SqlItemStore
from vendorstock.sweep import ExpirySweepJob


async def run(reference_date, timeout):
    try:
        job = ExpirySweepJob(SqlItemStore(AsyncSessionLocal), settings)
        return await job.run(reference_date, timeout=timeout)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Re-evaluate batch expiry status for all inventory items")
    parser.add_argument("--date", help="Reference date (YYYY-MM-DD); defaults to today in the business timezone")
    parser.add_argument("--timeout", type=float, help="Stop after this many seconds")
    args = parser.parse_args()

    reference_date = None
    if args.date:
        try:
            reference_date = date.fromisoformat(args.date)
        except ValueError:
            print(f"ERROR: Invalid date: {args.date}", file=sys.stderr)
            sys.exit(1)

    summary = asyncio.run(run(reference_date, args.timeout))

    print(f"Expiry sweep for {summary.reference_date.isoformat()}:")
    print(f"  items scanned:        {summary.items_scanned}")
    print(f"  items updated:        {summary.items_updated}")
    print(f"  batches processed:    {summary.batches_processed}")
    print(f"  near-expiry batches:  {summary.near_expiry_batches}")
    print(f"  expired batches:      {summary.expired_batches}")
    if summary.failed:
        print(f"  failed items:         {summary.failed}")
    if summary.partial:
        print("\nStopped early; remaining items were not checked.")
        sys.exit(2)


if __name__ == "__main__":
    main()
