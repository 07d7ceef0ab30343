import argparse
import logging
import sys
from dataclasses import replace

from backend.booking.client import new_client
from backend.booking.config import HarvestConfig
from backend.booking.errors import ScrapeError
from backend.booking.scraper import collect_booking
from backend.booking.storage import MongoStore


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Harvest accommodation details from booking search results")
    p.add_argument("--url", default=None, help="Search results URL (defaults to BOOKING_SUMMARY_URL or Almaty)")
    p.add_argument("--max-items", type=int, default=None, help="Only harvest the first N listings")
    p.add_argument("--output", default=None, help="Backup JSON path (overrides BOOKING_BACKUP_PATH)")
    p.add_argument("--no-db", action="store_true", help="Skip MongoDB; only write the JSON backup")
    p.add_argument("--verbose", action="store_true", help="Enable verbose logging for the booking scraper")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    if args.verbose:
        logging.getLogger("booking").setLevel(logging.DEBUG)

    config = HarvestConfig.from_env()
    if args.output:
        config = replace(config, backup_path=args.output)

    print("📍 Starting booking parser")

    store = None
    if not args.no_db:
        try:
            store = MongoStore.connect(
                config.mongo_uri, config.mongo_db, country=config.country, workers=config.persist_workers
            )
        except ScrapeError as e:
            print(f"❌ {e}")
            return 1

    try:
        with new_client(timeout=config.timeout, proxy=config.proxy, http_debug=config.http_debug) as client:
            summary = collect_booking(config, client, store=store, summary_url=args.url, max_items=args.max_items)
    except ScrapeError as e:
        print(f"❌ Failed to fetch summary: {e}")
        return 1
    finally:
        if store is not None:
            store.close()

    print(f"\n✅ {summary.succeeded} succeeded, {summary.failed} failed out of {summary.listed} listings.")
    if summary.persisted is not None:
        p = summary.persisted
        print(f"💾 DB: {p.inserted} inserted, {p.updated} updated, {p.failed} failed")
    if summary.backup_path is not None:
        print(f"💾 Backup → {summary.backup_path}")
    print(f"⏱  {summary.duration:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
