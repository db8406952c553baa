#!/usr/bin/env python
"""
Run the NewsData import once from the command line (same pipeline as /api/cron/import-news).

Usage:
    python scripts/import_news.py
    python scripts/import_news.py --refresh-homepage

Environment:
    DATABASE_URL: database connection string
    NEWSDATA_API_KEY: NewsData.io API key
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.fiscalwire.config import load_config  # noqa: E402
from app.fiscalwire.modules.news_import.newsdata import NewsDataError, client_from_config  # noqa: E402
from app.fiscalwire.modules.news_import.service import import_news, refresh_homepage  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import the latest financial news from NewsData.io")
    parser.add_argument("--refresh-homepage", action="store_true", help="refill homepage zones after importing")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    config = load_config()

    with script_session(resolve_database_url(config["DATABASE_URL"])) as s:
        try:
            results = import_news(s, client_from_config(config))
        except NewsDataError as e:
            # The session still commits, keeping the activity-log rows for the failure.
            print(f"Import failed: {e}", flush=True)
            return 1
        if args.refresh_homepage and results["imported"]:
            refresh_homepage(s)

    print(f"Imported {results['imported']}, skipped {results['skipped']}, errors {results['errors']}")
    for row in results["articles"]:
        print(f"  [{row['status']}] {row['title'][:80]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
