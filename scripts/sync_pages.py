#!/usr/bin/env python
"""
Create page-builder pages (with default zones) for every category and fixed site section
that does not have one yet.

Usage:
    # Show what would be created
    python scripts/sync_pages.py --dry-run

    # Create everything missing
    python scripts/sync_pages.py

    # Create specific pages only
    python scripts/sync_pages.py --page markets --page crypto

Environment:
    DATABASE_URL: database connection string
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fiscalwire.modules.page_builder.auto_sync import sync_all_pages, sync_preview  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync page-builder pages with categories and site sections")
    parser.add_argument("--dry-run", action="store_true", help="list missing pages without creating them")
    parser.add_argument("--page", action="append", dest="pages", help="only create this slug (repeatable)")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args(argv)

    with script_session(resolve_database_url(args.database_url)) as s:
        if args.dry_run:
            preview = sync_preview(s)
            print(f"Discovered {preview['totalDiscovered']} pages, {preview['existingCount']} existing, "
                  f"{preview['missingCount']} missing")
            for page in preview["missingPages"]:
                print(f"  + /{page['slug']} ({page['pageType']}) {page['name']}")
            return 0

        result = sync_all_pages(s, args.pages)

    print(f"Created {result['created']} pages, skipped {result['skipped']} of {result['total']}")
    for name in result["createdPages"]:
        print(f"  + {name}")
    for err in result["errors"]:
        print(f"  ! {err}")
    return 1 if result["errors"] else 0


if __name__ == "__main__":
    sys.exit(main())
