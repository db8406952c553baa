#!/usr/bin/env python
"""
Ensure the article grid renders before the trending sidebar on every page.

Usage:
    python scripts/fix_zone_order.py

Environment:
    DATABASE_URL: database connection string
"""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fiscalwire.modules.page_builder.maintenance import fix_zone_order  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402


def main() -> None:
    with script_session(resolve_database_url()) as s:
        fixed = fix_zone_order(s)
    print(f"Fixed zone order on {fixed} pages.")


if __name__ == "__main__":
    main()
