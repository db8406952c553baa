#!/usr/bin/env python
"""
Re-sort article placements in every enabled article zone by publish date (newest first).

Usage:
    python scripts/resort_placements.py

Environment:
    DATABASE_URL: database connection string
"""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fiscalwire.modules.page_builder.maintenance import resort_placements_by_date  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402


def main() -> None:
    with script_session(resolve_database_url()) as s:
        result = resort_placements_by_date(s)
    print(f"Re-sorted {result['zones']} zones ({result['updated']} placements moved).")


if __name__ == "__main__":
    main()
