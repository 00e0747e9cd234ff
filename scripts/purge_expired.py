#!/usr/bin/env python3
"""
Delete expired auth records.

What it removes:
- used or expired two-factor codes
- expired email verification and password reset links
- sessions past their absolute expiry, with their refresh tokens

Usage:
  python scripts/purge_expired.py            # delete
  python scripts/purge_expired.py --dry-run  # count only

Safe to run on a schedule (cron, EventBridge, etc.).
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys


# Allow `import sessionauth.*` from backend/
REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


from sessionauth.core.config import settings  # noqa: E402
from sessionauth.core.database import SessionLocal  # noqa: E402
from sessionauth.services.cleanup import purge_expired  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Purge expired sessions, codes and one-time links.")
    p.add_argument("--dry-run", action="store_true", help="Only count what would be deleted")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))

    db = SessionLocal()
    try:
        report = purge_expired(db, dry_run=args.dry_run)
    finally:
        db.close()

    verb = "Would delete" if args.dry_run else "Deleted"
    for table, count in report.as_dict().items():
        print(f"{verb} {count:>6} {table}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
