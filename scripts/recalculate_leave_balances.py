#!/usr/bin/env python3
"""Recalculate sandwich-leave deductions and balances.

Re-prices every approved leave application with the current calendar and
pairing state, then posts any differences to existing balances. Safe to run
repeatedly: a second run reports zero updates.

Usage:
    python scripts/recalculate_leave_balances.py
    python scripts/recalculate_leave_balances.py --employee-id <uuid>
    python scripts/recalculate_leave_balances.py --dry-run   # report, roll back

Requires .env at project root (DATABASE_URL, JWT_SECRET).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
import uuid
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("recalculate_leave_balances")

from backend.database import async_session_factory, engine  # noqa: E402
from backend.leave.ledger import LeaveLedger, RecalculationResult  # noqa: E402


async def run(employee_id: uuid.UUID | None, dry_run: bool) -> RecalculationResult:
    async with async_session_factory() as session:
        try:
            result = await LeaveLedger(session).recalculate_all(employee_id)
            if dry_run:
                await session.rollback()
                logger.info("[DRY RUN] Changes rolled back")
            else:
                await session.commit()
            return result
        except Exception:
            await session.rollback()
            raise
        finally:
            await engine.dispose()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--employee-id",
        type=uuid.UUID,
        default=None,
        help="Only recalculate this employee's applications",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and report, but do not commit",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    start_time = time.time()

    scope = f"employee {args.employee_id}" if args.employee_id else "all employees"
    logger.info("Recalculating approved leave for %s…", scope)

    result = asyncio.run(run(args.employee_id, args.dry_run))

    elapsed = time.time() - start_time
    print(f"""
{'=' * 60}
  RECALCULATION COMPLETE in {elapsed:.1f}s{' (dry run)' if args.dry_run else ''}
  Applications updated : {result.applications_updated}
  Balances updated     : {result.balances_updated}
{'=' * 60}
""")


if __name__ == "__main__":
    main()
