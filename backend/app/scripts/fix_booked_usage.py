from __future__ import annotations

import argparse
import json
import logging

from app.db.session import SessionLocal
from app.services.consistency import find_pre_service_with_usage, repair_pre_service_usage

logger = logging.getLogger("booking_ledger.scripts.fix_booked_usage")


def run(session, apply: bool) -> dict:
    rows = find_pre_service_with_usage(session)
    summary = {
        "mode": "apply" if apply else "dry-run",
        "inconsistent_appointments": len(rows),
        "usage_rows": sum(row.usage_count for row in rows),
        "appointment_ids": [row.appointment_id for row in rows],
    }
    if not rows or not apply:
        return summary
    summary["deleted_usage_rows"] = repair_pre_service_usage(session, rows)
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Remove package usage rows held by appointments that have not been served."
    )
    parser.add_argument("--apply", action="store_true", help="Write changes to the database.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without writing (default).",
    )
    args = parser.parse_args(argv)
    apply = args.apply and not args.dry_run

    session = SessionLocal()
    try:
        summary = run(session, apply)
        if apply:
            session.commit()
        else:
            session.rollback()
        logger.info("Booked usage check finished", extra=summary)
        print(json.dumps(summary, indent=2))
        if not apply and summary["inconsistent_appointments"]:
            print("Dry run only. Use --apply to delete these usage rows.")
        return 0
    except Exception as exc:
        session.rollback()
        raise exc
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
