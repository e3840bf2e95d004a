"""Re-run the property fan-out for one dealership or for all of them.

A property create/update/delete that reports a persistence error leaves some
configs or vehicles behind the registry. Reconciliation is idempotent, so
running it again converges them.

Usage:
    python scripts/reconcile_dealership.py <dealership_id>
    python scripts/reconcile_dealership.py --all
"""

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent))

from autotracks.config import LOG_LEVEL
from autotracks.database import SessionLocal, init_db
from autotracks.directory import require_dealership
from autotracks.errors import NotFoundError
from autotracks.sync import reconcile, reconcile_all


def print_stats(stats) -> None:
    print(f"\nDealership {stats.dealership_id}")
    print(f"  Configs updated:   {stats.configs_updated:,} / {stats.configs_scanned:,}")
    print(f"  Vehicles updated:  {stats.vehicles_updated:,} / {stats.vehicles_scanned:,}")
    if stats.failures:
        print(f"  Failures:          {stats.failures:,}")
        for record_id in stats.failed_record_ids:
            print(f"    - {record_id}")


def main():
    parser = argparse.ArgumentParser(
        description="Converge property configs and vehicles on the property registry"
    )
    parser.add_argument(
        "dealership_id", nargs="?", type=UUID,
        help="Dealership to reconcile"
    )
    parser.add_argument(
        "--all", action="store_true",
        help="Reconcile every active dealership"
    )
    args = parser.parse_args()

    if not args.all and args.dealership_id is None:
        parser.error("give a dealership_id or --all")

    logging.basicConfig(level=LOG_LEVEL)
    init_db()

    db = SessionLocal()
    try:
        if args.all:
            results = reconcile_all(db)
        else:
            try:
                require_dealership(db, args.dealership_id)
            except NotFoundError as e:
                print(e.message)
                sys.exit(1)
            results = [reconcile(db, args.dealership_id)]
    finally:
        db.close()

    print("=" * 60)
    print("PROPERTY RECONCILIATION")
    print("=" * 60)
    for stats in results:
        print_stats(stats)

    failures = sum(s.failures for s in results)
    print(f"\n{len(results):,} dealership(s) reconciled, {failures:,} failure(s)")
    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
