"""
List or queue remote assets that no record points to.

Usage:
    python scripts/sweep_orphans.py --dry-run
    python scripts/sweep_orphans.py --limit 100

Without ``--dry-run`` every unresolved orphan is handed to the Celery worker.
"""

import argparse

import celery_app  # noqa: F401
from media.reconcile import unresolved_asset_ids
from tasks.media import reconcile_orphan


def sweep(limit: int, dry_run: bool) -> int:
    asset_ids = unresolved_asset_ids(limit)
    for asset_id in asset_ids:
        if dry_run:
            print(asset_id)
        else:
            reconcile_orphan.delay(asset_id)

    verb = "Found" if dry_run else "Queued"
    print(f"{verb} {len(asset_ids)} orphaned assets")
    return len(asset_ids)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sweep orphaned remote assets")
    parser.add_argument("--limit", type=int, default=500, help="Max orphans to handle")
    parser.add_argument("--dry-run", action="store_true", help="List without queueing")
    return parser.parse_args()


def main():
    args = parse_args()
    sweep(args.limit, args.dry_run)


if __name__ == "__main__":
    main()
