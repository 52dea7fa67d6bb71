"""CLI script to delete applications that never reached a final status.

Applications still `submitted` or `under-review` are removed; `approved`
and `rejected` ones are kept. Intended for resetting a training database.
Usage: python scripts/cleanup_unfinalized.py [--dry-run]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `licensing` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from licensing.database import create_db_and_tables, engine
from licensing.repositories import ApplicationRepository


def main(dry_run: bool = False) -> int:
    """Delete (or with `dry_run`, only count) unfinalized applications.

    Returns the number of applications affected.
    """
    create_db_and_tables()
    with Session(engine) as session:
        repo = ApplicationRepository(session)
        if dry_run:
            count = repo.count_unfinalized()
            print(f'Dry run: {count} unfinalized application(s) would be deleted')
            return count
        deleted = repo.delete_unfinalized()
        print(f'Deleted {deleted} unfinalized application(s)')
        return deleted


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--dry-run', action='store_true', help='Only report how many applications would be deleted')
    args = parser.parse_args()
    main(dry_run=args.dry_run)
