"""Create the database schema and seed the training principals.
Usage: python scripts/init_db.py
"""
import sys
import pathlib
# Ensure `backend/` is on sys.path so `licensing` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from licensing.config import settings
from licensing.database import create_db_and_tables, engine
from licensing.services import AuthService


def main():
    """Create every table and make sure the default user and admin exist."""
    print('Using database:', settings.DATABASE_URL)
    create_db_and_tables()
    with Session(engine) as session:
        AuthService(session).ensure_default_users()
    print(f'Training user: {settings.TRAINING_USER_EMAIL}')
    print(f'Training admin: {settings.TRAINING_ADMIN_EMAIL}')
    print('Database initialised.')


if __name__ == '__main__':
    main()
