"""
Database initialization script.
Run this once to create the storybook schema in the database named by DATABASE_URL.
"""

from config import Config
from database import Database


def main():
    """Initialize database schema."""
    print("Initializing database...")

    config = Config.from_env()
    db = Database(config.database_url)
    print(f"Backend: {db.db_type}")

    try:
        db.init_schema()
    except Exception as e:
        print(f"ERROR: Database initialization failed: {e}")
        raise SystemExit(1)

    print("OK Database schema initialized")


if __name__ == "__main__":
    main()
