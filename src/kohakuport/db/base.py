"""
Database base configuration and utilities.

This module provides the foundation for KohakuPort's persistence layer using
Peewee ORM with SQLite backend.

Components:
    - db: Global SQLite database instance
    - BaseModel: Base class for all KohakuPort database models
    - initialize_database: Database setup function
    - close_database: Database teardown function
"""

import peewee

from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Database Instance
# =============================================================================

# Global database instance - path set via initialize_database()
db = peewee.SqliteDatabase(None)


# =============================================================================
# Base Model
# =============================================================================


class BaseModel(peewee.Model):
    """
    Base model for all KohakuPort database models.

    All models inherit from this class to share the database connection.
    """

    class Meta:
        database = db


# =============================================================================
# Database Lifecycle
# =============================================================================


def initialize_database(db_path: str) -> None:
    """
    Connect to the database and create tables.

    Args:
        db_path: Path to the SQLite database file.

    Raises:
        peewee.OperationalError: If database connection fails.
    """
    # Import models here to avoid circular imports
    from kohakuport.db.intent import IntentRecord

    logger.debug(f"Initializing database at: {db_path}")

    if not db.is_closed():
        db.close()

    try:
        db.init(
            db_path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
                "foreign_keys": 1,
            },
        )
        db.connect()
        db.create_tables([IntentRecord], safe=True)

        logger.info(f"Database initialized: {db_path}")
        logger.debug(f"Database contains {IntentRecord.select().count()} intents")

    except peewee.OperationalError as e:
        logger.error(f"Failed to initialize database '{db_path}': {e}")
        raise


def close_database() -> None:
    """Close the database connection if open."""
    if not db.is_closed():
        db.close()
        logger.debug("Database connection closed")
