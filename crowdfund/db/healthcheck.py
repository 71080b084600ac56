"""Database health check - verify required tables exist."""

from sqlalchemy import inspect

from crowdfund.db.session import Database
from crowdfund.log import get_logger

logger = get_logger(__name__)

# Required tables that must exist
REQUIRED_TABLES = [
    "profiles",
    "wallets",
    "campaigns",
    "campaign_updates",
]


def check_tables_exist(database: Database) -> None:
    """Verify all required tables exist in the database.

    Args:
        database: Database to inspect

    Raises:
        RuntimeError: If any required table is missing
    """
    logger.info("Checking database schema...")

    inspector = inspect(database.engine)
    for table_name in REQUIRED_TABLES:
        if not inspector.has_table(table_name):
            raise RuntimeError(
                f"DB schema missing. Table '{table_name}' does not exist. "
                "Run 'python -m crowdfund db init' or apply backend migrations first."
            )
        logger.debug(f"Table '{table_name}' exists")

    logger.info("All required tables exist")
