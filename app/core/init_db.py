import asyncio
import logging
import sys

from sqlalchemy import select, func
from app.core.config import ENVIRONMENT
from app.core.database import async_session, db_manager, db_operation, engine, Base
from app.core.exceptions import DatabaseError, ConfigurationError

# Register every mapped class on Base.metadata before create_all
from app.catalog.models import Day
import app.scheduling.models  # noqa: F401
import app.enrollment.models  # noqa: F401
import app.billing.models  # noqa: F401

logger = logging.getLogger(__name__)

DEFAULT_DAYS = [
    ("Lundi", 1),
    ("Mardi", 2),
    ("Mercredi", 3),
    ("Jeudi", 4),
    ("Vendredi", 5),
    ("Samedi", 6),
]


@db_operation
async def create_initial_days():
    """Create the week days if they don't exist"""
    async with async_session() as session:
        try:
            result = await session.execute(select(func.count(Day.id)))
            count = result.scalar() or 0

            if count:
                logger.info(f"Days already exist ({count} found), skipping creation")
                return

            logger.info("Creating initial days...")
            for name, order in DEFAULT_DAYS:
                session.add(Day(name=name, display_order=order))

            await session.commit()
            logger.info("Initial days created successfully")

        except Exception as e:
            logger.error(f"Failed to create initial days: {e}")
            await session.rollback()
            raise DatabaseError(f"Failed to create initial days: {str(e)}")


async def init_database():
    """Initialize database with tables and initial data"""
    try:
        logger.info("Starting database initialization...")

        await db_manager.check_connection()
        logger.info("Database connection verified")

        await db_manager.create_tables()
        logger.info("Database tables created/verified")

        await create_initial_days()
        logger.info("Initial data created/verified")

        logger.info("Database initialization completed successfully")

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def reset_database():
    """Drop and recreate everything (development/testing only)"""
    if ENVIRONMENT not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    try:
        logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST!")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("All tables dropped")

        await init_database()
        logger.info("Database reset completed")

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")


if __name__ == "__main__":

    async def main():
        command = sys.argv[1] if len(sys.argv) > 1 else "init"

        if command == "init":
            await init_database()
        elif command == "reset":
            await reset_database()
        else:
            print(f"Unknown command: {command}")
            print("Available commands: init, reset")
            sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
