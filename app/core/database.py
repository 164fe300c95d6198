import asyncio
import inspect
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import text
from sqlalchemy.exc import (
    SQLAlchemyError,
    DBAPIError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)

from .config import DATABASE_URL, DB_RETRY_ATTEMPTS, DB_RETRY_DELAY
from .exceptions import (
    BaseAppException,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    TransactionFailedError,
)

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = ("40001", "40P01")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create the async engine; pool tuning only applies to server databases"""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, **kwargs)

    return create_async_engine(
        url,
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        **kwargs,
    )


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)
async_session = build_session_factory(engine)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])


def is_serialization_failure(exc: BaseException) -> bool:
    """True when the driver reports a deadlock or serialization failure"""
    if not isinstance(exc, DBAPIError):
        return False

    candidates = [exc.orig, getattr(exc.orig, "__cause__", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code in RETRYABLE_SQLSTATES:
            return True
    return False


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = 2.0,
    exceptions: tuple = None,
) -> Callable[[F], F]:
    """
    Retry decorator for database operations

    Args:
        max_attempts: Maximum attempts (defaults to config)
        delay: Initial delay between attempts (defaults to config)
        backoff_factor: Delay multiplier
        exceptions: Exceptions that trigger a retry
    """
    if max_attempts is None:
        max_attempts = DB_RETRY_ATTEMPTS

    if delay is None:
        delay = DB_RETRY_DELAY

    if exceptions is None:
        exceptions = (
            OperationalError,
            DisconnectionError,
            TimeoutError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
        )

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except BaseAppException:
                    raise

                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts - 1:
                        break

                    logger.warning(
                        f"Database operation failed (attempt {attempt + 1}/{max_attempts}): {str(e)}",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "exception_type": type(e).__name__,
                        },
                    )

                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor

                except Exception as e:
                    logger.error(
                        f"Non-retryable database error in {func.__name__}: {str(e)}",
                        extra={
                            "function": func.__name__,
                            "exception_type": type(e).__name__,
                        },
                    )
                    raise

            logger.error(
                f"Database operation failed after {max_attempts} attempts: {str(last_exception)}",
                extra={
                    "function": func.__name__,
                    "max_attempts": max_attempts,
                    "final_exception": str(last_exception),
                },
            )

            if isinstance(
                last_exception,
                (
                    ConnectionFailureError,
                    ConnectionDoesNotExistError,
                    DisconnectionError,
                ),
            ):
                raise DatabaseConnectionError(
                    f"Database connection failed after {max_attempts} attempts"
                )
            elif isinstance(last_exception, TimeoutError):
                raise DatabaseTimeoutError(func.__name__, 30)
            else:
                raise TransactionFailedError(func.__name__, str(last_exception))

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a database session with retry on creation
    """
    session = None
    max_attempts = DB_RETRY_ATTEMPTS
    current_delay = DB_RETRY_DELAY

    for attempt in range(max_attempts):
        try:
            session = async_session()
            break
        except (
            OperationalError,
            DisconnectionError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
        ) as e:
            if attempt == max_attempts - 1:
                logger.error(
                    f"Failed to create session after {max_attempts} attempts: {str(e)}"
                )
                raise DatabaseConnectionError(
                    f"Database connection failed after {max_attempts} attempts"
                )

            logger.warning(
                f"Session creation failed (attempt {attempt + 1}/{max_attempts}): {str(e)}"
            )
            await asyncio.sleep(current_delay)
            current_delay *= 2.0

    if session is None:
        raise DatabaseConnectionError("Failed to create database session")

    try:
        yield session
    except Exception as e:
        await session.rollback()
        logger.error(f"Session error: {str(e)}")
        raise
    finally:
        await session.close()


class DatabaseManager:
    """Engine-level operations used at startup and shutdown"""

    @staticmethod
    @db_retry()
    async def create_tables():
        """Create all tables"""
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {str(e)}")
            raise

    @staticmethod
    @db_retry()
    async def check_connection():
        """Check database connectivity"""
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection check successful")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {str(e)}")
            raise DatabaseConnectionError("Database connection check failed")

    @staticmethod
    async def close_connections():
        """Dispose the engine pool"""
        try:
            await engine.dispose()
            logger.info("Database connections closed successfully")
        except Exception as e:
            logger.error(f"Error closing database connections: {str(e)}")


db_manager = DatabaseManager()


class TransactionManager:
    """
    Runs one operation as a single atomic unit: commit on success, full
    rollback on any failure. Transient connection errors are retried from
    scratch; deadlocks and serialization failures are surfaced as
    TransactionFailedError.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @db_retry()
    async def execute(self, operation: Callable, *args, **kwargs):
        try:
            result = await operation(self.session, *args, **kwargs)
            await self.session.commit()
            return result
        except Exception as e:
            await self.session.rollback()
            if is_serialization_failure(e):
                logger.warning(
                    f"Transaction aborted by the database: {operation.__name__}",
                    extra={"operation": operation.__name__},
                )
                raise TransactionFailedError(operation.__name__, str(e)) from e
            if not isinstance(e, BaseAppException):
                logger.error(f"Transaction failed: {str(e)}")
            raise

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            await self.session.rollback()
        else:
            await self.session.commit()


async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    """
    Run ``operation(session, *args, **kwargs)`` inside one transaction
    """
    transaction_manager = TransactionManager(session)
    return await transaction_manager.execute(operation, *args, **kwargs)


def db_operation(func: F) -> F:
    """
    Decorator for CRUD operations: debug tracing and error logging
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        operation_name = func.__name__

        try:
            logger.debug(f"Starting database operation: {operation_name}")
            result = await func(*args, **kwargs)
            logger.debug(f"Database operation completed: {operation_name}")
            return result

        except BaseAppException:
            raise

        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {operation_name}: {str(e)}",
                extra={"operation": operation_name, "exception_type": type(e).__name__},
            )
            raise

        except Exception as e:
            logger.error(
                f"Unexpected error in {operation_name}: {str(e)}",
                extra={"operation": operation_name, "exception_type": type(e).__name__},
            )
            raise

    return wrapper
